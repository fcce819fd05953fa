"""Unit tests for badge condition parsing and awarding."""
from types import SimpleNamespace
from unittest import mock

import pytest

from backend.services import badges
from backend.services.badges import BadgeCondition, evaluate_condition, parse_condition, select_new_badges


def _stats(**overrides):
    stats = {
        'seed_count': 0,
        'plant_count': 0,
        'total_harvests': 0,
        'total_contributions': 0,
        'month_contributions': 0,
        'owned_badge_count': 0,
        'join_year': 2024,
    }
    stats.update(overrides)
    return stats


class TestParseCondition:
    @pytest.mark.parametrize('text, expected', [
        ('Start Git Plants', BadgeCondition('FIRST_LOGIN')),
        ('Get first seed', BadgeCondition('FIRST_SEED')),
        ('Grow your first plant', BadgeCondition('FIRST_PLANT')),
        ('Make your first harvest', BadgeCondition('FIRST_HARVEST')),
        ('Joined in 2024', BadgeCondition('JOINED_YEAR', 2024)),
        ('Reach 100 contributions this month', BadgeCondition('CONTRIBUTION_COUNT', 100, 'MONTH')),
        ('1000 commits', BadgeCondition('CONTRIBUTION_COUNT', 1000, 'TOTAL')),
        ('Harvest 10 crops', BadgeCondition('HARVEST_COUNT', 10)),
        ('5 plants grown', BadgeCondition('PLANT_COUNT', 5)),
        ('Collect 50 seeds', BadgeCondition('SEED_COUNT', 50)),
    ])
    def test_known_phrases(self, text, expected):
        assert parse_condition(text) == expected

    def test_keyword_wins_over_numbers(self):
        assert parse_condition('first harvest of 3 crops').type == 'FIRST_HARVEST'

    def test_unknown_condition(self):
        assert parse_condition('Be awesome') is None
        assert parse_condition('') is None
        assert parse_condition(None) is None


class TestEvaluateCondition:
    def test_first_login_only_without_badges(self):
        assert evaluate_condition(BadgeCondition('FIRST_LOGIN'), _stats())
        assert not evaluate_condition(BadgeCondition('FIRST_LOGIN'), _stats(owned_badge_count=1))

    def test_monthly_vs_total_contributions(self):
        monthly = BadgeCondition('CONTRIBUTION_COUNT', 100, 'MONTH')
        total = BadgeCondition('CONTRIBUTION_COUNT', 100, 'TOTAL')
        stats = _stats(month_contributions=40, total_contributions=500)
        assert not evaluate_condition(monthly, stats)
        assert evaluate_condition(total, stats)

    def test_joined_year(self):
        assert evaluate_condition(BadgeCondition('JOINED_YEAR', 2024), _stats())
        assert not evaluate_condition(BadgeCondition('JOINED_YEAR', 2023), _stats())

    def test_counts_are_inclusive(self):
        assert evaluate_condition(BadgeCondition('SEED_COUNT', 50), _stats(seed_count=50))
        assert not evaluate_condition(BadgeCondition('HARVEST_COUNT', 3), _stats(total_harvests=2))


class TestSelectNewBadges:
    def test_owned_and_unparseable_badges_are_skipped(self):
        catalogue = [
            SimpleNamespace(id=1, name='Hello', condition='Start Git Plants', image_url='1.png'),
            SimpleNamespace(id=2, name='Seedling', condition='Get first seed', image_url='2.png'),
            SimpleNamespace(id=3, name='Odd', condition='???', image_url='3.png'),
        ]
        earned = select_new_badges(catalogue, {1}, _stats(seed_count=3, owned_badge_count=1))
        assert [b.id for b in earned] == [2]


class TestCheckAndAward:
    def setup_method(self):
        badges.invalidate_cache()

    def test_awards_and_reports_new_badges(self):
        catalogue = [SimpleNamespace(id=5, name='Busy', condition='10 contributions this month', image_url='b.png')]
        with mock.patch.object(badges.User, 'badge_stats', return_value=_stats(owned_badge_count=1)), \
                mock.patch.object(badges.contribution_cache, 'get_monthly_contribution', return_value=12), \
                mock.patch.object(badges.Badge, 'get_all', return_value=catalogue), \
                mock.patch.object(badges.UserBadge, 'owned_badge_ids', return_value=set()), \
                mock.patch.object(badges.UserBadge, 'award_many', return_value=[5]) as award:
            result = badges.check_and_award_badges(1, month=3, year=2025)
        award.assert_called_once_with(1, [5])
        assert result == [{'name': 'Busy', 'image_url': 'b.png'}]

    def test_errors_are_swallowed(self):
        with mock.patch.object(badges.User, 'badge_stats', side_effect=RuntimeError('db down')):
            assert badges.check_and_award_badges(1, month=3, year=2025) == []

    def test_badge_list_is_cached_until_invalidated(self):
        with mock.patch.object(badges.Badge, 'get_all', return_value=[]) as get_all:
            badges.get_badges()
            badges.get_badges()
            assert get_all.call_count == 1
            badges.invalidate_cache()
            badges.get_badges()
            assert get_all.call_count == 2
