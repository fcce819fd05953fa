"""Unit tests for plant growth: stages, harvest bookkeeping and the refresh guard."""
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest import mock

import pytest

from backend.services import growth
from backend.services.growth import GrowthPlan, plan_harvest, stage_for, stage_image_url


class TestStages:
    @pytest.mark.parametrize('contributions, stage', [
        (0, 'SEED'), (9, 'SEED'), (10, 'SPROUT'), (29, 'SPROUT'),
        (30, 'GROWING'), (49, 'GROWING'), (50, 'MATURE'), (69, 'MATURE'), (70, 'HARVEST'),
    ])
    def test_thresholds(self, contributions, stage):
        assert stage_for(contributions) == stage

    def test_stage_image_follows_stage_order(self):
        urls = ['seed.png', 'sprout.png', 'growing.png', 'mature.png', 'harvest.png']
        assert stage_image_url(urls, 'GROWING') == 'growing.png'
        assert stage_image_url(urls, 'HARVEST') == 'harvest.png'

    def test_stage_image_falls_back_to_first(self):
        assert stage_image_url(['only.png'], 'MATURE') == 'only.png'
        assert stage_image_url([], 'SEED') is None


class TestPlanHarvest:
    def test_below_threshold_has_no_harvest(self):
        assert plan_harvest(45, 0) == GrowthPlan(harvest_count=0, new_crops=0, stage='GROWING', remainder=45)

    def test_each_seventy_contributions_is_one_crop(self):
        plan = plan_harvest(150, 0)
        assert plan.new_crops == 2
        assert plan.harvest_count == 2
        assert plan.remainder == 10
        assert plan.stage == 'SPROUT'

    def test_replaying_same_count_grants_nothing(self):
        first = plan_harvest(140, 0)
        second = plan_harvest(140, first.harvest_count)
        assert second.new_crops == 0
        assert second.harvest_count == 2

    def test_only_missing_harvests_are_granted(self):
        plan = plan_harvest(215, 1)
        assert plan.new_crops == 2
        assert plan.harvest_count == 3

    def test_harvest_count_never_decreases(self):
        """A lower count after a GitHub correction keeps already recorded harvests."""
        plan = plan_harvest(20, 3)
        assert plan.harvest_count == 3
        assert plan.new_crops == 0
        assert plan.stage == 'SPROUT'

    def test_none_and_negative_are_zero(self):
        assert plan_harvest(None, 0).stage == 'SEED'
        assert plan_harvest(-5, 0).remainder == 0


class TestRefreshGuard:
    def test_never_synced_needs_refresh(self):
        assert growth.needs_refresh(None, 3600)

    def test_recent_sync_is_skipped(self):
        now = datetime(2025, 3, 1, 12, tzinfo=timezone.utc)
        assert not growth.needs_refresh(now - timedelta(minutes=5), 3600, now=now)
        assert growth.needs_refresh(now - timedelta(hours=2), 3600, now=now)

    def test_refresh_user_state_skips_when_fresh(self):
        user = SimpleNamespace(id=1, username='octo', last_synced_at=datetime.now(timezone.utc))
        with mock.patch('backend.services.github.sync_user_activities') as sync:
            assert growth.refresh_user_state(user, 3, 2025, 3600) is None
        sync.assert_not_called()

    def test_refresh_survives_github_failure(self):
        from backend.errors import GitHubError
        user = SimpleNamespace(id=1, username='octo', last_synced_at=None)
        with mock.patch('backend.services.github.sync_user_activities', side_effect=GitHubError('down')), \
                mock.patch.object(growth.User, 'mark_synced') as mark, \
                mock.patch.object(growth, 'auto_update_all_user_plants', return_value=None) as update:
            growth.refresh_user_state(user, 3, 2025, 3600)
        mark.assert_called_once_with(1)
        update.assert_called_once_with(1, 3, 2025)


class TestAutoUpdate:
    def test_no_monthly_plant(self):
        with mock.patch.object(growth.MonthlyPlant, 'get_by_month', return_value=None):
            assert growth.auto_update_all_user_plants(1, 3, 2025) is None

    def test_harvest_triggers_badge_check(self):
        monthly = SimpleNamespace(id=11, name='Tulip')
        plan = GrowthPlan(harvest_count=1, new_crops=1, stage='SEED', remainder=2)
        with mock.patch.object(growth.MonthlyPlant, 'get_by_month', return_value=monthly), \
                mock.patch.object(growth.contribution_cache, 'get_monthly_contribution', return_value=72), \
                mock.patch.object(growth.UserPlant, 'reconcile', return_value=plan) as reconcile, \
                mock.patch('backend.services.badges.check_and_award_badges',
                           return_value=[{'name': 'First Harvest', 'image_url': 'b.png'}]) as check:
            result = growth.auto_update_all_user_plants(1, 3, 2025)
        reconcile.assert_called_once_with(1, 11, 72)
        check.assert_called_once_with(1, month=3, year=2025)
        assert result['harvested'] == 1
        assert result['new_badges'] == [{'name': 'First Harvest', 'image_url': 'b.png'}]

    def test_not_planted(self):
        monthly = SimpleNamespace(id=11, name='Tulip')
        with mock.patch.object(growth.MonthlyPlant, 'get_by_month', return_value=monthly), \
                mock.patch.object(growth.contribution_cache, 'get_monthly_contribution', return_value=5), \
                mock.patch.object(growth.UserPlant, 'reconcile', return_value=None):
            assert growth.auto_update_all_user_plants(1, 3, 2025) is None
