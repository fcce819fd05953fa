"""Unit tests for GitHub calendar aggregation and the GraphQL client."""
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest import mock

import pytest
import requests

from backend.errors import GitHubError
from backend.services import github

NOW = datetime(2025, 6, 15, 12, tzinfo=timezone.utc)

WEEKS = [
    {'contributionDays': [
        {'date': '2025-01-30', 'contributionCount': 3},
        {'date': '2025-01-31', 'contributionCount': 0},
        {'date': '2025-02-01', 'contributionCount': 4},
    ]},
    {'contributionDays': [
        {'date': '2025-02-02', 'contributionCount': 6},
    ]},
]


def _graphql_response(weeks=None, user=True, errors=None):
    response = mock.Mock()
    response.raise_for_status.return_value = None
    payload = {'data': {'user': None}}
    if user:
        payload['data']['user'] = {'contributionsCollection': {'contributionCalendar': {'weeks': weeks or []}}}
    if errors:
        payload['errors'] = errors
    response.json.return_value = payload
    return response


class TestAggregation:
    def test_days_are_summed_per_month(self):
        assert github.aggregate_monthly(WEEKS) == {(2025, 1): 3, (2025, 2): 10}

    def test_empty_calendar(self):
        assert github.aggregate_monthly([]) == {}
        assert github.aggregate_monthly(None) == {}


class TestPeriodRange:
    def test_named_periods(self):
        assert github.period_range('week', now=NOW) == (NOW - timedelta(days=7), NOW)
        assert github.period_range('all', now=NOW) == (NOW - timedelta(days=5 * 365), NOW)

    def test_calendar_year(self):
        start, end = github.period_range('year', '2023', now=NOW)
        assert start == datetime(2023, 1, 1, tzinfo=timezone.utc)
        assert end.year == 2023 and end.month == 12 and end.day == 31

    def test_default_is_one_year(self):
        assert github.period_range(None, now=NOW) == (NOW - timedelta(days=365), NOW)


class TestGraphQL:
    def test_missing_user_is_404(self):
        with mock.patch.object(github.requests, 'post', return_value=_graphql_response(user=False)):
            with pytest.raises(GitHubError) as excinfo:
                github._graphql('q', {}, 'token x')
        assert excinfo.value.status_code == 404

    def test_graphql_errors_are_raised(self):
        with mock.patch.object(github.requests, 'post',
                               return_value=_graphql_response(errors=[{'message': 'Bad credentials'}])):
            with pytest.raises(GitHubError, match='Bad credentials'):
                github._graphql('q', {}, 'token x')

    def test_network_failure(self):
        with mock.patch.object(github.requests, 'post', side_effect=requests.ConnectionError('boom')):
            with pytest.raises(GitHubError):
                github._graphql('q', {}, 'token x')


class TestSync:
    def test_sync_stores_months_and_warms_cache(self):
        user = SimpleNamespace(id=4, username='octo', access_token='gho_x')
        with mock.patch.object(github.requests, 'post', return_value=_graphql_response(WEEKS)), \
                mock.patch.object(github.GitHubActivity, 'upsert_many') as upsert, \
                mock.patch.object(github.GitHubActivity, 'get_by_user', return_value=[]), \
                mock.patch.object(github.contribution_cache, 'set_monthly_contribution') as cache_set:
            github.sync_user_activities(user, reconcile=False)
        upsert.assert_called_once_with(4, {(2025, 1): 3, (2025, 2): 10})
        assert cache_set.call_count == 2

    def test_sync_requires_token(self):
        user = SimpleNamespace(id=4, username='octo', access_token=None)
        with pytest.raises(GitHubError):
            github.sync_user_activities(user)

    def test_public_contributions_need_server_token(self, app):
        app.config['GITHUB_API_TOKEN'] = ''
        with app.app_context():
            with pytest.raises(GitHubError) as excinfo:
                github.fetch_public_contributions('octo')
        assert excinfo.value.status_code == 500


class TestAutoSync:
    def test_enable_and_disable(self):
        with mock.patch.object(github.User, 'get_by_id', return_value=SimpleNamespace(id=9)), \
                mock.patch.object(github.threading, 'Timer') as timer:
            assert github.setup_auto_sync(9)
            assert github.get_auto_sync_status(9)
            timer.return_value.start.assert_called_once()
            assert github.stop_auto_sync(9)
        timer.return_value.cancel.assert_called_once()
        assert not github.get_auto_sync_status(9)
        assert not github.stop_auto_sync(9)

    def test_unknown_user(self):
        with mock.patch.object(github.User, 'get_by_id', return_value=None):
            assert not github.setup_auto_sync(404)

    def test_database_failure_keeps_timer_armed(self):
        """A failed user lookup is logged and the next run is still scheduled."""
        github._auto_sync_timers[21] = mock.Mock()
        try:
            with mock.patch.object(github.User, 'get_by_id', side_effect=RuntimeError('db down')), \
                    mock.patch.object(github.threading, 'Timer') as timer:
                github._run_auto_sync(21)
            timer.return_value.start.assert_called_once()
            assert github._auto_sync_timers[21] is timer.return_value
        finally:
            github._auto_sync_timers.pop(21, None)

    def test_deleted_user_stops_syncing(self):
        github._auto_sync_timers[22] = mock.Mock()
        with mock.patch.object(github.User, 'get_by_id', return_value=None), \
                mock.patch.object(github.threading, 'Timer') as timer:
            github._run_auto_sync(22)
        timer.assert_not_called()
        assert not github.get_auto_sync_status(22)


def test_app_config_overrides_service_settings(app):
    app.config['GITHUB_CLIENT_ID'] = 'override-client'
    with app.app_context():
        assert 'client_id=override-client' in github.authorize_url()
