"""Unit tests for the Redis contribution cache, run against an in-memory fake."""
import json
from datetime import datetime, timezone
from unittest import mock

from redis.exceptions import ConnectionError as RedisConnectionError

from config import setting
from backend.services import contribution_cache as cache

NOW = datetime(2025, 6, 15, 12, tzinfo=timezone.utc)


class TestCachePolicy:
    def test_past_current_future(self):
        assert cache.cache_policy(2025, 5, now=NOW) == cache.PERMANENT
        assert cache.cache_policy(2024, 12, now=NOW) == cache.PERMANENT
        assert cache.cache_policy(2025, 6, now=NOW) == cache.EXPIRING
        assert cache.cache_policy(2025, 7, now=NOW) == cache.SKIP


class TestWrites:
    def test_past_month_has_no_ttl(self, fake_redis):
        assert cache.set_monthly_contribution(1, 2025, 4, 33, now=NOW)
        key = cache.cache_key(1, 2025, 4)
        assert json.loads(fake_redis.store[key])['count'] == 33
        assert key not in fake_redis.ttls

    def test_current_month_expires(self, fake_redis):
        cache.set_monthly_contribution(1, 2025, 6, 12, now=NOW)
        assert fake_redis.ttls[cache.cache_key(1, 2025, 6)] == setting('CACHE_TTL_SECONDS')

    def test_future_month_is_not_stored(self, fake_redis):
        assert not cache.set_monthly_contribution(1, 2025, 9, 1, now=NOW)
        assert fake_redis.store == {}

    def test_key_format(self):
        assert cache.cache_key(3, 2025, 1) == f"{setting('CACHE_PREFIX')}:monthly:3:2025:1"


class TestReads:
    def test_hit_skips_database(self, fake_redis):
        cache.set_monthly_contribution(1, 2025, 4, 33, now=NOW)
        with mock.patch.object(cache.GitHubActivity, 'get_count') as get_count:
            assert cache.get_monthly_contribution(1, 2025, 4) == 33
        get_count.assert_not_called()

    def test_miss_reads_database(self, fake_redis):
        with mock.patch.object(cache.GitHubActivity, 'get_count', return_value=21) as get_count:
            assert cache.get_monthly_contribution(1, 2024, 2) == 21
        get_count.assert_called_once_with(1, 2024, 2)
        assert cache.get_cached(1, 2024, 2) == 21

    def test_malformed_entry_is_a_miss(self, fake_redis):
        fake_redis.store[cache.cache_key(1, 2024, 2)] = 'not json'
        assert cache.get_cached(1, 2024, 2) is None

    def test_redis_down_falls_back_to_database(self):
        broken = mock.Mock()
        broken.get.side_effect = RedisConnectionError('refused')
        broken.setex.side_effect = RedisConnectionError('refused')
        broken.set.side_effect = RedisConnectionError('refused')
        cache.set_client(broken)
        try:
            with mock.patch.object(cache.GitHubActivity, 'get_count', return_value=8):
                assert cache.get_monthly_contribution(1, 2024, 2) == 8
        finally:
            cache.set_client(None)

    def test_year_mixes_cache_and_database(self, fake_redis):
        cache.set_monthly_contribution(1, 2024, 1, 5, now=NOW)
        with mock.patch.object(cache.GitHubActivity, 'get_year', return_value={3: 9}) as get_year:
            result = cache.get_year(1, 2024)
        get_year.assert_called_once_with(1, 2024)
        assert result[1] == 5
        assert result[3] == 9
        assert result[12] == 0
        assert len(result) == 12


class TestMaintenance:
    def test_clear_user_only_touches_that_user(self, fake_redis):
        cache.set_monthly_contribution(1, 2024, 1, 5, now=NOW)
        cache.set_monthly_contribution(1, 2024, 2, 6, now=NOW)
        cache.set_monthly_contribution(2, 2024, 1, 7, now=NOW)
        assert cache.clear_user(1) == 2
        assert list(fake_redis.store) == [cache.cache_key(2, 2024, 1)]

    def test_stats(self, fake_redis):
        cache.set_monthly_contribution(1, 2024, 1, 5, now=NOW)
        assert cache.stats() == {'connected': True, 'keys': 1, 'memory': '1K'}


def test_ttl_follows_app_config(app, fake_redis):
    app.config['CACHE_TTL_SECONDS'] = 60
    with app.app_context():
        cache.set_monthly_contribution(1, 2025, 6, 12, now=NOW)
    assert fake_redis.ttls[cache.cache_key(1, 2025, 6)] == 60
