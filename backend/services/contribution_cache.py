"""Read-through Redis cache for monthly GitHub contribution counts.

Finished months never change, so they are cached without expiry. The
current month is cached for CACHE_TTL_SECONDS and future months are never
stored. Redis being down only costs a database read: every error is logged
and treated as a cache miss.
"""
import json
import logging

import redis
from redis.exceptions import RedisError

from config import setting
from backend.models import GitHubActivity
from backend.timeutils import current_month_year, is_past_month, utcnow

logger = logging.getLogger(__name__)

PERMANENT = 'permanent'
EXPIRING = 'expiring'
SKIP = 'skip'

_client = None


def get_client():
    global _client
    if _client is None:
        _client = redis.Redis.from_url(
            setting('REDIS_URL'),
            decode_responses=True,
            socket_timeout=setting('REDIS_TIMEOUT_SECONDS'),
            socket_connect_timeout=setting('REDIS_TIMEOUT_SECONDS'),
        )
    return _client


def set_client(client):
    global _client
    _client = client


def cache_key(user_id, year, month):
    return f"{setting('CACHE_PREFIX')}:monthly:{user_id}:{year}:{month}"


def cache_policy(year, month, now=None):
    current_month, current_year = current_month_year('UTC', now=now)
    if is_past_month(year, month, current_year, current_month):
        return PERMANENT
    if (year, month) == (current_year, current_month):
        return EXPIRING
    return SKIP


def get_cached(user_id, year, month):
    try:
        raw = get_client().get(cache_key(user_id, year, month))
    except RedisError as e:
        logger.warning("Redis read failed for %s/%s-%s: %s", user_id, year, month, e)
        return None
    if raw is None:
        return None
    try:
        return int(json.loads(raw)['count'])
    except (ValueError, KeyError, TypeError) as e:
        logger.warning("Discarding malformed cache entry for %s/%s-%s: %s", user_id, year, month, e)
        return None


def set_monthly_contribution(user_id, year, month, count, now=None):
    policy = cache_policy(year, month, now=now)
    if policy == SKIP:
        return False
    payload = json.dumps({
        'user_id': user_id,
        'year': year,
        'month': month,
        'count': count,
        'cached_at': (now or utcnow()).isoformat(),
    })
    key = cache_key(user_id, year, month)
    try:
        if policy == PERMANENT:
            get_client().set(key, payload)
        else:
            get_client().setex(key, setting('CACHE_TTL_SECONDS'), payload)
        return True
    except RedisError as e:
        logger.warning("Redis write failed for %s: %s", key, e)
        return False


def get_monthly_contribution(user_id, year, month):
    cached = get_cached(user_id, year, month)
    if cached is not None:
        return cached
    count = GitHubActivity.get_count(user_id, year, month)
    set_monthly_contribution(user_id, year, month, count)
    return count


def get_year(user_id, year):
    """Counts for all twelve months, one pipeline round trip; misses fall back to the database."""
    keys = [cache_key(user_id, year, m) for m in range(1, 13)]
    values = [None] * 12
    try:
        pipe = get_client().pipeline()
        for key in keys:
            pipe.get(key)
        values = pipe.execute()
    except RedisError as e:
        logger.warning("Redis pipeline failed for %s/%s: %s", user_id, year, e)

    result = {}
    missing = []
    for month, raw in zip(range(1, 13), values):
        if raw is None:
            missing.append(month)
            continue
        try:
            result[month] = int(json.loads(raw)['count'])
        except (ValueError, KeyError, TypeError):
            missing.append(month)
    if missing:
        stored = GitHubActivity.get_year(user_id, year)
        for month in missing:
            count = stored.get(month, 0)
            result[month] = count
            if month in stored:
                set_monthly_contribution(user_id, year, month, count)
    return result


def invalidate_current_month(user_id):
    month, year = current_month_year()
    try:
        get_client().delete(cache_key(user_id, year, month))
    except RedisError as e:
        logger.warning("Redis delete failed for user %s: %s", user_id, e)


def clear_user(user_id):
    pattern = f"{setting('CACHE_PREFIX')}:monthly:{user_id}:*"
    try:
        client = get_client()
        keys = list(client.scan_iter(match=pattern))
        if keys:
            client.delete(*keys)
        return len(keys)
    except RedisError as e:
        logger.warning("Redis clear failed for user %s: %s", user_id, e)
        return 0


def stats():
    try:
        client = get_client()
        keys = sum(1 for _ in client.scan_iter(match=f"{setting('CACHE_PREFIX')}:monthly:*"))
        memory = client.info('memory').get('used_memory_human')
        return {'connected': True, 'keys': keys, 'memory': memory}
    except RedisError as e:
        logger.warning("Redis stats unavailable: %s", e)
        return {'connected': False, 'keys': 0, 'memory': None}
