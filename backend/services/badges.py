import logging
import re
import threading
import time
from collections import namedtuple

from config import setting
from backend.models import Badge, User, UserBadge
from backend.services import contribution_cache
from backend.timeutils import current_month_year

logger = logging.getLogger(__name__)

BadgeCondition = namedtuple('BadgeCondition', ['type', 'value', 'period'], defaults=(None, None))

_KEYWORDS = (
    ('start git plants', 'FIRST_LOGIN'),
    ('get first seed', 'FIRST_SEED'),
    ('first plant', 'FIRST_PLANT'),
    ('first harvest', 'FIRST_HARVEST'),
)

_JOINED_RE = re.compile(r'joined in (\d{4})')
_CONTRIBUTION_RE = re.compile(r'(\d+)\s*(contribution|commit)')
_HARVEST_RE = re.compile(r'(\d+)\s*(harvest|crop)')
_PLANT_RE = re.compile(r'(\d+)\s*plant')
_SEED_RE = re.compile(r'(\d+)\s*seed')

_cache = {'badges': None, 'loaded_at': 0.0}
_cache_lock = threading.Lock()


def parse_condition(text):
    """Turn a badge's free-text condition into a BadgeCondition, or None.

    >>> parse_condition('Reach 100 contributions this month')
    BadgeCondition(type='CONTRIBUTION_COUNT', value=100, period='MONTH')
    """
    if not text:
        return None
    lowered = text.lower()
    for keyword, kind in _KEYWORDS:
        if keyword in lowered:
            return BadgeCondition(kind)

    m = _JOINED_RE.search(lowered)
    if m:
        return BadgeCondition('JOINED_YEAR', int(m.group(1)))
    m = _CONTRIBUTION_RE.search(lowered)
    if m:
        period = 'MONTH' if 'month' in lowered else 'TOTAL'
        return BadgeCondition('CONTRIBUTION_COUNT', int(m.group(1)), period)
    m = _HARVEST_RE.search(lowered)
    if m:
        return BadgeCondition('HARVEST_COUNT', int(m.group(1)))
    m = _PLANT_RE.search(lowered)
    if m:
        return BadgeCondition('PLANT_COUNT', int(m.group(1)))
    m = _SEED_RE.search(lowered)
    if m:
        return BadgeCondition('SEED_COUNT', int(m.group(1)))
    return None


def evaluate_condition(condition, stats):
    kind = condition.type
    if kind == 'FIRST_LOGIN':
        return stats['owned_badge_count'] == 0
    if kind == 'FIRST_SEED':
        return stats['seed_count'] > 0
    if kind == 'FIRST_PLANT':
        return stats['plant_count'] > 0
    if kind == 'FIRST_HARVEST':
        return stats['total_harvests'] > 0
    if not condition.value:
        return False
    if kind == 'JOINED_YEAR':
        return stats.get('join_year') == condition.value
    if kind == 'CONTRIBUTION_COUNT':
        key = 'month_contributions' if condition.period == 'MONTH' else 'total_contributions'
        return stats[key] >= condition.value
    if kind == 'HARVEST_COUNT':
        return stats['total_harvests'] >= condition.value
    if kind == 'PLANT_COUNT':
        return stats['plant_count'] >= condition.value
    if kind == 'SEED_COUNT':
        return stats['seed_count'] >= condition.value
    return False


def get_badges():
    with _cache_lock:
        fresh = time.monotonic() - _cache['loaded_at'] < setting('BADGE_CACHE_TTL')
        if _cache['badges'] is not None and fresh:
            return _cache['badges']
    badges = Badge.get_all()
    with _cache_lock:
        _cache['badges'] = badges
        _cache['loaded_at'] = time.monotonic()
    return badges


def invalidate_cache():
    with _cache_lock:
        _cache['badges'] = None
        _cache['loaded_at'] = 0.0


def select_new_badges(badges, owned_ids, stats):
    earned = []
    for badge in badges:
        if badge.id in owned_ids:
            continue
        condition = parse_condition(badge.condition)
        if condition is None:
            logger.info("Skipping badge %s with unrecognised condition %r", badge.id, badge.condition)
            continue
        if evaluate_condition(condition, stats):
            earned.append(badge)
    return earned


def check_and_award_badges(user_id, month=None, year=None):
    """Award every badge the user now qualifies for.

    Returns ``[{'name', 'image_url'}]`` for the new ones. Failures are logged
    and reported as no new badges so callers never fail on a badge problem.
    """
    try:
        if month is None or year is None:
            month, year = current_month_year()
        stats = User.badge_stats(user_id, month, year)
        if stats is None:
            return []
        stats['month_contributions'] = contribution_cache.get_monthly_contribution(user_id, year, month)
        earned = select_new_badges(get_badges(), UserBadge.owned_badge_ids(user_id), stats)
        if not earned:
            return []
        awarded_ids = set(UserBadge.award_many(user_id, [b.id for b in earned]))
        awarded = [{'name': b.name, 'image_url': b.image_url} for b in earned if b.id in awarded_ids]
        if awarded:
            logger.info("Awarded %s badge(s) to user %s", len(awarded), user_id)
        return awarded
    except Exception as e:
        logger.error("Error checking badges for user %s: %s", user_id, e)
        return []
