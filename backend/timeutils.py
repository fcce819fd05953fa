import logging
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)


def current_month_year(tz_name='UTC', now=None):
    """Return (month, year) as seen from the given IANA zone.

    Unknown zones fall back to UTC, so a client at 00:30 on Jan 1st in Seoul
    gets January while a client in New York still gets December.
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    try:
        local = now.astimezone(ZoneInfo(tz_name))
    except (ZoneInfoNotFoundError, ValueError) as e:
        logger.warning("Unknown timezone %r, falling back to UTC: %s", tz_name, e)
        local = now.astimezone(timezone.utc)
    return local.month, local.year


def timezone_from_request(req):
    tz_name = req.headers.get('X-Timezone')
    if tz_name and '/' in tz_name:
        return tz_name.strip()
    return 'UTC'


def month_year_from_request(req, now=None):
    return current_month_year(timezone_from_request(req), now=now)


def is_past_month(year, month, current_year, current_month):
    return year < current_year or (year == current_year and month < current_month)


def parse_datetime(value):
    """Parse an ISO-8601 string from a request body; None/'' stay None."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def utcnow():
    return datetime.now(timezone.utc)
