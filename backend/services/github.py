import logging
import threading
from datetime import date, datetime, timedelta, timezone
from urllib.parse import urlencode

import requests

from config import setting
from backend.errors import GitHubError
from backend.models import GitHubActivity, User
from backend.services import contribution_cache
from backend.timeutils import utcnow

logger = logging.getLogger(__name__)

AUTHORIZE_URL = 'https://github.com/login/oauth/authorize'
ACCESS_TOKEN_URL = 'https://github.com/login/oauth/access_token'
USER_API_URL = 'https://api.github.com/user'

CONTRIBUTIONS_QUERY = '''
query($username: String!) {
  user(login: $username) {
    contributionsCollection {
      contributionCalendar {
        weeks {
          contributionDays {
            date
            contributionCount
          }
        }
      }
    }
  }
}
'''

PUBLIC_CONTRIBUTIONS_QUERY = '''
query($username: String!, $from: DateTime, $to: DateTime) {
  user(login: $username) {
    contributionsCollection(from: $from, to: $to) {
      contributionCalendar {
        weeks {
          contributionDays {
            date
            contributionCount
          }
        }
      }
    }
  }
}
'''

PERIOD_DAYS = {'day': 1, 'week': 7, 'month': 30, 'year': 365}

_auto_sync_timers = {}
_auto_sync_lock = threading.Lock()


# OAuth

def authorize_url():
    query = urlencode({
        'client_id': setting('GITHUB_CLIENT_ID'),
        'redirect_uri': setting('GITHUB_CALLBACK_URL'),
        'scope': setting('GITHUB_SCOPE'),
    })
    return f"{AUTHORIZE_URL}?{query}"


def exchange_code(code):
    try:
        resp = requests.post(
            ACCESS_TOKEN_URL,
            json={
                'client_id': setting('GITHUB_CLIENT_ID'),
                'client_secret': setting('GITHUB_CLIENT_SECRET'),
                'code': code,
            },
            headers={'Accept': 'application/json'},
            timeout=setting('GITHUB_TIMEOUT_SECONDS'),
        )
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, ValueError) as e:
        raise GitHubError(f"GitHub token exchange failed: {e}")
    token = data.get('access_token')
    if not token:
        raise GitHubError(data.get('error_description') or 'GitHub did not return an access token')
    return token


def fetch_github_user(access_token):
    try:
        resp = requests.get(
            USER_API_URL,
            headers={'Authorization': f"Bearer {access_token}", 'Accept': 'application/vnd.github+json'},
            timeout=setting('GITHUB_TIMEOUT_SECONDS'),
        )
        resp.raise_for_status()
        return resp.json()
    except (requests.RequestException, ValueError) as e:
        raise GitHubError(f"Could not load GitHub profile: {e}")


# Contributions

def _graphql(query, variables, authorization):
    try:
        resp = requests.post(
            setting('GITHUB_GRAPHQL_API_URL'),
            json={'query': query, 'variables': variables},
            headers={'Authorization': authorization, 'Content-Type': 'application/json'},
            timeout=setting('GITHUB_TIMEOUT_SECONDS'),
        )
        resp.raise_for_status()
        payload = resp.json()
    except (requests.RequestException, ValueError) as e:
        raise GitHubError(f"GitHub GraphQL request failed: {e}")
    if payload.get('errors'):
        raise GitHubError(payload['errors'][0].get('message') or 'GitHub GraphQL error')
    user = (payload.get('data') or {}).get('user')
    if not user:
        raise GitHubError('GitHub user not found', status_code=404)
    return user['contributionsCollection']['contributionCalendar']['weeks']


def iter_days(weeks):
    for week in weeks or []:
        for day in week.get('contributionDays') or []:
            yield day['date'], int(day.get('contributionCount') or 0)


def aggregate_monthly(weeks):
    """Sum daily calendar counts into ``{(year, month): count}``; empty days are skipped."""
    totals = {}
    for day, count in iter_days(weeks):
        if count <= 0:
            continue
        d = date.fromisoformat(day[:10])
        totals[(d.year, d.month)] = totals.get((d.year, d.month), 0) + count
    return totals


def sync_user_activities(user, reconcile=True):
    """Pull the user's contribution calendar and store monthly totals.

    Returns the user's stored activities, newest first.
    """
    if not user.access_token:
        raise GitHubError('GitHub access token not found', status_code=400)
    weeks = _graphql(CONTRIBUTIONS_QUERY, {'username': user.username}, f"token {user.access_token}")
    monthly = aggregate_monthly(weeks)
    GitHubActivity.upsert_many(user.id, monthly)
    for (year, month), count in monthly.items():
        contribution_cache.set_monthly_contribution(user.id, year, month, count)
    logger.info("Synced %s month(s) of activity for %s", len(monthly), user.username)

    if reconcile and monthly:
        from backend.services.growth import auto_update_all_user_plants
        try:
            auto_update_all_user_plants(user.id)
        except Exception as e:
            logger.error("Error updating plant growth for %s: %s", user.username, e)
    return GitHubActivity.get_by_user(user.id)


# Auto sync

def _run_auto_sync(user_id):
    try:
        user = User.get_by_id(user_id)
        if user is None:
            stop_auto_sync(user_id)
            return
        logger.info("Auto syncing GitHub activities for %s", user.username)
        sync_user_activities(user)
        User.mark_synced(user.id)
    except Exception as e:
        logger.error("Auto sync error for user %s: %s", user_id, e)
    finally:
        with _auto_sync_lock:
            if user_id in _auto_sync_timers:
                _schedule(user_id)


def _schedule(user_id):
    timer = threading.Timer(setting('GITHUB_SYNC_INTERVAL_SECONDS'), _run_auto_sync, args=(user_id,))
    timer.daemon = True
    _auto_sync_timers[user_id] = timer
    timer.start()


def setup_auto_sync(user_id):
    if User.get_by_id(user_id) is None:
        return False
    with _auto_sync_lock:
        existing = _auto_sync_timers.pop(user_id, None)
        if existing:
            existing.cancel()
        _schedule(user_id)
    logger.info("Auto sync enabled for user %s", user_id)
    return True


def stop_auto_sync(user_id):
    with _auto_sync_lock:
        timer = _auto_sync_timers.pop(user_id, None)
    if timer:
        timer.cancel()
        logger.info("Auto sync stopped for user %s", user_id)
        return True
    return False


def get_auto_sync_status(user_id):
    with _auto_sync_lock:
        return user_id in _auto_sync_timers


# Public calendar

def period_range(period=None, year=None, now=None):
    """Return the ``(from, to)`` window for a public calendar request."""
    now = now or utcnow()
    period = (period or '').lower()
    if period == 'all':
        return now - timedelta(days=5 * 365), now
    if period == 'year' and year:
        y = int(year)
        return (datetime(y, 1, 1, tzinfo=timezone.utc),
                datetime(y, 12, 31, 23, 59, 59, tzinfo=timezone.utc))
    days = PERIOD_DAYS.get(period)
    if days:
        return now - timedelta(days=days), now
    return now - timedelta(days=365), now


def fetch_public_contributions(username, period=None, year=None):
    if not setting('GITHUB_API_TOKEN'):
        raise GitHubError('Server configuration error: GitHub API token is missing', status_code=500)
    start, end = period_range(period, year)
    weeks = _graphql(
        PUBLIC_CONTRIBUTIONS_QUERY,
        {'username': username, 'from': start.isoformat(), 'to': end.isoformat()},
        f"bearer {setting('GITHUB_API_TOKEN')}",
    )
    return [{'date': day, 'count': count} for day, count in iter_days(weeks)]
