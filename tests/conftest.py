"""
Shared fixtures for the Git Plants test suite.

Unit tests never touch PostgreSQL, Redis or GitHub: model classmethods and
outbound calls are patched per test, and sessions are minted directly as
JWT cookies.
"""
from types import SimpleNamespace

import pytest

from backend.app import create_app
from backend.auth import create_access_token, cookie_names


TEST_CONFIG = {
    'TESTING': True,
    'JWT_SECRET': 'test-secret',
    'SECRET_KEY': 'test-secret',
    'ENV': 'development',
    'CLIENT_URL': 'http://localhost:3000',
    'RATELIMIT_ENABLED': False,
    'RATELIMIT_STORAGE_URI': 'memory://',
}


@pytest.fixture
def app():
    return create_app(TEST_CONFIG)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def fake_user():
    return SimpleNamespace(id=7, username='octocat', image='https://avatars.example/7',
                           access_token='gho_test', last_synced_at=None)


@pytest.fixture
def login(app, client):
    """Set an access-token cookie on the test client for ``user``."""
    def _login(user, is_admin=False):
        with app.app_context():
            token = create_access_token(user, is_admin=is_admin)
        access_name, _ = cookie_names(is_admin)
        client.set_cookie(access_name, token)
        return token
    return _login


class FakeRedis:
    """In-memory stand-in for the handful of redis-py calls the cache makes."""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value):
        self.store[key] = value
        self.ttls.pop(key, None)
        return True

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    def scan_iter(self, match=None):
        prefix = (match or '*').rstrip('*')
        return iter([k for k in list(self.store) if k.startswith(prefix)])

    def pipeline(self):
        return FakePipeline(self)

    def info(self, section=None):
        return {'used_memory_human': '1K'}


class FakePipeline:
    def __init__(self, redis):
        self.redis = redis
        self.keys = []

    def get(self, key):
        self.keys.append(key)
        return self

    def execute(self):
        return [self.redis.get(k) for k in self.keys]


@pytest.fixture
def fake_redis():
    from backend.services import contribution_cache
    client = FakeRedis()
    contribution_cache.set_client(client)
    yield client
    contribution_cache.set_client(None)


@pytest.fixture(autouse=True)
def _reset_token_blacklist():
    yield
    from backend import auth
    with auth._blacklist_lock:
        auth._blacklist.clear()
