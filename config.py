import os
from urllib.parse import quote

from dotenv import load_dotenv
from flask import current_app, has_app_context

load_dotenv()
# Also load .env.example as a fallback for local testing if .env is not present
load_dotenv('.env.example', override=False)


def _int_env(name, default):
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number, got: {value}")


class Config:
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    JWT_SECRET = os.getenv('JWT_SECRET') or SECRET_KEY
    ACCESS_TOKEN_SECONDS = _int_env('ACCESS_TOKEN_SECONDS', 60 * 60)
    REFRESH_TOKEN_SECONDS = _int_env('REFRESH_TOKEN_SECONDS', 7 * 24 * 60 * 60)

    ENV = os.getenv('APP_ENV', 'development')
    CLIENT_URL = os.getenv('CLIENT_URL', 'http://localhost:3000')
    COOKIE_DOMAIN = os.getenv('COOKIE_DOMAIN')

    # Database configuration
    DB_HOST = os.getenv('DB_HOST', 'localhost')
    DB_NAME = os.getenv('DB_NAME', 'gitplants')
    DB_USER = os.getenv('DB_USER', 'gitplants')
    DB_PASSWORD = os.getenv('DB_PASSWORD', 'gitplants')
    DB_PORT = os.getenv('DB_PORT', '5432')

    # Redis / contribution cache
    REDIS_URL = os.getenv('REDIS_URL') or f"redis://{os.getenv('REDIS_HOST', 'localhost')}:{os.getenv('REDIS_PORT', '6379')}/0"
    REDIS_TIMEOUT_SECONDS = _int_env('REDIS_TIMEOUT_SECONDS', 2)
    CACHE_PREFIX = os.getenv('CACHE_PREFIX', 'gitplants')
    CACHE_TTL_SECONDS = _int_env('CACHE_TTL_SECONDS', 12 * 60 * 60)

    # Badge cache and profile refresh guard
    BADGE_CACHE_TTL = _int_env('BADGE_CACHE_TTL', 300)
    PROFILE_REFRESH_SECONDS = _int_env('PROFILE_REFRESH_SECONDS', 60 * 60)

    # GitHub
    GITHUB_CLIENT_ID = os.getenv('GITHUB_CLIENT_ID', '')
    GITHUB_CLIENT_SECRET = os.getenv('GITHUB_CLIENT_SECRET', '')
    GITHUB_CALLBACK_URL = os.getenv('GITHUB_CALLBACK_URL', 'http://localhost:5000/api/auth/callback/github')
    GITHUB_SCOPE = 'read:user user:email repo'
    GITHUB_GRAPHQL_API_URL = os.getenv('GITHUB_GRAPHQL_API_URL', 'https://api.github.com/graphql')
    GITHUB_API_TOKEN = os.getenv('GITHUB_API_TOKEN', '')
    GITHUB_SYNC_INTERVAL_SECONDS = _int_env('GITHUB_SYNC_INTERVAL_SECONDS', 12 * 60 * 60)
    GITHUB_TIMEOUT_SECONDS = _int_env('GITHUB_TIMEOUT_SECONDS', 20)

    # Cloudinary
    CLOUDINARY_CLOUD_NAME = os.getenv('CLOUDINARY_CLOUD_NAME', '')
    CLOUDINARY_API_KEY = os.getenv('CLOUDINARY_API_KEY', '')
    CLOUDINARY_API_SECRET = os.getenv('CLOUDINARY_API_SECRET', '')

    AUTO_SYNC_RATE_LIMIT = os.getenv('AUTO_SYNC_RATE_LIMIT', '5 per hour')
    RATELIMIT_STORAGE_URI = os.getenv('RATELIMIT_STORAGE_URI', 'memory://')

    @property
    def IS_PRODUCTION(self):
        return self.ENV == 'production'

    @property
    def DATABASE_URL(self):
        return f"postgresql://{quote(self.DB_USER, safe='')}:{quote(self.DB_PASSWORD, safe='')}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"


_defaults = Config()


def setting(name):
    """Read a tunable from the running app's config, or from the environment outside an app context."""
    if has_app_context() and name in current_app.config:
        return current_app.config[name]
    return getattr(_defaults, name)
