import logging
import os
import psycopg
from psycopg.rows import dict_row
from config import Config

config = Config()
logger = logging.getLogger(__name__)

APPLICATION_NAME = 'git-plants'


def _resolve_dsn():
    """DATABASE_URL/DB_URL first, then DB_HOST when it holds a full URL, then the discrete DB_* settings."""
    env_dsn = os.getenv('DATABASE_URL') or os.getenv('DB_URL')
    if env_dsn:
        return env_dsn.strip()
    host = (config.DB_HOST or '').strip()
    if host.startswith(('postgres://', 'postgresql://')):
        return host
    return config.DATABASE_URL


def _with_sslmode(dsn):
    sslmode = os.getenv('DB_SSLMODE')
    if not sslmode and 'render.com' in dsn:
        sslmode = 'require'
    if sslmode and 'sslmode=' not in dsn:
        sep = '&' if '?' in dsn else '?'
        return f"{dsn}{sep}sslmode={sslmode}"
    return dsn


def get_db_connection():
    """Open a psycopg v3 connection whose cursors return dict rows."""
    try:
        return psycopg.connect(
            _with_sslmode(_resolve_dsn()),
            row_factory=dict_row,
            connect_timeout=int(os.getenv('DB_CONNECT_TIMEOUT', '10')),
            application_name=APPLICATION_NAME,
        )
    except psycopg.Error as e:
        logger.error("Database connection error: %s", e)
        raise


def get_db_cursor():
    """Get database cursor with dict rows"""
    conn = get_db_connection()
    return conn, conn.cursor()


def close_db(conn, cur):
    if cur:
        cur.close()
    if conn:
        conn.close()
