import threading

from psycopg2 import pool as pg_pool

import config

_POOL: pg_pool.ThreadedConnectionPool | None = None
_POOL_LOCK = threading.Lock()


def create_pool(dsn: str | None = None) -> pg_pool.ThreadedConnectionPool:
    dsn = dsn or config.DATABASE_URL
    if not dsn:
        raise RuntimeError("DATABASE_URL environment variable is not set")
    return pg_pool.ThreadedConnectionPool(
        config.DB_POOL_MIN,
        config.DB_POOL_MAX,
        dsn=dsn,
        sslmode=config.DB_SSLMODE,
        connect_timeout=config.DB_CONNECT_TIMEOUT,
    )


def get_pool() -> pg_pool.ThreadedConnectionPool:
    global _POOL
    with _POOL_LOCK:
        if _POOL is None:
            _POOL = create_pool()
        return _POOL


def get_connection(pool=None):
    return (pool or get_pool()).getconn()


def release_connection(conn, pool=None):
    if conn:
        (pool or get_pool()).putconn(conn)
