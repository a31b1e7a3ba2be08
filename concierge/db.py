from __future__ import annotations

from contextlib import contextmanager

import psycopg

from .config import PostgresConfig


@contextmanager
def get_conn(cfg: PostgresConfig):
    conn = psycopg.connect(cfg.dsn(), connect_timeout=5)
    try:
        conn.execute("SET TIME ZONE 'UTC';", prepare=False)
        yield conn
    finally:
        conn.close()
