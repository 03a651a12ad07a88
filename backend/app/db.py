import threading
from contextlib import contextmanager

from psycopg.rows import dict_row

# psycopg3 connection pooling lives in a separate package.
from psycopg_pool import ConnectionPool

from .config import settings

# Opened lazily on first use (or at app startup) so importing the app never dials the DB.
# Note: we keep row_factory=dict_row so handlers read rows by column name.
_pool = ConnectionPool(
    conninfo=settings.db_url,
    min_size=settings.db_pool_min,
    max_size=settings.db_pool_max,
    kwargs={"row_factory": dict_row},
    open=False,
)
_open_lock = threading.Lock()
_opened = False


def open_pool() -> None:
    global _opened
    with _open_lock:
        if not _opened:
            _pool.open()
            _opened = True


@contextmanager
def _pooled_conn(pool: ConnectionPool):
    # `with get_conn() as conn:` commits on success, rolls back on exception,
    # and returns the connection to the pool.
    open_pool()
    with pool.connection() as conn:
        with conn:
            yield conn


def get_conn():
    return _pooled_conn(_pool)


def close_pool() -> None:
    global _opened
    with _open_lock:
        if _opened:
            _pool.close()
            _opened = False
