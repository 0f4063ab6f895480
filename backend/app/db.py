import hashlib
import threading
import time
from contextlib import contextmanager
from typing import Callable, Optional, TypeVar

from psycopg import errors as pg_errors
from psycopg import InterfaceError, OperationalError
from psycopg.rows import dict_row

# psycopg3 connection pooling lives in a separate package.
from psycopg_pool import ConnectionPool, PoolTimeout

from .config import settings
from .errors import StoreIOError
from .logs import json_log

T = TypeVar("T")

_pool: Optional[ConnectionPool] = None
_pool_lock = threading.Lock()


def _configure(conn) -> None:
    # Bounded timeout on every store session; catalog/order fetches are the only slow path.
    conn.execute(f"SET statement_timeout = {int(settings.db_statement_timeout_ms)}")
    conn.commit()


def _get_pool() -> ConnectionPool:
    global _pool
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                # Note: we keep row_factory=dict_row; store code reads columns by name.
                _pool = ConnectionPool(
                    conninfo=settings.db_url,
                    min_size=settings.db_pool_min_size,
                    max_size=settings.db_pool_max_size,
                    kwargs={"row_factory": dict_row},
                    configure=_configure,
                    open=True,
                )
    return _pool


@contextmanager
def _pooled_conn(pool: ConnectionPool):
    # `with get_conn() as conn:`
    # - commit on success
    # - rollback on exception
    # - return connection to pool
    with pool.connection() as conn:
        with conn:
            yield conn


def get_conn():
    return _pooled_conn(_get_pool())


def close_pools() -> None:
    global _pool
    # Best-effort shutdown hook (e.g. uvicorn shutdown).
    if _pool is None:
        return
    try:
        _pool.close()
    except Exception as ex:
        json_log("warning", "db.pool.close_failed", error=str(ex))
    _pool = None


# Connection-level failures worth another attempt. Statement timeouts are included:
# the next attempt runs on a fresh session.
TRANSIENT_ERRORS = (OperationalError, InterfaceError, PoolTimeout)
# Fails the same way on every attempt.
_PERMANENT_OPERATIONAL = (pg_errors.InsufficientPrivilege,)


def retry_delay_ms(attempt: int, operation: str = "") -> int:
    """
    Exponential backoff for the `attempt`-th failure (1-based): base * 2^(n-1), capped,
    plus a small deterministic jitter so parallel sweeps do not retry in lockstep.
    """
    base = settings.store_retry_base_delay_ms
    cap = settings.store_retry_max_delay_ms
    delay = min(cap, base * (2 ** max(attempt - 1, 0)))
    if operation and delay:
        digest = hashlib.sha1(f"{operation}:{attempt}".encode("utf-8")).hexdigest()
        jitter_window = max(1, min(250, delay // 5 or 1))
        delay = min(cap, delay + (int(digest[:8], 16) % (jitter_window + 1)))
    return delay


def with_store_retry(
    fn: Callable[[], T],
    *,
    operation: str,
    attempts: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run `fn` retrying transient store failures. Raises StoreIOError once `attempts` is
    exhausted; any other exception propagates untouched on the first failure.
    """
    attempts = max(1, attempts or settings.store_retry_attempts)
    last: Optional[Exception] = None
    for n in range(1, attempts + 1):
        try:
            return fn()
        except _PERMANENT_OPERATIONAL:
            raise
        except TRANSIENT_ERRORS as ex:
            last = ex
            if n >= attempts:
                break
            delay = retry_delay_ms(n, operation)
            json_log("warning", "store.retry", operation=operation, attempt=n, delay_ms=delay, error=str(ex))
            sleep(delay / 1000.0)
    json_log("error", "store.failed", operation=operation, attempts=attempts, error=str(last))
    raise StoreIOError(operation, attempts, last)
