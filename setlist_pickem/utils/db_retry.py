"""
Bounded retry for database operations.

Connection-level failures (server unreachable, dropped connections, pool
exhaustion) are retried with a fixed delay; every other error is raised
immediately so integrity and programming errors are never masked.
"""

import logging
import time
from functools import wraps

from sqlalchemy.exc import DisconnectionError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from setlist_pickem import db
from setlist_pickem.utils.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_DELAY = 1.0

CONNECTION_ERROR_MARKERS = (
    "can't reach database server",
    "connection refused",
    "connection reset",
    "could not connect",
    "server closed the connection",
    "connection timed out",
    "timeout expired",
    "ssl syscall error",
    "econnrefused",
    "etimedout",
    "database is locked",
)


def is_retryable_error(error):
    """Return True when the error looks like a transient connectivity failure"""
    if isinstance(error, (DisconnectionError, PoolTimeoutError)):
        return True

    if isinstance(error, OperationalError):
        if getattr(error, "connection_invalidated", False):
            return True
        message = str(error).lower()
        return any(marker in message for marker in CONNECTION_ERROR_MARKERS)

    if isinstance(error, (ConnectionError, TimeoutError)):
        return True

    return False


def _retry_settings():
    from flask import current_app, has_app_context

    if has_app_context():
        return (
            current_app.config.get("DB_RETRY_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
            current_app.config.get("DB_RETRY_DELAY", DEFAULT_DELAY),
        )
    return DEFAULT_MAX_ATTEMPTS, DEFAULT_DELAY


def with_retry(max_attempts=None, delay=None, operation_name=None):
    """
    Decorator retrying a store operation on transient connection errors.

    Args:
        max_attempts: Total attempts including the first (default from config)
        delay: Fixed delay in seconds between attempts (default from config)
        operation_name: Name used in log lines (defaults to function name)

    Raises:
        StoreUnavailableError: retryable error persisted on the last attempt
    """

    def decorator(func):
        name = operation_name or func.__name__

        @wraps(func)
        def wrapper(*args, **kwargs):
            configured_attempts, configured_delay = _retry_settings()
            attempts = max_attempts or configured_attempts
            wait = configured_delay if delay is None else delay

            for attempt in range(1, attempts + 1):
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    if not is_retryable_error(e):
                        raise

                    # Connection is unusable, drop whatever the session holds
                    db.session.rollback()

                    if attempt == attempts:
                        logger.error(
                            f"[DB Retry] {name} failed on final attempt "
                            f"{attempt}/{attempts}: {e}"
                        )
                        raise StoreUnavailableError(name, attempts, e) from e

                    logger.warning(
                        f"[DB Retry] {name} failed on attempt {attempt}/{attempts}: {e}. "
                        f"Retrying in {wait}s"
                    )
                    if wait:
                        time.sleep(wait)

        return wrapper

    return decorator


def run_with_retry(operation, operation_name="operation", **options):
    """Run a zero-argument callable under the retry policy"""
    return with_retry(operation_name=operation_name, **options)(operation)()
