"""
Bounded transactions with retry on transient conflicts.

Every slot/appointment mutation runs through run_in_transaction():

- the connection wait is bounded by the engine pool timeout, and on
  PostgreSQL each transaction gets SET LOCAL lock_timeout/statement_timeout;
- the wall-clock duration is checked before commit;
- serialization failures, deadlocks, lock/statement timeouts and pool
  timeouts become TransientTransactionError and the whole unit of work is
  retried with exponential backoff and jitter.

Domain errors (BookingError subclasses other than the transient ones) roll
back and propagate immediately.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from counselbook.config.settings import get_settings
from counselbook.core.exceptions import TransactionTimeout, TransientTransactionError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available, query_canceled
TRANSIENT_PGCODES = {"40001", "40P01", "55P03", "57014"}


@dataclass(frozen=True)
class TransactionPolicy:
    """Time bounds and retry schedule for one kind of transaction"""

    max_wait: float
    timeout: float
    attempts: int
    base_delay: float
    max_delay: float
    jitter: float

    @classmethod
    def default(cls) -> "TransactionPolicy":
        settings = get_settings()
        return cls(
            max_wait=settings.TXN_MAX_WAIT_SECONDS,
            timeout=settings.TXN_TIMEOUT_SECONDS,
            attempts=settings.TXN_RETRY_ATTEMPTS,
            base_delay=settings.TXN_RETRY_BASE_DELAY_SECONDS,
            max_delay=settings.TXN_RETRY_MAX_DELAY_SECONDS,
            jitter=settings.TXN_RETRY_JITTER_SECONDS,
        )

    @classmethod
    def for_create(cls) -> "TransactionPolicy":
        """Tighter bounds for booking creation, which retries on top"""
        settings = get_settings()
        return cls(
            max_wait=settings.TXN_CREATE_MAX_WAIT_SECONDS,
            timeout=settings.TXN_CREATE_TIMEOUT_SECONDS,
            attempts=settings.TXN_RETRY_ATTEMPTS,
            base_delay=settings.TXN_RETRY_BASE_DELAY_SECONDS,
            max_delay=settings.TXN_RETRY_MAX_DELAY_SECONDS,
            jitter=settings.TXN_RETRY_JITTER_SECONDS,
        )


def is_transient_db_error(exc: BaseException) -> bool:
    """Whether a database error is a conflict/timeout worth retrying"""
    if isinstance(exc, PoolTimeoutError):
        return True
    if isinstance(exc, DBAPIError):
        pgcode = getattr(exc.orig, "pgcode", None)
        if pgcode in TRANSIENT_PGCODES:
            return True
        if isinstance(exc, OperationalError) and "database is locked" in str(exc.orig):
            return True
    return False


def _apply_session_bounds(db: Session, policy: TransactionPolicy) -> None:
    if db.get_bind().dialect.name != "postgresql":
        return
    db.execute(text(f"SET LOCAL lock_timeout = {int(policy.max_wait * 1000)}"))
    db.execute(text(f"SET LOCAL statement_timeout = {int(policy.timeout * 1000)}"))


def _run_once(db: Session, work: Callable[[Session], T], policy: TransactionPolicy, operation: str) -> T:
    # Start from a fresh transaction so the bounds cover the whole unit of work
    if db.in_transaction():
        db.commit()

    started = time.monotonic()
    try:
        _apply_session_bounds(db, policy)
        result = work(db)
        db.flush()

        elapsed = time.monotonic() - started
        if elapsed > policy.timeout:
            raise TransactionTimeout(
                f"{operation} exceeded its {policy.timeout:g}s limit ({elapsed:.1f}s) and was rolled back"
            )

        db.commit()
        return result
    except SQLAlchemyError as exc:
        db.rollback()
        if is_transient_db_error(exc):
            raise TransientTransactionError(
                f"{operation} hit a transient database conflict: {exc.__class__.__name__}"
            ) from exc
        raise
    except Exception:
        db.rollback()
        raise


def run_in_transaction(
        db: Session,
        work: Callable[[Session], T],
        policy: TransactionPolicy = None,
        operation: str = "transaction",
) -> T:
    """
    Run `work(db)` in one bounded transaction, retrying transient failures.

    Args:
        db: Session to run in; any open implicit transaction is committed first
        work: Unit of work; must not perform network calls
        policy: Bounds and retry schedule (TransactionPolicy.default() if omitted)
        operation: Name used in log lines and error messages

    Returns:
        Whatever `work` returns, after a successful commit

    Raises:
        TransientTransactionError: retries exhausted
        BookingError: domain precondition failed (never retried)
    """
    policy = policy or TransactionPolicy.default()

    retrying = Retrying(
        stop=stop_after_attempt(policy.attempts),
        wait=wait_exponential(multiplier=policy.base_delay, max=policy.max_delay)
        + wait_random(0, policy.jitter),
        retry=retry_if_exception_type(TransientTransactionError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    return retrying(_run_once, db, work, policy, operation)
