"""
costing_services.retry -- Re-run a unit of work after a concurrency conflict.

Responsibility:
    Run an operation in a fresh transaction and, if it loses an optimistic
    version race (ConcurrencyConflictError), roll back and run it again
    against fresh state, up to a bounded number of attempts.

Invariants enforced:
    - Each attempt gets its own session; a failed attempt is fully rolled
      back before the next one starts.
    - Only ConcurrencyConflictError is retried.  Every other error
      propagates on the first occurrence.
    - Lines logged during an attempt carry its number as ``attempt``.

Failure modes:
    - The last ConcurrencyConflictError is re-raised once attempts run out.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.orm import Session, sessionmaker

from costing_kernel.db.engine import session_scope
from costing_kernel.exceptions import ConcurrencyConflictError, ValidationError
from costing_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.retry")

T = TypeVar("T")

# Safety limit; a hot product under heavy contention should surface, not spin
MAX_ATTEMPTS = 5


def retry_on_conflict(
    session_factory: sessionmaker[Session],
    operation: Callable[[Session], T],
    max_attempts: int = 3,
) -> T:
    """
    Run ``operation(session)`` in its own committed transaction, retrying on
    ConcurrencyConflictError.

    Usage:
        result = retry_on_conflict(
            factory,
            lambda s: FifoConsumptionEngine(s).consume(pid, qty, line_id),
        )
    """
    if not 1 <= max_attempts <= MAX_ATTEMPTS:
        raise ValidationError(
            "max_attempts", max_attempts, f"must be between 1 and {MAX_ATTEMPTS}"
        )

    attempt = 1
    while True:
        try:
            with LogContext.bind(attempt=attempt), session_scope(session_factory) as session:
                return operation(session)
        except ConcurrencyConflictError as exc:
            if attempt >= max_attempts:
                logger.error("retry_attempts_exhausted", extra={
                    "attempts": attempt,
                    "entity_type": exc.entity_type,
                    "entity_id": exc.entity_id,
                })
                raise
            logger.warning("retrying_after_conflict", extra={
                "attempt": attempt,
                "entity_type": exc.entity_type,
                "entity_id": exc.entity_id,
            })
            attempt += 1
