"""
costing_services.report_cache -- Explicitly invalidated cache for reports.

Responsibility:
    Hold computed report results keyed ``(product_id | None, date_range,
    metric)`` and cost snapshots keyed ``(product_id, layer_version)``, and
    drop them when a change to the layer ledger commits.

Architecture position:
    Services -- shared, process-level helper.  One instance is created by
    the application and handed to the LayerStore (which queues
    invalidations) and to the read services (which populate and read).

Invariants enforced:
    - Invalidation is transactional.  A ledger write queues its product on
      the writing session; the queue is applied after that session commits
      and discarded if the transaction ends any other way.
    - A session holding uncommitted ledger writes neither reads nor fills
      the cache, so a report can never carry state that is later rolled
      back.
    - A fill is refused if any invalidation committed since the reader's
      lookup (generation check), so a report computed from pre-commit
      state cannot outlive the commit.
    - A committed change for product P drops every report entry keyed on P
      and every all-products (``None``) entry, plus P's snapshots.
    - Cached values are frozen dataclasses; callers can never mutate a
      shared result.

Failure modes:
    - None.  A miss or a refused fill simply means the caller recomputes.

Audit relevance:
    Snapshots are additionally keyed by ``layer_version``, so a snapshot
    can never be served for a ledger state other than the one it was
    computed from.
"""

from __future__ import annotations

import threading
from collections.abc import Hashable
from typing import Any

from sqlalchemy import event
from sqlalchemy.orm import Session, SessionTransaction

from costing_kernel.domain.dtos import DateRange, ProductCostSnapshot
from costing_kernel.logging_config import get_logger

logger = get_logger("services.report_cache")

ReportKey = tuple[int | None, DateRange | None, str]

# session.info key: {ReportCache: set of product ids awaiting commit}
PENDING_INVALIDATIONS = "costing_pending_invalidations"


class ReportCache:
    """
    Thread-safe in-process cache for report results and cost snapshots.

    Contract:
        Readers call ``fill_token(session)`` first; a ``None`` token means
        bypass the cache entirely.  Otherwise ``get_report``/``get_snapshot``
        and, on a miss, ``put_report``/``put_snapshot`` with that token.
        Writers call ``queue_invalidation(session, product_id)``.

    Non-goals:
        - No TTL and no size bound; entries live until invalidated or
          ``clear()`` is called.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._reports: dict[ReportKey, Any] = {}
        self._snapshots: dict[tuple[int, int], ProductCostSnapshot] = {}
        self._generation = 0
        self.hits = 0
        self.misses = 0
        register_cache_listeners()

    @staticmethod
    def report_key(
        product_id: int | None,
        date_range: DateRange | None,
        metric: Hashable,
    ) -> ReportKey:
        return (product_id, date_range, str(getattr(metric, "value", metric)))

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    # =========================================================================
    # Session coordination
    # =========================================================================

    def queue_invalidation(self, session: Session, product_id: int) -> None:
        """Drop ``product_id``'s entries once ``session`` commits."""
        pending = session.info.setdefault(PENDING_INVALIDATIONS, {})
        pending.setdefault(self, set()).add(product_id)

    def has_pending(self, session: Session) -> bool:
        return bool(session.info.get(PENDING_INVALIDATIONS, {}).get(self))

    def fill_token(self, session: Session) -> int | None:
        """
        Generation a reader in ``session`` must hand back when filling.

        None while the session holds uncommitted ledger writes: what it
        sees may never commit.
        """
        if self.has_pending(session):
            return None
        return self.generation

    # =========================================================================
    # Entries
    # =========================================================================

    def get_report(self, key: ReportKey) -> Any | None:
        with self._lock:
            value = self._reports.get(key)
            if value is None:
                self.misses += 1
            else:
                self.hits += 1
            return value

    def put_report(self, key: ReportKey, value: Any, generation: int | None = None) -> bool:
        """Store ``value``; refused when ``generation`` is no longer current."""
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            self._reports[key] = value
            return True

    def get_snapshot(self, product_id: int, layer_version: int) -> ProductCostSnapshot | None:
        with self._lock:
            snap = self._snapshots.get((product_id, layer_version))
            if snap is None:
                self.misses += 1
            else:
                self.hits += 1
            return snap

    def put_snapshot(self, snapshot: ProductCostSnapshot, generation: int | None = None) -> bool:
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            self._snapshots[(snapshot.product_id, snapshot.as_of_version)] = snapshot
            return True

    def invalidate_product(self, product_id: int) -> int:
        """Drop P's entries and all-product entries; return how many went."""
        with self._lock:
            self._generation += 1
            stale = [k for k in self._reports if k[0] is None or k[0] == product_id]
            for k in stale:
                del self._reports[k]
            stale_snaps = [k for k in self._snapshots if k[0] == product_id]
            for k in stale_snaps:
                del self._snapshots[k]

        dropped = len(stale) + len(stale_snaps)
        logger.debug("report_cache_invalidated", extra={
            "product_id": product_id,
            "entries_dropped": dropped,
        })
        return dropped

    def clear(self) -> None:
        with self._lock:
            self._generation += 1
            self._reports.clear()
            self._snapshots.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._reports) + len(self._snapshots)


# =============================================================================
# Session listeners
# =============================================================================


def _apply_pending_invalidations(session: Session) -> None:
    for cache, product_ids in session.info.pop(PENDING_INVALIDATIONS, {}).items():
        for product_id in sorted(product_ids):
            cache.invalidate_product(product_id)


def _discard_pending_invalidations(session: Session, transaction: SessionTransaction) -> None:
    # after_commit has already drained the queue on the commit path
    if transaction.parent is not None:
        return
    pending = session.info.pop(PENDING_INVALIDATIONS, None)
    if pending:
        logger.debug("report_cache_invalidations_discarded", extra={
            "product_ids": sorted(pid for ids in pending.values() for pid in ids),
        })


def _listeners():
    return [
        (Session, "after_commit", _apply_pending_invalidations),
        (Session, "after_transaction_end", _discard_pending_invalidations),
    ]


def register_cache_listeners() -> None:
    """Register the commit/rollback listeners for queued invalidations (idempotent)."""
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)
