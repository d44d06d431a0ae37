"""
ORM-Level Immutability Enforcement for the layer ledger.

===============================================================================
WHY THIS EXISTS
===============================================================================

COGS must be reconstructible from the ledger at any time.  That only holds if
the ledger is append-only:

  - InventoryLayer rows are never deleted, and the only field that may ever
    change is remaining_qty, which may only go DOWN.
  - ConsumptionRecord rows are write-once journal entries: no updates, no
    deletes.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check the rules:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*_delete() --------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

The check constraints on inventory_layers (0 <= remaining_qty <= original_qty)
are the second line: they catch raw SQL that bypasses the ORM.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | Rule
--------------------|--------------------------------------------------------
InventoryLayer      | Only remaining_qty (and its version counter) may change;
                    | remaining_qty may only decrease and never below zero;
                    | never deleted
ConsumptionRecord   | ALWAYS immutable from creation; never deleted
"""

from sqlalchemy import event, inspect

from costing_kernel.exceptions import ImmutabilityViolationError
from costing_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Fields of an inventory layer that may legitimately change after insert.
LAYER_MUTABLE_FIELDS = frozenset({"remaining_qty", "version"})


def _blocked(entity_type: str, entity_id, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
            "reason": reason,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


def _check_layer_immutability(mapper, connection, target):
    """
    Allow only a decrease of remaining_qty on an inventory layer.
    """
    state = inspect(target)
    for attr in state.attrs:
        history = attr.history
        if not history.has_changes():
            continue
        if attr.key not in LAYER_MUTABLE_FIELDS:
            _blocked(
                "InventoryLayer",
                target.id,
                "UPDATE",
                f"field '{attr.key}' is immutable after creation",
            )
        if attr.key == "remaining_qty" and history.deleted and history.added:
            old, new = history.deleted[0], history.added[0]
            if new is None or new < 0:
                _blocked(
                    "InventoryLayer",
                    target.id,
                    "UPDATE",
                    f"remaining_qty cannot go below zero (got {new})",
                )
            if old is not None and new > old:
                _blocked(
                    "InventoryLayer",
                    target.id,
                    "UPDATE",
                    f"remaining_qty may only decrease ({old} -> {new}); "
                    "returns and adjustments must append a new layer",
                )


def _check_layer_delete(mapper, connection, target):
    """Inventory layers are retained forever, including exhausted ones."""
    _blocked(
        "InventoryLayer",
        target.id,
        "DELETE",
        "inventory layers cannot be deleted",
    )


def _check_consumption_record_immutability(mapper, connection, target):
    """Consumption records are write-once."""
    _blocked(
        "ConsumptionRecord",
        target.id,
        "UPDATE",
        "consumption records are immutable and cannot be modified",
    )


def _check_consumption_record_delete(mapper, connection, target):
    """Consumption records are the COGS audit trail."""
    _blocked(
        "ConsumptionRecord",
        target.id,
        "DELETE",
        "consumption records cannot be deleted",
    )


def _listeners():
    from costing_kernel.models.consumption_record import ConsumptionRecordModel
    from costing_kernel.models.inventory_layer import InventoryLayerModel

    return (
        (InventoryLayerModel, "before_update", _check_layer_immutability),
        (InventoryLayerModel, "before_delete", _check_layer_delete),
        (ConsumptionRecordModel, "before_update", _check_consumption_record_immutability),
        (ConsumptionRecordModel, "before_delete", _check_consumption_record_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners (idempotent).

    Called by init_engine_from_url(); test fixtures that build their own
    engines call it directly.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
