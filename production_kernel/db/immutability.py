"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The adjustment trail is only worth something if it cannot be rewritten,
and a request's consumption snapshot is only a snapshot if it cannot drift.
Services never update these rows; the listeners below make sure no other
code path does either.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database:

    session.flush()
         |
         v
    [before_flush]   --> referenced Material deletes   --> MaterialInUseError
    [before_update]  --> _check_*_immutability()       --> ImmutabilityViolationError
    [before_delete]  --> _check_*_delete()             --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                      | When Immutable                      | Operations blocked
----------------------------|-------------------------------------|-------------------
InventoryAdjustment         | ALWAYS                              | UPDATE, DELETE
MaterialConsumptionSnapshot | ALWAYS (update); parent not pending | UPDATE, DELETE
ProductionRequest           | status completed or cancelled       | UPDATE, DELETE
Material                    | referenced by BOM line or snapshot  | DELETE

Bulk ``update()``/``delete()`` statements bypass mapper events; the kernel
issues those only against Material/Product stock and StockReservation rows.

===============================================================================
"""

from sqlalchemy import event, inspect, select
from sqlalchemy.orm import Session

from production_kernel.exceptions import ImmutabilityViolationError, MaterialInUseError
from production_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _blocked(entity_type: str, entity_id, operation: str, reason: str) -> ImmutabilityViolationError:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _persisted_value(target, attribute: str):
    """Value of ``attribute`` as it is in the database, ignoring pending changes."""
    history = inspect(target).attrs[attribute].history
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return getattr(target, attribute)


def _check_material_deletion_before_flush(session, flush_context, instances):
    """Refuse to delete a Material still referenced by a BOM line or snapshot."""
    from production_kernel.models.material import Material, material_reference_counts

    for obj in list(session.deleted):
        if not isinstance(obj, Material):
            continue
        with session.no_autoflush:
            bom_lines, snapshots = material_reference_counts(session, obj.id)
        if bom_lines or snapshots:
            logger.error(
                "immutability_violation_blocked",
                extra={
                    "entity_type": "Material",
                    "entity_id": str(obj.id),
                    "operation": "DELETE",
                    "reason": "material_in_use",
                },
            )
            raise MaterialInUseError(str(obj.id), bom_lines, snapshots)


def _check_adjustment_immutability(mapper, connection, target):
    raise _blocked(
        "InventoryAdjustment", target.id, "UPDATE",
        "Inventory adjustments are append-only and cannot be modified",
    )


def _check_adjustment_delete(mapper, connection, target):
    raise _blocked(
        "InventoryAdjustment", target.id, "DELETE",
        "Inventory adjustments are append-only and cannot be deleted",
    )


def _check_snapshot_immutability(mapper, connection, target):
    raise _blocked(
        "MaterialConsumptionSnapshot", target.id, "UPDATE",
        "Consumption snapshots are fixed at request creation",
    )


def _check_snapshot_delete(mapper, connection, target):
    from production_kernel.models.production_request import (
        ProductionRequest,
        RequestStatus,
    )

    requests = ProductionRequest.__table__
    status = connection.execute(
        select(requests.c.status).where(requests.c.id == target.request_id)
    ).scalar()
    if status is not None and status != RequestStatus.PENDING.value:
        raise _blocked(
            "MaterialConsumptionSnapshot", target.id, "DELETE",
            f"Snapshot cannot be deleted once its request is {status}",
        )


def _check_request_immutability(mapper, connection, target):
    from production_kernel.models.production_request import RequestStatus

    status = RequestStatus(_persisted_value(target, "status"))
    if status.is_terminal:
        raise _blocked(
            "ProductionRequest", target.id, "UPDATE",
            f"Production request is {status.value} and can no longer change",
        )


def _check_request_delete(mapper, connection, target):
    from production_kernel.models.production_request import RequestStatus

    status = RequestStatus(_persisted_value(target, "status"))
    if status.is_terminal:
        raise _blocked(
            "ProductionRequest", target.id, "DELETE",
            f"Production request is {status.value} and cannot be deleted",
        )


def _listener_table():
    from production_kernel.models.inventory_adjustment import InventoryAdjustment
    from production_kernel.models.production_request import (
        MaterialConsumptionSnapshot,
        ProductionRequest,
    )

    return (
        (Session, "before_flush", _check_material_deletion_before_flush),
        (InventoryAdjustment, "before_update", _check_adjustment_immutability),
        (InventoryAdjustment, "before_delete", _check_adjustment_delete),
        (MaterialConsumptionSnapshot, "before_update", _check_snapshot_immutability),
        (MaterialConsumptionSnapshot, "before_delete", _check_snapshot_delete),
        (ProductionRequest, "before_update", _check_request_immutability),
        (ProductionRequest, "before_delete", _check_request_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement listeners.  Idempotent.

    Called by ``init_engine_from_url``; tests may unregister temporarily.
    """
    for target, event_name, fn in _listener_table():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """Remove immutability listeners.  FOR TESTING ONLY."""
    for target, event_name, fn in _listener_table():
        _safe_remove_listener(target, event_name, fn)
