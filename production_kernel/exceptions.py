"""
Typed Exception Hierarchy for the Production Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the kernel (an HTTP layer, a job runner, a CLI) need to react to
failures precisely: show the shortage list, ask the user to pick another
product, retry on a lock conflict. Matching on message text is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, transport-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        service.complete_request(request_id, actor)
    except InsufficientMaterialsError as e:
        for shortage in e.shortages:
            reorder(shortage.material_id, shortage.shortfall)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ProductionKernelError (base)
    |
    +-- CatalogError
    |   +-- ProductNotFoundError
    |   +-- MaterialNotFoundError
    |   +-- NoBillOfMaterialsError
    |   +-- BomLineNotFoundError
    |   +-- BomLineExistsError
    |   +-- MaterialExistsError
    |   +-- ProductExistsError
    |   +-- MaterialInUseError
    |   +-- ProductInUseError
    |   +-- InvalidQuantityError
    |
    +-- ProductionRequestError
    |   +-- RequestNotFoundError
    |   +-- AlreadyCompletedError
    |   +-- RequestCompletedError
    |   +-- RequestCancelledError
    |   +-- InsufficientMaterialsError
    |
    +-- InventoryError
    |   +-- InsufficientStockError
    |   +-- OrderNotReservableError
    |   +-- InvalidAdjustmentError
    |   +-- ReservationNotFoundError
    |
    +-- AuthorizationError
    |   +-- ForbiddenError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |   +-- StockConflictError
    |   +-- RetriesExhaustedError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Catalog         | PRODUCT_NOT_FOUND           | Product ID doesn't exist
                | MATERIAL_NOT_FOUND          | Material ID doesn't exist
                | NO_BOM                      | Product has no BOM lines
                | BOM_NOT_FOUND               | No BOM line for (product, material)
                | BOM_EXISTS                  | Duplicate (product, material) line
                | MATERIAL_EXISTS             | Duplicate material name
                | PRODUCT_EXISTS              | Duplicate product SKU
                | MATERIAL_IN_USE             | Delete of a referenced material
                | PRODUCT_IN_USE              | Delete of a product with requests
                | INVALID_QUANTITY            | Quantity must be > 0
----------------|-----------------------------|-----------------------------------------
Request         | REQUEST_NOT_FOUND           | Request ID doesn't exist
                | ALREADY_COMPLETED           | Complete on a completed request
                | REQUEST_COMPLETED           | Start/cancel on a completed request
                | REQUEST_CANCELLED           | Any transition on a cancelled request
                | INSUFFICIENT_MATERIALS      | Binding check failed (all shortages)
----------------|-----------------------------|-----------------------------------------
Inventory       | INSUFFICIENT_STOCK          | Reservation exceeds ATP
                | ORDER_NOT_RESERVABLE        | Some order line exceeds ATP
                | INVALID_ADJUSTMENT          | Adjustment would go below zero
                | RESERVATION_NOT_FOUND       | Reservation ID doesn't exist
----------------|-----------------------------|-----------------------------------------
Authorization   | FORBIDDEN                   | Role not in the operation allow-list
----------------|-----------------------------|-----------------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT    | Concurrent modification detected
                | STOCK_CONFLICT              | Conditional stock update hit 0 rows
                | RETRIES_EXHAUSTED           | Transient failure persisted
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying an append-only/terminal row

===============================================================================
RETRY POLICY
===============================================================================

Only ConcurrencyError (minus RetriesExhaustedError) and storage-level
deadlock/serialization failures are retried, and only by the transaction
runner in services/base.py. Precondition, state-conflict and authorization
errors are never retried.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable


class ProductionKernelError(Exception):
    """
    Base exception for all production kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PRODUCTION_KERNEL_ERROR"


# Catalog-related exceptions


class CatalogError(ProductionKernelError):
    """Base exception for product, material and BOM errors."""

    code: str = "CATALOG_ERROR"


class ProductNotFoundError(CatalogError):
    """Product with given ID was not found."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = str(product_id)
        super().__init__(f"Product not found: {product_id}")


class MaterialNotFoundError(CatalogError):
    """Material with given ID was not found."""

    code: str = "MATERIAL_NOT_FOUND"

    def __init__(self, material_id: str):
        self.material_id = str(material_id)
        super().__init__(f"Material not found: {material_id}")


class NoBillOfMaterialsError(CatalogError):
    """
    Product has zero BOM lines.

    A production request cannot be created without a recipe. This is a
    hard precondition, not a warning.
    """

    code: str = "NO_BOM"

    def __init__(self, product_id: str):
        self.product_id = str(product_id)
        super().__init__(f"Product {product_id} has no bill of materials")


class BomLineNotFoundError(CatalogError):
    """No BOM line exists for the (product, material) pair."""

    code: str = "BOM_NOT_FOUND"

    def __init__(self, product_id: str, material_id: str):
        self.product_id = str(product_id)
        self.material_id = str(material_id)
        super().__init__(
            f"No BOM line for product {product_id} and material {material_id}"
        )


class BomLineExistsError(CatalogError):
    """A BOM line already exists for the (product, material) pair."""

    code: str = "BOM_EXISTS"

    def __init__(self, product_id: str, material_id: str):
        self.product_id = str(product_id)
        self.material_id = str(material_id)
        super().__init__(
            f"BOM line already exists for product {product_id} "
            f"and material {material_id}"
        )


class MaterialExistsError(CatalogError):
    """A material with the same name already exists."""

    code: str = "MATERIAL_EXISTS"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Material already exists: {name}")


class ProductExistsError(CatalogError):
    """A product with the same SKU already exists."""

    code: str = "PRODUCT_EXISTS"

    def __init__(self, sku: str):
        self.sku = sku
        super().__init__(f"Product already exists: {sku}")


class MaterialInUseError(CatalogError):
    """Material is referenced by a BOM line or a consumption snapshot."""

    code: str = "MATERIAL_IN_USE"

    def __init__(self, material_id: str, bom_lines: int, snapshots: int):
        self.material_id = str(material_id)
        self.bom_lines = bom_lines
        self.snapshots = snapshots
        super().__init__(
            f"Material {material_id} is referenced by {bom_lines} BOM line(s) "
            f"and {snapshots} production request snapshot(s)"
        )


class ProductInUseError(CatalogError):
    """Product has production requests and cannot be deleted."""

    code: str = "PRODUCT_IN_USE"

    def __init__(self, product_id: str, request_count: int, reservation_count: int = 0):
        self.product_id = str(product_id)
        self.request_count = request_count
        self.reservation_count = reservation_count
        super().__init__(
            f"Product {product_id} has {request_count} production request(s) "
            f"and {reservation_count} reservation(s)"
        )


class InvalidQuantityError(CatalogError):
    """A quantity argument is out of range."""

    code: str = "INVALID_QUANTITY"

    def __init__(
        self,
        field: str,
        value: Decimal,
        requirement: str = "must be greater than zero",
    ):
        self.field = field
        self.value = value
        self.requirement = requirement
        super().__init__(f"{field} {requirement}, got {value}")


# Production request exceptions


class ProductionRequestError(ProductionKernelError):
    """Base exception for production request lifecycle errors."""

    code: str = "PRODUCTION_REQUEST_ERROR"


class RequestNotFoundError(ProductionRequestError):
    """Production request with given ID was not found."""

    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = str(request_id)
        super().__init__(f"Production request not found: {request_id}")


class AlreadyCompletedError(ProductionRequestError):
    """Complete was called on a request that is already completed."""

    code: str = "ALREADY_COMPLETED"

    def __init__(self, request_id: str):
        self.request_id = str(request_id)
        super().__init__(f"Production request {request_id} is already completed")


class RequestCompletedError(ProductionRequestError):
    """A non-complete transition was attempted on a completed request."""

    code: str = "REQUEST_COMPLETED"

    def __init__(self, request_id: str, operation: str):
        self.request_id = str(request_id)
        self.operation = operation
        super().__init__(
            f"Cannot {operation} production request {request_id}: "
            "request is completed"
        )


class RequestCancelledError(ProductionRequestError):
    """A transition was attempted on a cancelled request."""

    code: str = "REQUEST_CANCELLED"

    def __init__(self, request_id: str, operation: str):
        self.request_id = str(request_id)
        self.operation = operation
        super().__init__(
            f"Cannot {operation} production request {request_id}: "
            "request is cancelled"
        )


@dataclass(frozen=True)
class MaterialShortage:
    """One short material in an InsufficientMaterialsError."""

    material_id: str
    material_name: str
    required: Decimal
    available: Decimal

    @property
    def shortfall(self) -> Decimal:
        return self.required - self.available

    def to_dict(self) -> dict:
        return {
            "material_id": self.material_id,
            "material_name": self.material_name,
            "required": str(self.required),
            "available": str(self.available),
        }


class InsufficientMaterialsError(ProductionRequestError):
    """
    Live material stock cannot cover a production request.

    Reports every short material, not just the first, so the caller can
    decide on a partial reorder.
    """

    code: str = "INSUFFICIENT_MATERIALS"

    def __init__(self, request_id: str, shortages: Iterable[MaterialShortage]):
        self.request_id = str(request_id)
        self.shortages = tuple(shortages)
        summary = ", ".join(
            f"{s.material_name} (required {s.required}, available {s.available})"
            for s in self.shortages
        )
        super().__init__(
            f"Insufficient materials for production request {request_id}: {summary}"
        )


# Inventory exceptions


class InventoryError(ProductionKernelError):
    """Base exception for stock and reservation errors."""

    code: str = "INVENTORY_ERROR"


class InsufficientStockError(InventoryError):
    """Reservation quantity exceeds available-to-promise."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: str, requested: Decimal, available: Decimal):
        self.product_id = str(product_id)
        self.requested = requested
        self.available = available
        super().__init__(
            f"Only {available} units available to reserve for product "
            f"{product_id}, requested {requested}"
        )


@dataclass(frozen=True)
class StockShortage:
    """One short product line in an OrderNotReservableError."""

    product_id: str
    requested: Decimal
    available: Decimal


class OrderNotReservableError(InventoryError):
    """
    At least one line of an order exceeds available-to-promise.

    Nothing is reserved; every short line is reported.
    """

    code: str = "ORDER_NOT_RESERVABLE"

    def __init__(self, order_ref: str, shortages: Iterable[StockShortage]):
        self.order_ref = order_ref
        self.shortages = tuple(shortages)
        super().__init__(
            f"Order {order_ref} cannot be reserved: "
            f"{len(self.shortages)} line(s) exceed available stock"
        )


class InvalidAdjustmentError(InventoryError):
    """Adjustment would drive stock below zero."""

    code: str = "INVALID_ADJUSTMENT"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        quantity_before: Decimal,
        quantity_after: Decimal,
    ):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.quantity_before = quantity_before
        self.quantity_after = quantity_after
        super().__init__(
            f"Adjustment would result in negative stock for {entity_type} "
            f"{entity_id}: {quantity_before} -> {quantity_after}"
        )


class ReservationNotFoundError(InventoryError):
    """Reservation with given ID was not found."""

    code: str = "RESERVATION_NOT_FOUND"

    def __init__(self, reservation_id: str):
        self.reservation_id = str(reservation_id)
        super().__init__(f"Reservation not found: {reservation_id}")


# Authorization exceptions


class AuthorizationError(ProductionKernelError):
    """Base exception for authorization errors."""

    code: str = "AUTHORIZATION_ERROR"


class ForbiddenError(AuthorizationError):
    """Actor's role is not in the operation's allow-list."""

    code: str = "FORBIDDEN"

    def __init__(
        self,
        actor_id: str,
        role: str,
        operation: str,
        allowed_roles: Iterable[str],
    ):
        self.actor_id = str(actor_id)
        self.role = role
        self.operation = operation
        self.allowed_roles = tuple(sorted(allowed_roles))
        super().__init__(
            f"Role '{role}' may not {operation}; "
            f"allowed: {', '.join(self.allowed_roles)}"
        )


# Concurrency-related exceptions


class ConcurrencyError(ProductionKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


class StockConflictError(ConcurrencyError):
    """
    A conditional stock update matched zero rows.

    Raised when the row still exists but no longer satisfies the guard
    (stock >= required), i.e. another transaction consumed it first.
    """

    code: str = "STOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, delta: Decimal):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.delta = delta
        super().__init__(
            f"Conditional stock update of {delta} on {entity_type} "
            f"{entity_id} matched no rows"
        )


class RetriesExhaustedError(ConcurrencyError):
    """A transient failure persisted across every allowed attempt."""

    code: str = "RETRIES_EXHAUSTED"

    def __init__(self, operation: str, attempts: int):
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            f"Operation {operation} failed after {attempts} attempt(s) "
            "due to concurrent modification"
        )


# Immutability-related exceptions


class ImmutabilityError(ProductionKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    InventoryAdjustment rows are append-only; consumption snapshots are
    frozen once their request leaves pending; terminal requests are frozen.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
