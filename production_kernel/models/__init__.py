"""ORM models for the production store.  Importing this package registers every table."""

from production_kernel.models.bill_of_material import BillOfMaterialLine
from production_kernel.models.inventory_adjustment import (
    AdjustmentType,
    InventoryAdjustment,
    StockEntityType,
)
from production_kernel.models.material import Material
from production_kernel.models.product import Product
from production_kernel.models.production_request import (
    MaterialConsumptionSnapshot,
    ProductionRequest,
    RequestStatus,
)
from production_kernel.models.sequence_counter import SequenceCounter
from production_kernel.models.stock_reservation import ReservationType, StockReservation

__all__ = [
    "AdjustmentType",
    "BillOfMaterialLine",
    "InventoryAdjustment",
    "Material",
    "MaterialConsumptionSnapshot",
    "Product",
    "ProductionRequest",
    "RequestStatus",
    "ReservationType",
    "SequenceCounter",
    "StockEntityType",
    "StockReservation",
]
