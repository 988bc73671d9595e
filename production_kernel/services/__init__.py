"""Services for the production kernel (write side)."""

from production_kernel.services.adjustment_service import AdjustmentService
from production_kernel.services.base import ServiceSettings, is_transient_error
from production_kernel.services.catalog_service import CatalogService
from production_kernel.services.production_request_service import (
    ProductionRequestService,
)
from production_kernel.services.reservation_service import OrderLine, ReservationService
from production_kernel.services.sequence_service import SequenceService
from production_kernel.services.stock_ledger import StockChange, StockLedger

__all__ = [
    "AdjustmentService",
    "CatalogService",
    "OrderLine",
    "ProductionRequestService",
    "ReservationService",
    "SequenceService",
    "ServiceSettings",
    "StockChange",
    "StockLedger",
    "is_transient_error",
]
