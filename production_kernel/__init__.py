"""
Production kernel.

Turns raw materials into finished products through production requests and
shapes what can be promised to sales orders through stock reservations.

Public surface:
    - services.production_request_service.ProductionRequestService
    - services.reservation_service.ReservationService
    - services.adjustment_service.AdjustmentService
    - services.catalog_service.CatalogService
    - selectors.inventory_selector.InventorySelector
"""

__version__ = "0.1.0"
