"""
CatalogService -- materials, products and bill-of-materials lines.

Responsibility:
    Creates and edits the static side of the ledger store.  Stock is never
    edited here: an initial stock quantity is booked as a RECEIPT through
    StockLedger so it has an adjustment record like every other change.

Invariants enforced:
    - Material names and product SKUs are unique (MaterialExistsError,
      ProductExistsError), including under concurrent creation: a unique
      violation at flush is reclassified to the same typed error.
    - At most one BOM line per (product, material); quantity_per_unit > 0.
    - A material referenced by a BOM line or a consumption snapshot cannot
      be deleted; a product with production requests or reservations
      cannot be deleted.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from production_kernel.domain.actor import ActorContext, Operation
from production_kernel.domain.clock import Clock
from production_kernel.domain.dtos import BomLineRecord, MaterialRecord, ProductRecord
from production_kernel.domain.packaging import Direct, Packaging
from production_kernel.domain.quantity import exact_quantity
from production_kernel.exceptions import (
    BomLineExistsError,
    BomLineNotFoundError,
    InvalidQuantityError,
    MaterialExistsError,
    MaterialInUseError,
    MaterialNotFoundError,
    ProductExistsError,
    ProductInUseError,
    ProductNotFoundError,
)
from production_kernel.logging_config import get_logger
from production_kernel.models.bill_of_material import BillOfMaterialLine
from production_kernel.models.inventory_adjustment import AdjustmentType, StockEntityType
from production_kernel.models.material import Material, material_reference_counts
from production_kernel.models.product import Product
from production_kernel.models.production_request import ProductionRequest
from production_kernel.models.stock_reservation import StockReservation
from production_kernel.services.base import ServiceSettings, TransactionalService
from production_kernel.services.stock_ledger import StockLedger

logger = get_logger("services.catalog")


def _require_non_negative(field: str, value: Decimal) -> Decimal:
    value = exact_quantity(field, value)
    if value < 0:
        raise InvalidQuantityError(field, value, "must not be negative")
    return value


class CatalogService(TransactionalService):

    def __init__(
        self,
        session: Session,
        settings: ServiceSettings | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session, settings, clock)
        self._ledger = StockLedger(session, self._clock)

    # =========================================================================
    # Materials
    # =========================================================================

    def create_material(
        self,
        name: str,
        actor: ActorContext,
        unit: str = "unit",
        category: str | None = None,
        reorder_threshold: Decimal = Decimal("0"),
        packaging: Packaging | None = None,
        initial_stock: Decimal = Decimal("0"),
    ) -> MaterialRecord:
        self._authorize(actor, Operation.MANAGE_MATERIALS)
        reorder_threshold = _require_non_negative("reorder_threshold", reorder_threshold)
        initial_stock = _require_non_negative("initial_stock", initial_stock)

        def work() -> MaterialRecord:
            existing = self.session.execute(
                select(Material.id).where(Material.name == name)
            ).first()
            if existing is not None:
                raise MaterialExistsError(name)

            material = Material(
                name=name,
                unit=unit,
                category=category,
                reorder_threshold=reorder_threshold,
                stock=Decimal("0"),
                created_by_id=actor.actor_id,
            )
            material.packaging = packaging or Direct()
            self.session.add(material)
            try:
                self.session.flush()
            except IntegrityError as exc:
                raise MaterialExistsError(name) from exc

            if initial_stock > 0:
                self._ledger.apply(
                    StockEntityType.MATERIAL, material.id, initial_stock,
                    AdjustmentType.RECEIPT,
                    actor_id=actor.actor_id, reason="Initial stock",
                )
            logger.info(
                "material_created",
                extra={"material_id": str(material.id), "material_name": name},
            )
            return material.to_dto()

        return self._run_in_transaction("create_material", actor, work)

    def update_material(
        self,
        material_id: UUID,
        actor: ActorContext,
        name: str | None = None,
        unit: str | None = None,
        category: str | None = None,
        reorder_threshold: Decimal | None = None,
        packaging: Packaging | None = None,
    ) -> MaterialRecord:
        """Edit descriptive fields.  Stock is not editable here."""
        self._authorize(actor, Operation.MANAGE_MATERIALS)
        if reorder_threshold is not None:
            reorder_threshold = _require_non_negative("reorder_threshold", reorder_threshold)

        def work() -> MaterialRecord:
            material = self.session.get(Material, material_id, populate_existing=True)
            if material is None:
                raise MaterialNotFoundError(str(material_id))
            if name is not None and name != material.name:
                clash = self.session.execute(
                    select(Material.id).where(Material.name == name)
                ).first()
                if clash is not None:
                    raise MaterialExistsError(name)
                material.name = name
            if unit is not None:
                material.unit = unit
            if category is not None:
                material.category = category
            if reorder_threshold is not None:
                material.reorder_threshold = reorder_threshold
            if packaging is not None:
                material.packaging = packaging
            material.updated_by_id = actor.actor_id
            try:
                self.session.flush()
            except IntegrityError as exc:
                raise MaterialExistsError(name or material.name) from exc
            logger.info("material_updated", extra={"material_id": str(material_id)})
            return material.to_dto()

        return self._run_in_transaction("update_material", actor, work)

    def delete_material(self, material_id: UUID, actor: ActorContext) -> None:
        self._authorize(actor, Operation.MANAGE_MATERIALS)

        def work() -> None:
            material = self.session.get(Material, material_id)
            if material is None:
                raise MaterialNotFoundError(str(material_id))
            bom_lines, snapshots = material_reference_counts(self.session, material_id)
            if bom_lines or snapshots:
                raise MaterialInUseError(str(material_id), bom_lines, snapshots)
            self.session.delete(material)
            self.session.flush()
            logger.info("material_deleted", extra={"material_id": str(material_id)})

        self._run_in_transaction("delete_material", actor, work)

    # =========================================================================
    # Products
    # =========================================================================

    def create_product(
        self,
        sku: str,
        name: str,
        actor: ActorContext,
        reorder_threshold: Decimal = Decimal("0"),
        initial_stock: Decimal = Decimal("0"),
    ) -> ProductRecord:
        self._authorize(actor, Operation.MANAGE_PRODUCTS)
        reorder_threshold = _require_non_negative("reorder_threshold", reorder_threshold)
        initial_stock = _require_non_negative("initial_stock", initial_stock)

        def work() -> ProductRecord:
            existing = self.session.execute(
                select(Product.id).where(Product.sku == sku)
            ).first()
            if existing is not None:
                raise ProductExistsError(sku)

            product = Product(
                sku=sku,
                name=name,
                reorder_threshold=reorder_threshold,
                stock=Decimal("0"),
                created_by_id=actor.actor_id,
            )
            self.session.add(product)
            try:
                self.session.flush()
            except IntegrityError as exc:
                raise ProductExistsError(sku) from exc

            if initial_stock > 0:
                self._ledger.apply(
                    StockEntityType.PRODUCT, product.id, initial_stock,
                    AdjustmentType.RECEIPT,
                    actor_id=actor.actor_id, reason="Initial stock",
                )
            logger.info(
                "product_created",
                extra={"product_id": str(product.id), "sku": sku},
            )
            return product.to_dto()

        return self._run_in_transaction("create_product", actor, work)

    def update_product(
        self,
        product_id: UUID,
        actor: ActorContext,
        name: str | None = None,
        reorder_threshold: Decimal | None = None,
    ) -> ProductRecord:
        self._authorize(actor, Operation.MANAGE_PRODUCTS)
        if reorder_threshold is not None:
            reorder_threshold = _require_non_negative("reorder_threshold", reorder_threshold)

        def work() -> ProductRecord:
            product = self.session.get(Product, product_id, populate_existing=True)
            if product is None:
                raise ProductNotFoundError(str(product_id))
            if name is not None:
                product.name = name
            if reorder_threshold is not None:
                product.reorder_threshold = reorder_threshold
            product.updated_by_id = actor.actor_id
            self.session.flush()
            logger.info("product_updated", extra={"product_id": str(product_id)})
            return product.to_dto()

        return self._run_in_transaction("update_product", actor, work)

    def delete_product(self, product_id: UUID, actor: ActorContext) -> None:
        """Delete a product and its BOM lines."""
        self._authorize(actor, Operation.MANAGE_PRODUCTS)

        def work() -> None:
            product = self.session.get(Product, product_id)
            if product is None:
                raise ProductNotFoundError(str(product_id))
            requests = self.session.execute(
                select(func.count())
                .select_from(ProductionRequest)
                .where(ProductionRequest.product_id == product_id)
            ).scalar_one()
            reservations = self.session.execute(
                select(func.count())
                .select_from(StockReservation)
                .where(StockReservation.product_id == product_id)
            ).scalar_one()
            if requests or reservations:
                raise ProductInUseError(str(product_id), requests, reservations)

            self.session.execute(
                delete(BillOfMaterialLine)
                .where(BillOfMaterialLine.product_id == product_id)
                .execution_options(synchronize_session="fetch")
            )
            self.session.delete(product)
            self.session.flush()
            logger.info("product_deleted", extra={"product_id": str(product_id)})

        self._run_in_transaction("delete_product", actor, work)

    # =========================================================================
    # Bill of materials
    # =========================================================================

    def add_bom_line(
        self,
        product_id: UUID,
        material_id: UUID,
        quantity_per_unit: Decimal,
        actor: ActorContext,
        unit: str | None = None,
    ) -> BomLineRecord:
        self._authorize(actor, Operation.MANAGE_BOM)
        quantity_per_unit = exact_quantity("quantity_per_unit", quantity_per_unit)
        if quantity_per_unit <= 0:
            raise InvalidQuantityError("quantity_per_unit", quantity_per_unit)

        def work() -> BomLineRecord:
            if self.session.get(Product, product_id) is None:
                raise ProductNotFoundError(str(product_id))
            if self.session.get(Material, material_id) is None:
                raise MaterialNotFoundError(str(material_id))
            if self._find_bom_line(product_id, material_id) is not None:
                raise BomLineExistsError(str(product_id), str(material_id))

            line = BillOfMaterialLine(
                product_id=product_id,
                material_id=material_id,
                quantity_per_unit=quantity_per_unit,
                unit=unit,
                created_by_id=actor.actor_id,
            )
            self.session.add(line)
            try:
                self.session.flush()
            except IntegrityError as exc:
                raise BomLineExistsError(str(product_id), str(material_id)) from exc
            logger.info(
                "bom_line_added",
                extra={
                    "product_id": str(product_id),
                    "material_id": str(material_id),
                    "quantity_per_unit": str(quantity_per_unit),
                },
            )
            return line.to_dto()

        return self._run_in_transaction("add_bom_line", actor, work)

    def update_bom_line(
        self,
        product_id: UUID,
        material_id: UUID,
        quantity_per_unit: Decimal,
        actor: ActorContext,
        unit: str | None = None,
    ) -> BomLineRecord:
        """
        Change a line's per-unit quantity.

        Existing requests keep the quantities snapshotted at creation.
        """
        self._authorize(actor, Operation.MANAGE_BOM)
        quantity_per_unit = exact_quantity("quantity_per_unit", quantity_per_unit)
        if quantity_per_unit <= 0:
            raise InvalidQuantityError("quantity_per_unit", quantity_per_unit)

        def work() -> BomLineRecord:
            line = self._find_bom_line(product_id, material_id)
            if line is None:
                raise BomLineNotFoundError(str(product_id), str(material_id))
            line.quantity_per_unit = quantity_per_unit
            if unit is not None:
                line.unit = unit
            line.updated_by_id = actor.actor_id
            self.session.flush()
            logger.info(
                "bom_line_updated",
                extra={
                    "product_id": str(product_id),
                    "material_id": str(material_id),
                    "quantity_per_unit": str(quantity_per_unit),
                },
            )
            return line.to_dto()

        return self._run_in_transaction("update_bom_line", actor, work)

    def remove_bom_line(self, product_id: UUID, material_id: UUID, actor: ActorContext) -> None:
        self._authorize(actor, Operation.MANAGE_BOM)

        def work() -> None:
            line = self._find_bom_line(product_id, material_id)
            if line is None:
                raise BomLineNotFoundError(str(product_id), str(material_id))
            self.session.delete(line)
            self.session.flush()
            logger.info(
                "bom_line_removed",
                extra={"product_id": str(product_id), "material_id": str(material_id)},
            )

        self._run_in_transaction("remove_bom_line", actor, work)

    def _find_bom_line(self, product_id: UUID, material_id: UUID) -> BillOfMaterialLine | None:
        return self.session.execute(
            select(BillOfMaterialLine)
            .where(
                BillOfMaterialLine.product_id == product_id,
                BillOfMaterialLine.material_id == material_id,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
