"""
Material -- a raw material held in stock.

``stock`` is a shared mutable hotspot.  It is written only by
``services.stock_ledger.StockLedger`` via conditional UPDATE statements;
nothing assigns ``Material.stock`` on a loaded instance after creation.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, Index, String, func, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from production_kernel.db.base import TrackedBase
from production_kernel.domain.dtos import MaterialRecord
from production_kernel.domain.packaging import (
    Packaging,
    PackagingKind,
    packaging_from_columns,
    packaging_to_columns,
)


class Material(TrackedBase):
    __tablename__ = "materials"

    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_materials_stock_non_negative"),
        CheckConstraint(
            "(packaging_kind = 'per_unit' AND quantity_per_unit > 0) "
            "OR (packaging_kind = 'direct' AND quantity_per_unit IS NULL)",
            name="ck_materials_packaging_variant",
        ),
        Index("idx_materials_category", "category"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="unit")
    stock: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    reorder_threshold: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0")
    )
    packaging_kind: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PackagingKind.DIRECT.value
    )
    quantity_per_unit: Mapped[Decimal | None] = mapped_column(nullable=True)

    @property
    def packaging(self) -> Packaging:
        return packaging_from_columns(self.packaging_kind, self.quantity_per_unit)

    @packaging.setter
    def packaging(self, value: Packaging) -> None:
        self.packaging_kind, self.quantity_per_unit = packaging_to_columns(value)

    def to_dto(self) -> MaterialRecord:
        return MaterialRecord(
            id=self.id,
            name=self.name,
            category=self.category,
            unit=self.unit,
            stock=self.stock,
            reorder_threshold=self.reorder_threshold,
            packaging=self.packaging,
        )

    def __repr__(self) -> str:
        return f"<Material {self.name} stock={self.stock}>"


def material_reference_counts(session: Session, material_id: UUID) -> tuple[int, int]:
    """(BOM lines, consumption snapshots) referencing a material."""
    from production_kernel.models.bill_of_material import BillOfMaterialLine
    from production_kernel.models.production_request import MaterialConsumptionSnapshot

    bom_lines = session.execute(
        select(func.count())
        .select_from(BillOfMaterialLine)
        .where(BillOfMaterialLine.material_id == material_id)
    ).scalar_one()
    snapshots = session.execute(
        select(func.count())
        .select_from(MaterialConsumptionSnapshot)
        .where(MaterialConsumptionSnapshot.material_id == material_id)
    ).scalar_one()
    return bom_lines, snapshots
