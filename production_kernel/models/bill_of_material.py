"""BillOfMaterialLine -- per-unit requirement of one material for one product."""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from production_kernel.db.base import TrackedBase, UUIDString
from production_kernel.domain.bom import BomLine
from production_kernel.domain.dtos import BomLineRecord


class BillOfMaterialLine(TrackedBase):
    __tablename__ = "bill_of_material_lines"

    __table_args__ = (
        UniqueConstraint("product_id", "material_id", name="uq_bom_product_material"),
        CheckConstraint("quantity_per_unit > 0", name="ck_bom_quantity_positive"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False, index=True
    )
    material_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("materials.id"), nullable=False, index=True
    )
    quantity_per_unit: Mapped[Decimal] = mapped_column(nullable=False)
    # Overrides the material's unit of measure for display only.
    unit: Mapped[str | None] = mapped_column(String(20), nullable=True)

    product: Mapped["Product"] = relationship(back_populates="bom_lines")  # noqa: F821
    material: Mapped["Material"] = relationship(lazy="joined")  # noqa: F821

    def to_bom_line(self) -> BomLine:
        return BomLine(
            material_id=self.material_id,
            material_name=self.material.name,
            quantity_per_unit=self.quantity_per_unit,
            unit=self.unit or self.material.unit,
        )

    def to_dto(self) -> BomLineRecord:
        return BomLineRecord(
            id=self.id,
            product_id=self.product_id,
            material_id=self.material_id,
            material_name=self.material.name,
            quantity_per_unit=self.quantity_per_unit,
            unit=self.unit or self.material.unit,
        )
