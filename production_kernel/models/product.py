"""Product -- a finished good, credited when a production request completes."""

from decimal import Decimal

from sqlalchemy import CheckConstraint, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from production_kernel.db.base import TrackedBase
from production_kernel.domain.dtos import ProductRecord


class Product(TrackedBase):
    __tablename__ = "products"

    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
    )

    sku: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    stock: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    reorder_threshold: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0")
    )

    bom_lines: Mapped[list["BillOfMaterialLine"]] = relationship(  # noqa: F821
        back_populates="product",
        order_by="BillOfMaterialLine.created_at",
    )

    def to_dto(self) -> ProductRecord:
        return ProductRecord(
            id=self.id,
            sku=self.sku,
            name=self.name,
            stock=self.stock,
            reorder_threshold=self.reorder_threshold,
        )

    def __repr__(self) -> str:
        return f"<Product {self.sku} stock={self.stock}>"
