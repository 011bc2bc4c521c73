from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from restock.core.database import Base
from restock.models.mixins import TenantScopedMixin, utcnow


class Product(TenantScopedMixin, Base):
    """Ingredient as stocked in one section."""

    __tablename__ = "products"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "section_id",
            "external_ingredient_id",
            name="uq_products_tenant_section_ingredient",
        ),
    )

    id = Column(Integer, primary_key=True)
    section_id = Column(Integer, ForeignKey("sections.id"), index=True, nullable=False)
    name = Column(String, nullable=False)
    unit = Column(String, nullable=False, default="pcs")
    external_ingredient_id = Column(String, nullable=True)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    section = relationship("Section")
    supplier = relationship("Supplier")
