from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint

from restock.core.database import Base
from restock.models.mixins import TenantScopedMixin, utcnow


class Supplier(TenantScopedMixin, Base):
    __tablename__ = "suppliers"
    __table_args__ = (
        UniqueConstraint("tenant_id", "external_supplier_id", name="uq_suppliers_tenant_external"),
    )

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    contact_info = Column(Text, nullable=True)
    external_supplier_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
