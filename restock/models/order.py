import sqlalchemy as sa
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import JSONB

from restock.core.database import Base
from restock.models.mixins import TenantScopedMixin, utcnow


class Order(TenantScopedMixin, Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)

    # pending / sent / delivered / cancelled
    status = Column(String, nullable=False, default="pending", index=True)

    # Header copied out of order_data so listing by section needs no JSON operators.
    department = Column(String, nullable=False, default="", index=True)
    section_id = Column(Integer, ForeignKey("sections.id"), nullable=True)

    # {"department", "notes", "items": [...], "total_items"}
    order_data = Column(JSONB().with_variant(sa.JSON(), "sqlite"), nullable=False, default=dict)

    created_by_role = Column(String, nullable=True)
    created_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
