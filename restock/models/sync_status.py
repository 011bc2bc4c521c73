from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, UniqueConstraint

from restock.core.database import Base
from restock.models.mixins import TenantScopedMixin, utcnow


class SyncStatus(TenantScopedMixin, Base):
    __tablename__ = "sync_status"
    __table_args__ = (
        UniqueConstraint("tenant_id", "entity_type", name="uq_sync_status_tenant_entity"),
    )

    id = Column(Integer, primary_key=True)
    entity_type = Column(String, nullable=False)  # sections / suppliers / ingredients
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    last_sync_success = Column(Boolean, nullable=False, default=True)
    last_sync_error = Column(Text, nullable=True)
    sync_count = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
