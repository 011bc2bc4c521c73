from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from restock.core.database import Base
from restock.models.mixins import utcnow


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False, default="Restaurant")
    # Soft delete only; tenants are never removed.
    is_active = Column(Boolean, nullable=False, default=True)

    # POS account link (filled by the account linking flow)
    pos_account_name = Column(String, unique=True, index=True, nullable=True)
    pos_account_id = Column(String, nullable=True)
    pos_access_token = Column(Text, nullable=True)
    default_storage_id = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def pos_configured(self) -> bool:
        return bool(self.pos_access_token and self.pos_account_name)
