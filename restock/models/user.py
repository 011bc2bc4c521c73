from sqlalchemy import Boolean, Column, DateTime, Integer, String

from restock.core.database import Base
from restock.models.mixins import TenantScopedMixin, utcnow


class User(TenantScopedMixin, Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    # Unique across all tenants: login happens before the tenant is known.
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False, default="")
    password_hash = Column(String, nullable=False)
    role = Column(String, nullable=False, default="staff")  # admin / manager / staff / delivery
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
