from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from restock.core.database import Base
from restock.models.mixins import TenantScopedMixin, utcnow


class Section(TenantScopedMixin, Base):
    __tablename__ = "sections"
    __table_args__ = (
        UniqueConstraint("tenant_id", "external_storage_id", name="uq_sections_tenant_storage"),
    )

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    icon = Column(String, nullable=False, default="📍")
    # Null for sections that exist only locally.
    external_storage_id = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    assignments = relationship("SectionAssignment", back_populates="section", cascade="all, delete-orphan")


class SectionAssignment(TenantScopedMixin, Base):
    __tablename__ = "section_assignments"
    __table_args__ = (
        UniqueConstraint("user_id", "section_id", name="uq_section_assignments_user_section"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    section_id = Column(Integer, ForeignKey("sections.id"), index=True, nullable=False)
    can_send_orders = Column(Boolean, nullable=False, default=False)
    can_receive_supplies = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    section = relationship("Section", back_populates="assignments")
