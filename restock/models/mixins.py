from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, ForeignKey, Integer
from sqlalchemy.orm import declared_attr


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands timestamps back naive; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TenantScopedMixin:
    """Rows owned by exactly one tenant.

    Sessions opened through the tenant guard filter every ORM statement on
    this column automatically, see ``restock.services.tenant_context``.
    """

    @declared_attr
    def tenant_id(cls):
        return Column(Integer, ForeignKey("tenants.id"), index=True, nullable=False)
