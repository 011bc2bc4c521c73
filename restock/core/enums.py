from __future__ import annotations

from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: "str | OrderStatus") -> "OrderStatus":
        if isinstance(value, cls):
            return value
        return cls((value or "").strip().lower())


TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})


class Role(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    STAFF = "staff"
    DELIVERY = "delivery"

    @classmethod
    def parse(cls, value: "str | Role | None") -> "Role":
        if isinstance(value, cls):
            return value
        return cls((value or "").strip().lower())


PRIVILEGED_ROLES = frozenset({Role.ADMIN, Role.MANAGER})


class SyncEntity(str, Enum):
    SECTIONS = "sections"
    SUPPLIERS = "suppliers"
    INGREDIENTS = "ingredients"


# Ingredients are matched against sections, so sections go first.
SYNC_ORDER = (SyncEntity.SECTIONS, SyncEntity.SUPPLIERS, SyncEntity.INGREDIENTS)
