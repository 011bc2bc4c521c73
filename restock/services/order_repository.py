from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from restock.core.config import ORDER_LIST_DEFAULT_LIMIT, ORDER_LIST_MAX_LIMIT
from restock.core.enums import OrderStatus
from restock.core.errors import NotFoundError, RestockError
from restock.models.mixins import as_utc, utcnow
from restock.models.order import Order
from restock.services.permissions import OrderScope

logger = logging.getLogger(__name__)


@dataclass
class BulkFailure:
    order_id: int
    reason: str


@dataclass
class BulkOutcome:
    updated: list[Order] = field(default_factory=list)
    failures: list[BulkFailure] = field(default_factory=list)


def clamp_limit(limit: int | None) -> int:
    if limit is None:
        return ORDER_LIST_DEFAULT_LIMIT
    return max(1, min(int(limit), ORDER_LIST_MAX_LIMIT))


def next_timestamp(previous: datetime | None) -> datetime:
    """Current time, but never earlier than or equal to ``previous``."""
    now = utcnow()
    previous = as_utc(previous)
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


class OrderRepository:
    """Order persistence on a tenant-pinned session; tenant filtering is the session's job."""

    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        *,
        department: str,
        order_data: dict[str, Any],
        section_id: int | None = None,
        created_by_role: str | None = None,
        created_by_user_id: int | None = None,
    ) -> Order:
        now = utcnow()
        order = Order(
            status=OrderStatus.PENDING.value,
            department=department,
            section_id=section_id,
            order_data=order_data,
            created_by_role=created_by_role,
            created_by_user_id=created_by_user_id,
            created_at=now,
            updated_at=now,
        )
        self.session.add(order)
        self.session.flush()
        return order

    def find(self, order_id: int) -> Order | None:
        return self.session.execute(select(Order).where(Order.id == int(order_id))).scalar_one_or_none()

    def get(self, order_id: int) -> Order:
        order = self.find(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    def list(
        self,
        *,
        scope: OrderScope = OrderScope.ALL,
        departments: Iterable[str] = (),
        user_id: int | None = None,
        section: str | None = None,
        section_id: int | None = None,
        statuses: Iterable[str] | None = None,
        limit: int | None = None,
    ) -> list[Order]:
        stmt = select(Order)

        if scope is OrderScope.MY_SECTIONS:
            visible = []
            names = [name for name in departments if name]
            if names:
                visible.append(Order.department.in_(names))
            if user_id is not None:
                visible.append(Order.created_by_user_id == int(user_id))
            if not visible:
                return []
            stmt = stmt.where(or_(*visible))

        if section:
            stmt = stmt.where(Order.department == section)
        if section_id is not None:
            stmt = stmt.where(Order.section_id == int(section_id))
        if statuses:
            stmt = stmt.where(Order.status.in_([OrderStatus.parse(s).value for s in statuses]))

        stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc()).limit(clamp_limit(limit))
        return list(self.session.execute(stmt).scalars())

    def update(
        self,
        order: Order,
        *,
        status: OrderStatus | str | None = None,
        order_data: dict[str, Any] | None = None,
        department: str | None = None,
        section_id: int | None = None,
    ) -> Order:
        now = next_timestamp(order.updated_at)
        if status is not None:
            status = OrderStatus.parse(status)
            order.status = status.value
            if status is OrderStatus.DELIVERED:
                order.delivered_at = now
        if order_data is not None:
            # New dict so the JSON column registers the change.
            order.order_data = dict(order_data)
        if department is not None:
            order.department = department
        if section_id is not None:
            order.section_id = section_id
        order.updated_at = now
        self.session.flush()
        return order

    def bulk_update(self, order_ids: Iterable[int], apply: Callable[[Order], None]) -> BulkOutcome:
        """Run ``apply`` on every order in its own savepoint.

        Missing orders and ``RestockError`` raised by ``apply`` are reported per
        order; the other orders in the batch are still written.
        """
        outcome = BulkOutcome()
        seen: set[int] = set()
        for raw_id in order_ids:
            order_id = int(raw_id)
            if order_id in seen:
                continue
            seen.add(order_id)
            try:
                with self.session.begin_nested():
                    order = self.get(order_id)
                    apply(order)
                    self.session.flush()
            except RestockError as exc:
                logger.info("Bulk update skipped order: order_id=%s reason=%s", order_id, exc.message)
                outcome.failures.append(BulkFailure(order_id=order_id, reason=exc.message))
                continue
            outcome.updated.append(order)
        return outcome

    def delete(self, order: Order) -> None:
        self.session.delete(order)
        self.session.flush()
