"""Order lifecycle: pending -> sent -> delivered, pending -> cancelled.

Writes go through a tenant transaction; permission checks run before anything
is written. Marking an order delivered also records a supply in the POS, but
only after the local commit, and a POS failure comes back as a warning string.
"""
from __future__ import annotations

import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from restock.core.config import POS_DEFAULT_STORAGE_ID, POS_SUPPLY_COMMENT, POS_SUPPLY_TIMEOUT_SECONDS
from restock.core.enums import OrderStatus
from restock.core.errors import ExternalSystemError, NotFoundError, PermissionDenied, ValidationError
from restock.integrations.pos_client import PosClient, SupplyLine
from restock.models.order import Order
from restock.models.product import Product
from restock.models.section import Section
from restock.models.supplier import Supplier
from restock.models.tenant import Tenant
from restock.schemas.orders import ItemOverride, OrderItem, OrderPayload, OrderPayloadPatch, parse_model
from restock.services.order_repository import BulkFailure, OrderRepository
from restock.services.permissions import (
    Identity,
    UserCapabilities,
    can_create_orders,
    load_capabilities,
    require_transition,
    visible_order_scope,
)
from restock.services.tenant_context import TenantGuard, default_guard

logger = logging.getLogger(__name__)

PosClientFactory = Callable[..., PosClient]


@dataclass
class OrderResult:
    order: Order
    warnings: list[str] = field(default_factory=list)


@dataclass
class BulkUpdateResult:
    updated_count: int
    updated_ids: list[int]
    failures: list[BulkFailure] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class SupplyPlan:
    order_id: int
    supplier_id: str
    storage_id: str
    lines: list[SupplyLine]


@dataclass
class PosCredentials:
    account_name: str
    access_token: str


def _parse_status(value) -> OrderStatus:
    try:
        return OrderStatus.parse(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown order status: {value!r}") from exc


def _build_order_data(department: str, notes: str | None, items: list[dict]) -> dict[str, Any]:
    return {
        "department": department,
        "notes": notes,
        "items": items,
        "total_items": len(items),
    }


def _match_override(items: list[dict], override: ItemOverride, position: int) -> int | None:
    if override.id is not None:
        for idx, item in enumerate(items):
            if item.get("id") is not None and str(item.get("id")) == str(override.id):
                return idx
        return None
    idx = override.index if override.index is not None else position
    return idx if idx < len(items) else None


def apply_item_overrides(items: list[dict], overrides: Iterable[ItemOverride], target: OrderStatus) -> list[dict]:
    """Copy of ``items`` with quantity/price overrides applied; other item fields pass through.

    When delivering, overrides record what actually arrived (``received_quantity``,
    ``received_price``); otherwise they replace the requested quantity and price.
    """
    updated = [dict(item) for item in items]
    for position, override in enumerate(overrides):
        idx = _match_override(updated, override, position)
        if idx is None:
            ref = override.id if override.id is not None else (override.index if override.index is not None else position)
            raise ValidationError(f"Item override {ref!r} does not match any item")
        item = updated[idx]
        if target is OrderStatus.DELIVERED:
            if override.quantity is not None:
                item["received_quantity"] = override.quantity
            if override.price is not None:
                item["received_price"] = override.price
        else:
            if override.quantity is not None:
                if override.quantity <= 0:
                    raise ValidationError(f"Quantity for item {item.get('name')!r} must be greater than zero")
                item["quantity"] = override.quantity
            if override.price is not None:
                item["price"] = override.price
    return updated


def _is_creator(caps: UserCapabilities, order: Order) -> bool:
    return caps.user_id is not None and order.created_by_user_id == caps.user_id


def _storage_items(items: Iterable[OrderItem]) -> list[dict]:
    """Stored item dicts; items sent without an id get one so overrides can target them."""
    stored = []
    for item in items:
        data = item.to_storage()
        if data.get("id") in (None, ""):
            data["id"] = uuid.uuid4().hex
        stored.append(data)
    return stored


def _find_section_by_name(session: Session, name: str) -> Section | None:
    if not name:
        return None
    return session.execute(
        select(Section)
        .where(func.lower(Section.name) == name.strip().lower())
        .order_by(Section.is_active.desc(), Section.id)
        .limit(1)
    ).scalar_one_or_none()


def _order_section(session: Session, order: Order) -> Section | None:
    if order.section_id is not None:
        section = session.get(Section, order.section_id)
        if section is not None:
            return section
    return _find_section_by_name(session, order.department)


class OrderStateMachine:
    def __init__(
        self,
        guard: TenantGuard | None = None,
        pos_client_factory: PosClientFactory | None = None,
    ):
        self.guard = guard or default_guard
        self._pos_client_factory = pos_client_factory or PosClient

    # -- reads -------------------------------------------------------------

    def list_orders(
        self,
        identity: Identity,
        *,
        section: str | None = None,
        statuses: Iterable[str] | None = None,
        limit: int | None = None,
    ) -> list[Order]:
        if statuses:
            statuses = [_parse_status(s).value for s in statuses]
        with self.guard.tenant_session(identity.tenant_id) as session:
            caps = load_capabilities(session, identity.user_id, identity.role)
            return OrderRepository(session).list(
                scope=visible_order_scope(caps),
                departments=caps.section_names,
                user_id=identity.user_id,
                section=section,
                statuses=statuses,
                limit=limit,
            )

    # -- writes ------------------------------------------------------------

    def create_order(self, identity: Identity, payload: OrderPayload | Mapping[str, Any]) -> Order:
        payload = parse_model(OrderPayload, payload)
        with self.guard.tenant_transaction(identity.tenant_id) as session:
            caps = load_capabilities(session, identity.user_id, identity.role)
            if not can_create_orders(caps):
                logger.warning(
                    "Order creation denied: user_id=%s role=%s", identity.user_id, caps.role.value
                )
                raise PermissionDenied(f"Role '{caps.role.value}' cannot create orders", capability="create")

            department, section_id = self._resolve_section(session, payload.department, payload.section_id)
            items = _storage_items(payload.items)
            order = OrderRepository(session).create(
                department=department,
                section_id=section_id,
                order_data=_build_order_data(department, payload.notes, items),
                created_by_role=caps.role.value,
                created_by_user_id=identity.user_id,
            )
            logger.info(
                "Order created: order_id=%s department=%s items=%s", order.id, department, len(items)
            )
            return order

    def update_order(
        self,
        identity: Identity,
        order_id: int,
        *,
        status: str | OrderStatus | None = None,
        payload: OrderPayloadPatch | Mapping[str, Any] | None = None,
    ) -> OrderResult:
        patch = parse_model(OrderPayloadPatch, payload) if payload is not None else None
        plans: list[SupplyPlan] = []
        warnings: list[str] = []

        with self.guard.tenant_transaction(identity.tenant_id) as session:
            caps = load_capabilities(session, identity.user_id, identity.role)
            repo = OrderRepository(session)
            order = repo.get(order_id)
            current = OrderStatus.parse(order.status)
            target = _parse_status(status) if status is not None else current
            self._check_transition(session, caps, order, current, target)

            order_data = dict(order.order_data or {})
            department = None
            section_id = None
            if patch is not None:
                if patch.department is not None or patch.section_id is not None:
                    department, section_id = self._resolve_section(
                        session,
                        patch.department if patch.department is not None else order.department,
                        patch.section_id,
                    )
                    # Moving the order needs the same capability in the destination section.
                    self._check_destination(session, caps, order, department, section_id, current, target)
                    order_data["department"] = department
                if patch.notes is not None:
                    order_data["notes"] = patch.notes
                if patch.items is not None:
                    order_data["items"] = _storage_items(patch.items)
                    order_data["total_items"] = len(patch.items)

            repo.update(
                order,
                status=target if status is not None else None,
                order_data=order_data if patch is not None else None,
                department=department,
                section_id=section_id,
            )
            logger.info("Order updated: order_id=%s status=%s->%s", order.id, current.value, target.value)

            credentials = None
            if target is OrderStatus.DELIVERED and current is not OrderStatus.DELIVERED:
                credentials = self._credentials(session, identity.tenant_id)
                plans, plan_warnings = self._plan_supplies(session, order, credentials)
                warnings.extend(plan_warnings)

        warnings.extend(self._record_supplies(credentials, plans))
        return OrderResult(order=order, warnings=warnings)

    def bulk_update_orders(
        self,
        identity: Identity,
        order_ids: Iterable[int],
        status: str | OrderStatus,
        item_overrides: Mapping[int, Iterable[ItemOverride | Mapping[str, Any]]] | None = None,
    ) -> BulkUpdateResult:
        target = _parse_status(status)
        order_ids = [int(order_id) for order_id in order_ids]
        if not order_ids:
            raise ValidationError("No orders selected")
        overrides = {
            int(order_id): [parse_model(ItemOverride, entry) for entry in entries]
            for order_id, entries in (item_overrides or {}).items()
        }
        plans: list[SupplyPlan] = []
        warnings: list[str] = []
        credentials = None

        with self.guard.tenant_transaction(identity.tenant_id) as session:
            caps = load_capabilities(session, identity.user_id, identity.role)
            repo = OrderRepository(session)
            if target is OrderStatus.DELIVERED:
                credentials = self._credentials(session, identity.tenant_id)

            pending_plans: dict[int, tuple[list[SupplyPlan], list[str]]] = {}

            def apply(order: Order) -> None:
                current = OrderStatus.parse(order.status)
                self._check_transition(session, caps, order, current, target)
                order_data = None
                if order.id in overrides:
                    order_data = dict(order.order_data or {})
                    order_data["items"] = apply_item_overrides(
                        order_data.get("items") or [], overrides[order.id], target
                    )
                repo.update(order, status=target, order_data=order_data)
                if target is OrderStatus.DELIVERED:
                    pending_plans[order.id] = self._plan_supplies(session, order, credentials)

            outcome = repo.bulk_update(order_ids, apply)
            updated_ids = [order.id for order in outcome.updated]
            for order_id in updated_ids:
                order_plans, plan_warnings = pending_plans.get(order_id, ([], []))
                plans.extend(order_plans)
                warnings.extend(plan_warnings)
            logger.info(
                "Bulk order update: status=%s requested=%s updated=%s failed=%s",
                target.value,
                len(set(order_ids)),
                len(updated_ids),
                len(outcome.failures),
            )

        warnings.extend(self._record_supplies(credentials, plans))
        return BulkUpdateResult(
            updated_count=len(updated_ids),
            updated_ids=updated_ids,
            failures=outcome.failures,
            warnings=warnings,
        )

    def delete_order(self, identity: Identity, order_id: int) -> None:
        with self.guard.tenant_transaction(identity.tenant_id) as session:
            caps = load_capabilities(session, identity.user_id, identity.role)
            if not caps.is_privileged:
                logger.warning("Order deletion denied: user_id=%s role=%s", identity.user_id, caps.role.value)
                raise PermissionDenied("Only managers and admins can delete orders", capability="delete")
            repo = OrderRepository(session)
            repo.delete(repo.get(order_id))
            logger.info("Order deleted: order_id=%s", order_id)

    # -- helpers -----------------------------------------------------------

    def _resolve_section(self, session: Session, department: str, section_id: int | None) -> tuple[str, int | None]:
        department = (department or "").strip()
        if section_id is not None:
            section = session.get(Section, int(section_id))
            if section is None:
                raise NotFoundError(f"Section {section_id} not found")
            return department or section.name, section.id
        if not department:
            raise ValidationError("Invalid order: department or section_id is required")
        section = _find_section_by_name(session, department)
        return department, section.id if section is not None else None

    def _check_transition(
        self,
        session: Session,
        caps: UserCapabilities,
        order: Order,
        current: OrderStatus,
        target: OrderStatus,
    ) -> None:
        section = None if caps.is_privileged else _order_section(session, order)
        require_transition(
            caps,
            section.id if section is not None else None,
            current,
            target,
            section_name=section.name if section is not None else order.department,
            is_creator=_is_creator(caps, order),
        )

    def _check_destination(
        self,
        session: Session,
        caps: UserCapabilities,
        order: Order,
        department: str,
        section_id: int | None,
        current: OrderStatus,
        target: OrderStatus,
    ) -> None:
        if caps.is_privileged:
            return
        section = session.get(Section, section_id) if section_id is not None else None
        if section is None:
            section = _find_section_by_name(session, department)
        require_transition(
            caps,
            section.id if section is not None else None,
            current,
            target,
            section_name=section.name if section is not None else department,
            is_creator=_is_creator(caps, order),
        )

    def _credentials(self, session: Session, tenant_id: int) -> PosCredentials | None:
        tenant = session.get(Tenant, int(tenant_id))
        if tenant is None or not tenant.pos_configured:
            return None
        return PosCredentials(account_name=tenant.pos_account_name, access_token=tenant.pos_access_token)

    def _supplier_external_id(self, session: Session, item: dict) -> str | None:
        supplier = None
        if item.get("supplier_id") is not None:
            supplier = session.get(Supplier, int(item["supplier_id"]))
        if supplier is None and item.get("supplier"):
            supplier = session.execute(
                select(Supplier).where(func.lower(Supplier.name) == str(item["supplier"]).strip().lower()).limit(1)
            ).scalar_one_or_none()
        if supplier is None and item.get("product_id") is not None:
            product = session.get(Product, int(item["product_id"]))
            if product is not None and product.supplier_id is not None:
                supplier = session.get(Supplier, product.supplier_id)
        if supplier is None:
            return None
        return supplier.external_supplier_id

    def _plan_supplies(
        self,
        session: Session,
        order: Order,
        credentials: PosCredentials | None,
    ) -> tuple[list[SupplyPlan], list[str]]:
        items = [
            item
            for item in (order.order_data or {}).get("items") or []
            if item.get("external_product_id") or item.get("poster_id")
        ]
        if not items:
            return [], []
        if credentials is None:
            return [], [f"Order {order.id} delivered, but the POS account is not linked; no supply was recorded"]

        section = _order_section(session, order)
        tenant = session.get(Tenant, order.tenant_id)
        storage_id = (
            (section.external_storage_id if section is not None else None)
            or (tenant.default_storage_id if tenant is not None else None)
            or POS_DEFAULT_STORAGE_ID
        )
        if not storage_id:
            return [], [f"Order {order.id} delivered, but no POS storage is known for '{order.department}'"]

        warnings: list[str] = []
        groups: "OrderedDict[str, list[SupplyLine]]" = OrderedDict()
        for item in items:
            quantity = item.get("received_quantity")
            if quantity is None:
                quantity = item.get("quantity")
            if quantity is None or float(quantity) <= 0:
                continue
            price = item.get("received_price")
            if price is None:
                price = item.get("price") or 0
            supplier_id = self._supplier_external_id(session, item)
            if not supplier_id:
                warnings.append(
                    f"Order {order.id}: item '{item.get('name')}' has no POS supplier; it was not recorded in the POS"
                )
                continue
            groups.setdefault(supplier_id, []).append(
                SupplyLine(
                    ingredient_id=str(item.get("external_product_id") or item.get("poster_id")),
                    quantity=float(quantity),
                    price=float(price),
                )
            )

        plans = [
            SupplyPlan(order_id=order.id, supplier_id=supplier_id, storage_id=str(storage_id), lines=lines)
            for supplier_id, lines in groups.items()
        ]
        return plans, warnings

    def _record_supplies(self, credentials: PosCredentials | None, plans: list[SupplyPlan]) -> list[str]:
        """Runs after commit with no session held; never raises."""
        if not plans or credentials is None:
            return []
        warnings: list[str] = []
        try:
            with self._pos_client_factory(
                credentials.account_name,
                credentials.access_token,
                timeout=POS_SUPPLY_TIMEOUT_SECONDS,
            ) as client:
                for plan in plans:
                    try:
                        client.create_supply(plan.supplier_id, plan.storage_id, plan.lines, POS_SUPPLY_COMMENT)
                    except ExternalSystemError as exc:
                        logger.warning(
                            "POS supply failed: order_id=%s supplier_id=%s error=%s",
                            plan.order_id,
                            plan.supplier_id,
                            exc.message,
                        )
                        warnings.append(
                            f"Order {plan.order_id} delivered, but the POS supply record may not have been created: {exc.message}"
                        )
        except ExternalSystemError as exc:
            logger.warning("POS client unavailable for supplies: error=%s", exc.message)
            warnings.extend(
                f"Order {order_id} delivered, but the POS supply record may not have been created: {exc.message}"
                for order_id in dict.fromkeys(plan.order_id for plan in plans)
            )
        except Exception:
            logger.exception("Unexpected error while recording POS supplies")
            warnings.extend(
                f"Order {order_id} delivered, but the POS supply record may not have been created"
                for order_id in dict.fromkeys(plan.order_id for plan in plans)
            )
        return warnings
