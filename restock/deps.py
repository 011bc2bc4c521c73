from __future__ import annotations

import logging

from fastapi import Header, HTTPException, status

from restock.core.enums import Role
from restock.core.request_context import set_request_context
from restock.services.order_state_machine import OrderStateMachine
from restock.services.permissions import Identity
from restock.services.sync_reconciler import SyncReconciler

logger = logging.getLogger(__name__)

_order_state_machine = OrderStateMachine()
_sync_reconciler = SyncReconciler()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def _parse_id(raw: str | None, name: str) -> int | None:
    if raw is None or not raw.strip():
        return None
    raw = raw.strip()
    if not raw.isdigit():
        logger.warning("Rejected identity header: header=%s", name)
        raise _unauthorized(f"Invalid {name} header")
    return int(raw)


def get_identity(
    x_tenant_id: str | None = Header(default=None, alias="X-Tenant-ID"),
    x_user_id: str | None = Header(default=None, alias="X-User-ID"),
    x_user_role: str | None = Header(default=None, alias="X-User-Role"),
) -> Identity:
    """Identity is authenticated upstream and forwarded as headers; here it is only parsed."""
    tenant_id = _parse_id(x_tenant_id, "X-Tenant-ID")
    if tenant_id is None or not (x_user_role or "").strip():
        raise _unauthorized("Authentication required")
    user_id = _parse_id(x_user_id, "X-User-ID")
    try:
        role = Role.parse(x_user_role)
    except ValueError:
        logger.warning("Rejected identity header: header=X-User-Role value=%s", x_user_role)
        raise _unauthorized("Unknown user role")

    set_request_context(tenant_id=str(tenant_id), user_id=str(user_id) if user_id is not None else None)
    return Identity(tenant_id=tenant_id, user_id=user_id, role=role)


def get_order_state_machine() -> OrderStateMachine:
    return _order_state_machine


def get_sync_reconciler() -> SyncReconciler:
    return _sync_reconciler
