from __future__ import annotations

from dataclasses import asdict
from typing import Any, List, Optional

from fastapi import APIRouter, Body, Depends, Query

from restock.deps import get_identity, get_order_state_machine
from restock.models.order import Order
from restock.schemas.orders import BulkUpdateRequest, OrderOut, OrderUpdateRequest, parse_model
from restock.services.order_state_machine import OrderStateMachine
from restock.services.permissions import Identity

router = APIRouter(prefix="/api/orders", tags=["orders"])


def _serialize(order: Order) -> dict[str, Any]:
    return OrderOut.model_validate(order).model_dump(mode="json")


@router.get("")
def list_orders(
    section: Optional[str] = Query(None),
    status: Optional[List[str]] = Query(None),
    limit: Optional[int] = Query(None, ge=1),
    identity: Identity = Depends(get_identity),
    machine: OrderStateMachine = Depends(get_order_state_machine),
):
    orders = machine.list_orders(identity, section=section, statuses=status, limit=limit)
    return {"success": True, "data": [_serialize(order) for order in orders]}


@router.post("", status_code=201)
def create_order(
    payload: dict[str, Any] = Body(...),
    identity: Identity = Depends(get_identity),
    machine: OrderStateMachine = Depends(get_order_state_machine),
):
    order = machine.create_order(identity, payload)
    return {"success": True, "data": _serialize(order)}


@router.post("/bulk-update")
def bulk_update_orders(
    payload: dict[str, Any] = Body(...),
    identity: Identity = Depends(get_identity),
    machine: OrderStateMachine = Depends(get_order_state_machine),
):
    request = parse_model(BulkUpdateRequest, payload)
    result = machine.bulk_update_orders(
        identity,
        request.order_ids,
        request.status,
        item_overrides=request.item_overrides,
    )
    return {
        "success": True,
        "updated_count": result.updated_count,
        "updated_ids": result.updated_ids,
        "failures": [asdict(failure) for failure in result.failures],
        "warnings": result.warnings,
    }


@router.patch("/{order_id}")
def update_order(
    order_id: int,
    payload: dict[str, Any] = Body(...),
    identity: Identity = Depends(get_identity),
    machine: OrderStateMachine = Depends(get_order_state_machine),
):
    request = parse_model(OrderUpdateRequest, payload)
    result = machine.update_order(identity, order_id, status=request.status, payload=request.order_data)
    return {"success": True, "data": _serialize(result.order), "warnings": result.warnings}


@router.delete("/{order_id}")
def delete_order(
    order_id: int,
    identity: Identity = Depends(get_identity),
    machine: OrderStateMachine = Depends(get_order_state_machine),
):
    machine.delete_order(identity, order_id)
    return {"success": True}
