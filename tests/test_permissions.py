import pytest

from restock.core.enums import OrderStatus, Role
from restock.core.errors import InvalidTransition, PermissionDenied
from restock.services.permissions import (
    OrderScope,
    SectionGrant,
    UserCapabilities,
    can_transition,
    load_capabilities,
    require_transition,
    visible_order_scope,
)

KITCHEN = 7


def _caps(role=Role.STAFF, **grants):
    sections = {
        KITCHEN: SectionGrant(section_id=KITCHEN, name="Kitchen", **grants),
    } if grants else {}
    return UserCapabilities(user_id=3, role=role, sections=sections)


def test_staff_without_assignment_cannot_send_but_with_send_grant_can():
    assert not can_transition(_caps(), KITCHEN, "pending", "sent")
    assert can_transition(_caps(can_send=True), KITCHEN, "pending", "sent")


def test_denied_send_names_capability_and_section():
    with pytest.raises(PermissionDenied) as exc:
        require_transition(_caps(can_receive=True), KITCHEN, OrderStatus.PENDING, OrderStatus.SENT)

    assert exc.value.status_code == 403
    assert exc.value.message == "You lack capability 'send orders' for section 'Kitchen'"
    assert exc.value.capability == "send"


def test_receive_grant_is_required_for_delivery():
    assert not can_transition(_caps(can_send=True), KITCHEN, "sent", "delivered")
    assert can_transition(_caps(can_receive=True), KITCHEN, "sent", "delivered")


def test_grant_for_one_section_does_not_cover_another():
    assert not can_transition(_caps(can_send=True), KITCHEN + 1, "pending", "sent")


@pytest.mark.parametrize("role", [Role.STAFF, Role.DELIVERY])
def test_only_privileged_roles_cancel(role):
    caps = _caps(role=role, can_send=True, can_receive=True)
    with pytest.raises(PermissionDenied):
        require_transition(caps, KITCHEN, "pending", "cancelled")
    require_transition(_caps(role=Role.MANAGER), None, "pending", "cancelled")


@pytest.mark.parametrize("role", list(Role))
@pytest.mark.parametrize("terminal", [OrderStatus.DELIVERED, OrderStatus.CANCELLED])
@pytest.mark.parametrize("target", list(OrderStatus))
def test_terminal_orders_reject_every_transition_for_every_role(role, terminal, target):
    caps = _caps(role=role, can_send=True, can_receive=True)

    assert not can_transition(caps, KITCHEN, terminal, target)
    with pytest.raises(InvalidTransition):
        require_transition(caps, KITCHEN, terminal, target)


def test_unknown_edges_are_invalid_even_for_admin():
    admin = _caps(role=Role.ADMIN)
    with pytest.raises(InvalidTransition):
        require_transition(admin, None, "pending", "delivered")
    with pytest.raises(InvalidTransition):
        require_transition(admin, None, "sent", "pending")


def test_same_state_amend_is_allowed_only_while_pending():
    caps = _caps(can_send=True)
    assert can_transition(caps, KITCHEN, "pending", "pending")
    assert not can_transition(caps, KITCHEN, "sent", "sent")


def test_visible_scope():
    assert visible_order_scope(_caps(role=Role.ADMIN)) is OrderScope.ALL
    assert visible_order_scope(_caps(can_send=True)) is OrderScope.ALL
    assert visible_order_scope(_caps(can_receive=True)) is OrderScope.ALL
    assert visible_order_scope(_caps()) is OrderScope.MY_SECTIONS
    assert visible_order_scope(_caps(can_send=False, can_receive=False)) is OrderScope.MY_SECTIONS


def test_load_capabilities_reads_active_assignments(guard, seed, tenant):
    user = seed.user(tenant.id)
    kitchen = seed.section(tenant.id, "Kitchen")
    closed = seed.section(tenant.id, "Old Bar", is_active=False)
    seed.assign(tenant.id, user.id, kitchen.id, send=True)
    seed.assign(tenant.id, user.id, closed.id, receive=True)

    with guard.tenant_session(tenant.id) as session:
        caps = load_capabilities(session, user.id, "staff")

    assert set(caps.sections) == {kitchen.id}
    assert caps.sections[kitchen.id].can_send
    assert caps.section_names == ["Kitchen"]


def test_creator_may_amend_pending_order_without_send_grant():
    caps = _caps()

    assert not can_transition(caps, KITCHEN, "pending", "pending")
    assert can_transition(caps, KITCHEN, "pending", "pending", is_creator=True)
    assert not can_transition(caps, KITCHEN, "pending", "sent", is_creator=True)
    with pytest.raises(InvalidTransition):
        require_transition(caps, KITCHEN, "sent", "sent", is_creator=True)
