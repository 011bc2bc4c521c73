"""Role and section-capability checks for order transitions and listing scope.

All transition rules live in ``TRANSITIONS``; everything else here only reads it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from sqlalchemy import select
from sqlalchemy.orm import Session

from restock.core.enums import PRIVILEGED_ROLES, TERMINAL_STATUSES, OrderStatus, Role
from restock.core.errors import InvalidTransition, PermissionDenied
from restock.models.section import Section, SectionAssignment

logger = logging.getLogger(__name__)


class Capability(str, Enum):
    SEND = "send"
    RECEIVE = "receive"


class Requirement(str, Enum):
    SEND = "send"
    # Editing a pending order: the send grant, or being the one who created it.
    AMEND = "amend"
    RECEIVE = "receive"
    PRIVILEGED = "privileged"


class OrderScope(str, Enum):
    ALL = "all"
    MY_SECTIONS = "my_sections"


# (from, to) -> what the caller must hold. Edges not listed are forbidden for every role.
TRANSITIONS: dict[tuple[OrderStatus, OrderStatus], Requirement] = {
    (OrderStatus.PENDING, OrderStatus.PENDING): Requirement.AMEND,
    (OrderStatus.PENDING, OrderStatus.SENT): Requirement.SEND,
    (OrderStatus.SENT, OrderStatus.DELIVERED): Requirement.RECEIVE,
    (OrderStatus.PENDING, OrderStatus.CANCELLED): Requirement.PRIVILEGED,
}

_CAPABILITY_LABELS = {
    Requirement.SEND: "send orders",
    Requirement.AMEND: "send orders",
    Requirement.RECEIVE: "receive supplies",
    Requirement.PRIVILEGED: "cancel orders",
}


@dataclass(frozen=True)
class Identity:
    """Already-authenticated caller, as handed over by the API layer."""

    tenant_id: int
    user_id: int | None
    role: Role


@dataclass(frozen=True)
class SectionGrant:
    section_id: int
    name: str
    can_send: bool = False
    can_receive: bool = False

    def allows(self, capability: Capability) -> bool:
        if capability is Capability.SEND:
            return self.can_send
        return self.can_receive


@dataclass(frozen=True)
class UserCapabilities:
    user_id: int | None
    role: Role
    sections: dict[int, SectionGrant] = field(default_factory=dict)

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES

    @property
    def can_send_anywhere(self) -> bool:
        return any(grant.can_send for grant in self.sections.values())

    @property
    def can_receive_anywhere(self) -> bool:
        return any(grant.can_receive for grant in self.sections.values())

    @property
    def section_names(self) -> list[str]:
        return sorted({grant.name for grant in self.sections.values() if grant.name})

    def grant_for(self, section_id: int | None) -> SectionGrant | None:
        if section_id is None:
            return None
        return self.sections.get(int(section_id))


def transition_requirement(from_status, to_status) -> Requirement | None:
    source = OrderStatus.parse(from_status)
    target = OrderStatus.parse(to_status)
    if source in TERMINAL_STATUSES:
        return None
    return TRANSITIONS.get((source, target))


def _holds(caps: UserCapabilities, section_id: int | None, requirement: Requirement, is_creator: bool) -> bool:
    if caps.is_privileged:
        return True
    if requirement is Requirement.PRIVILEGED:
        return False
    if requirement is Requirement.AMEND:
        if is_creator:
            return True
        requirement = Requirement.SEND
    grant = caps.grant_for(section_id)
    if grant is None:
        return False
    return grant.allows(Capability(requirement.value))


def can_transition(
    caps: UserCapabilities,
    section_id: int | None,
    from_status,
    to_status,
    *,
    is_creator: bool = False,
) -> bool:
    requirement = transition_requirement(from_status, to_status)
    if requirement is None:
        return False
    return _holds(caps, section_id, requirement, is_creator)


def require_transition(
    caps: UserCapabilities,
    section_id: int | None,
    from_status,
    to_status,
    *,
    section_name: str | None = None,
    is_creator: bool = False,
) -> None:
    """Raise ``InvalidTransition`` for a forbidden edge, ``PermissionDenied`` for a missing capability."""
    source = OrderStatus.parse(from_status)
    target = OrderStatus.parse(to_status)
    requirement = transition_requirement(source, target)
    if requirement is None:
        if source in TERMINAL_STATUSES:
            raise InvalidTransition(f"Order is already {source.value}; no further changes are allowed")
        raise InvalidTransition(f"Cannot move an order from {source.value} to {target.value}")

    if _holds(caps, section_id, requirement, is_creator):
        return

    grant = caps.grant_for(section_id)
    label = section_name or (grant.name if grant else None) or (f"#{section_id}" if section_id else "unassigned")
    capability = _CAPABILITY_LABELS[requirement]
    logger.warning(
        "Transition denied: reason=missing_%s user_id=%s role=%s section=%s transition=%s->%s",
        requirement.value,
        caps.user_id,
        caps.role.value,
        label,
        source.value,
        target.value,
    )
    if requirement is Requirement.PRIVILEGED:
        raise PermissionDenied(
            "Only managers and admins can cancel orders",
            capability=requirement.value,
            section=label,
        )
    raise PermissionDenied(
        f"You lack capability '{capability}' for section '{label}'",
        capability=requirement.value,
        section=label,
    )


def visible_order_scope(caps: UserCapabilities) -> OrderScope:
    if caps.is_privileged:
        return OrderScope.ALL
    if caps.can_send_anywhere or caps.can_receive_anywhere:
        return OrderScope.ALL
    return OrderScope.MY_SECTIONS


def can_create_orders(caps: UserCapabilities) -> bool:
    return caps.role is not Role.DELIVERY


def load_capabilities(session: Session, user_id: int | None, role) -> UserCapabilities:
    parsed_role = Role.parse(role)
    if user_id is None:
        return UserCapabilities(user_id=None, role=parsed_role)

    rows = session.execute(
        select(SectionAssignment, Section)
        .join(Section, Section.id == SectionAssignment.section_id)
        .where(SectionAssignment.user_id == int(user_id), Section.is_active.is_(True))
    ).all()
    sections = {
        section.id: SectionGrant(
            section_id=section.id,
            name=section.name,
            can_send=bool(assignment.can_send_orders),
            can_receive=bool(assignment.can_receive_supplies),
        )
        for assignment, section in rows
    }
    return UserCapabilities(user_id=int(user_id), role=parsed_role, sections=sections)
