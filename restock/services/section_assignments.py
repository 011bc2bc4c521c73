from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from pydantic import BaseModel
from sqlalchemy import delete
from sqlalchemy.orm import Session

from restock.core.errors import NotFoundError, PermissionDenied
from restock.models.section import Section, SectionAssignment
from restock.models.user import User
from restock.services.permissions import UserCapabilities, load_capabilities

logger = logging.getLogger(__name__)


class SectionGrantIn(BaseModel):
    section_id: int
    can_send_orders: bool = False
    can_receive_supplies: bool = False


def set_user_sections(
    session: Session,
    actor: UserCapabilities,
    user_id: int,
    grants: Iterable[SectionGrantIn | Mapping[str, Any]],
) -> list[SectionAssignment]:
    """Replace every section assignment of ``user_id``. Admins and managers only."""
    if not actor.is_privileged:
        logger.warning("Section assignment denied: user_id=%s role=%s", actor.user_id, actor.role.value)
        raise PermissionDenied("Only admins and managers can assign sections", capability="assign")

    if session.get(User, int(user_id)) is None:
        raise NotFoundError(f"User {user_id} not found")

    # Later entries for the same section win.
    by_section: dict[int, SectionGrantIn] = {}
    for grant in grants:
        parsed = grant if isinstance(grant, SectionGrantIn) else SectionGrantIn.model_validate(grant)
        by_section[parsed.section_id] = parsed

    for section_id in by_section:
        if session.get(Section, section_id) is None:
            raise NotFoundError(f"Section {section_id} not found")

    session.execute(delete(SectionAssignment).where(SectionAssignment.user_id == int(user_id)))
    assignments = [
        SectionAssignment(
            user_id=int(user_id),
            section_id=grant.section_id,
            can_send_orders=grant.can_send_orders,
            can_receive_supplies=grant.can_receive_supplies,
        )
        for grant in by_section.values()
    ]
    session.add_all(assignments)
    session.flush()
    logger.info("Section assignments replaced: user_id=%s sections=%s", user_id, sorted(by_section))
    return assignments


def get_user_permissions(session: Session, user_id: int) -> dict[str, Any]:
    user = session.get(User, int(user_id))
    if user is None:
        raise NotFoundError(f"User {user_id} not found")

    caps = load_capabilities(session, user.id, user.role)
    privileged = caps.is_privileged
    sections = [
        {
            "section_id": grant.section_id,
            "section_name": grant.name,
            "can_send_orders": privileged or grant.can_send,
            "can_receive_supplies": privileged or grant.can_receive,
        }
        for grant in sorted(caps.sections.values(), key=lambda g: g.name)
    ]
    return {
        "user_id": user.id,
        "role": caps.role.value,
        "can_send_orders": privileged or caps.can_send_anywhere,
        "can_receive_supplies": privileged or caps.can_receive_anywhere,
        "sections": sections,
    }
