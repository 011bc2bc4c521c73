"""Tenant-pinned data access.

Every session handed out by :class:`TenantGuard` is pinned to one tenant (or
explicitly marked global). Filtering happens in SQLAlchemy session events, not
in the queries written by services, so a forgotten ``WHERE tenant_id = ...``
can't leak another tenant's rows:

* ``do_orm_execute`` adds ``with_loader_criteria`` on :class:`TenantScopedMixin`
  to every ORM SELECT / UPDATE / DELETE issued through a pinned session;
* ``before_flush`` stamps ``tenant_id`` on new rows and refuses rows that name a
  different tenant.

A session that is neither pinned nor global refuses to touch tenant-scoped
tables at all.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from sqlalchemy import event
from sqlalchemy.orm import ORMExecuteState, Session, sessionmaker, with_loader_criteria

from restock.core.database import SessionLocal
from restock.core.errors import TenantContextError
from restock.core.request_context import pop_tenant_id, push_tenant_id
from restock.models.mixins import TenantScopedMixin

logger = logging.getLogger(__name__)

TENANT_KEY = "tenant_id"
GLOBAL_KEY = "global"

T = TypeVar("T")


def normalize_tenant_id(tenant_id) -> int:
    if tenant_id is None or isinstance(tenant_id, bool):
        raise TenantContextError("Tenant id is required")
    try:
        return int(tenant_id)
    except (TypeError, ValueError) as exc:
        raise TenantContextError(f"Invalid tenant id: {tenant_id!r}") from exc


def session_tenant_id(session: Session) -> int | None:
    return session.info.get(TENANT_KEY)


def _touches_tenant_tables(execute_state: ORMExecuteState) -> bool:
    for mapper in execute_state.all_mappers:
        if issubclass(mapper.class_, TenantScopedMixin):
            return True
    return False


@event.listens_for(Session, "do_orm_execute")
def _apply_tenant_criteria(execute_state: ORMExecuteState) -> None:
    if not (execute_state.is_select or execute_state.is_update or execute_state.is_delete):
        return
    # Lazy/column loads inherit the criteria of the statement that loaded the parent.
    if execute_state.is_column_load or execute_state.is_relationship_load:
        return

    info = execute_state.session.info
    if info.get(GLOBAL_KEY):
        return

    tenant_id = info.get(TENANT_KEY)
    if tenant_id is None:
        if _touches_tenant_tables(execute_state):
            raise TenantContextError("Tenant-scoped query issued on a session without tenant context")
        return

    execute_state.statement = execute_state.statement.options(
        with_loader_criteria(
            TenantScopedMixin,
            lambda cls: cls.tenant_id == tenant_id,
            include_aliases=True,
        )
    )


@event.listens_for(Session, "before_flush")
def _stamp_tenant_on_flush(session: Session, _flush_context, _instances) -> None:
    is_global = bool(session.info.get(GLOBAL_KEY))
    tenant_id = session.info.get(TENANT_KEY)

    for obj in list(session.new) + list(session.dirty):
        if not isinstance(obj, TenantScopedMixin):
            continue
        if is_global:
            if obj.tenant_id is None:
                raise TenantContextError(
                    f"{type(obj).__name__} written through a global session needs an explicit tenant_id"
                )
            continue
        if tenant_id is None:
            raise TenantContextError(f"{type(obj).__name__} written on a session without tenant context")
        if obj.tenant_id is None:
            obj.tenant_id = tenant_id
        elif int(obj.tenant_id) != tenant_id:
            logger.warning(
                "Cross-tenant write blocked: model=%s row_tenant=%s session_tenant=%s",
                type(obj).__name__,
                obj.tenant_id,
                tenant_id,
            )
            raise TenantContextError("Row belongs to a different tenant")


class TenantGuard:
    """Hands out pooled sessions pinned to a tenant and always gives them back."""

    def __init__(self, session_factory: sessionmaker | Callable[[], Session] | None = None):
        self._session_factory = session_factory or SessionLocal

    @contextmanager
    def tenant_session(self, tenant_id) -> Iterator[Session]:
        pinned = normalize_tenant_id(tenant_id)
        session = self._session_factory()
        session.info[TENANT_KEY] = pinned
        token = push_tenant_id(pinned)
        try:
            yield session
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()
            pop_tenant_id(token)

    @contextmanager
    def tenant_transaction(self, tenant_id) -> Iterator[Session]:
        with self.tenant_session(tenant_id) as session:
            yield session
            session.commit()

    @contextmanager
    def global_session(self) -> Iterator[Session]:
        session = self._session_factory()
        session.info[GLOBAL_KEY] = True
        try:
            yield session
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def global_transaction(self) -> Iterator[Session]:
        with self.global_session() as session:
            yield session
            session.commit()

    def with_tenant(self, tenant_id, fn: Callable[[Session], T]) -> T:
        with self.tenant_session(tenant_id) as session:
            return fn(session)

    def with_tenant_transaction(self, tenant_id, fn: Callable[[Session], T]) -> T:
        with self.tenant_transaction(tenant_id) as session:
            return fn(session)

    def without_tenant(self, fn: Callable[[Session], T]) -> T:
        """Unrestricted access; only for login by email and account linking."""
        with self.global_session() as session:
            return fn(session)


default_guard = TenantGuard()


def with_tenant(tenant_id, fn: Callable[[Session], T]) -> T:
    return default_guard.with_tenant(tenant_id, fn)


def with_tenant_transaction(tenant_id, fn: Callable[[Session], T]) -> T:
    return default_guard.with_tenant_transaction(tenant_id, fn)


def without_tenant(fn: Callable[[Session], T]) -> T:
    return default_guard.without_tenant(fn)
