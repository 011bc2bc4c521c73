"""The few operations that legitimately run without a tenant pinned.

Login happens before the tenant is known, and linking a POS account has to
find out which tenant (if any) already owns that account name.
"""
from __future__ import annotations

import logging

from sqlalchemy import func, select

from restock.core.enums import Role
from restock.core.errors import NotFoundError, ValidationError
from restock.models.tenant import Tenant
from restock.models.user import User
from restock.services.passwords import hash_password, verify_password
from restock.services.tenant_context import TenantGuard, default_guard

logger = logging.getLogger(__name__)


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def normalize_account_name(account_name: str | None) -> str:
    return (account_name or "").strip().lower()


def authenticate_user(email: str, password: str, *, guard: TenantGuard | None = None) -> User | None:
    guard = guard or default_guard
    normalized = normalize_email(email)
    if not normalized or not password:
        return None

    with guard.global_session() as session:
        row = session.execute(
            select(User, Tenant)
            .join(Tenant, Tenant.id == User.tenant_id)
            .where(func.lower(User.email) == normalized)
        ).first()

    if row is None:
        logger.info("Login failed: reason=unknown_email")
        return None
    user, tenant = row
    if not user.is_active or not tenant.is_active:
        logger.info("Login failed: reason=inactive user_id=%s tenant_id=%s", user.id, user.tenant_id)
        return None
    if not verify_password(password, user.password_hash):
        logger.info("Login failed: reason=bad_password user_id=%s", user.id)
        return None
    return user


def create_user(
    tenant_id: int,
    email: str,
    password: str,
    *,
    name: str = "",
    role: str | Role = Role.STAFF,
    guard: TenantGuard | None = None,
) -> User:
    guard = guard or default_guard
    normalized = normalize_email(email)
    if not normalized or "@" not in normalized:
        raise ValidationError("A valid email is required")
    if not password:
        raise ValidationError("Password is required")
    try:
        parsed_role = Role.parse(role)
    except ValueError as exc:
        raise ValidationError(f"Unknown role: {role!r}") from exc

    # Email uniqueness spans every tenant, so the check needs a global session.
    with guard.global_transaction() as session:
        if session.get(Tenant, int(tenant_id)) is None:
            raise NotFoundError(f"Tenant {tenant_id} not found")
        taken = session.execute(
            select(User.id).where(func.lower(User.email) == normalized)
        ).scalar_one_or_none()
        if taken is not None:
            raise ValidationError("A user with this email already exists")
        user = User(
            tenant_id=int(tenant_id),
            email=normalized,
            name=(name or "").strip(),
            password_hash=hash_password(password),
            role=parsed_role.value,
            is_active=True,
        )
        session.add(user)
        session.flush()
        logger.info("User created: user_id=%s tenant_id=%s role=%s", user.id, tenant_id, parsed_role.value)
        return user


def resolve_tenant_by_account(account_name: str, *, guard: TenantGuard | None = None) -> Tenant | None:
    guard = guard or default_guard
    normalized = normalize_account_name(account_name)
    if not normalized:
        return None
    with guard.global_session() as session:
        return session.execute(
            select(Tenant).where(Tenant.pos_account_name == normalized)
        ).scalar_one_or_none()


def link_pos_account(
    account_name: str,
    access_token: str,
    *,
    account_id: str | None = None,
    tenant_name: str | None = None,
    default_storage_id: str | None = None,
    guard: TenantGuard | None = None,
) -> Tenant:
    """Attach POS credentials to the tenant owning ``account_name``, creating it on first link."""
    guard = guard or default_guard
    normalized = normalize_account_name(account_name)
    if not normalized:
        raise ValidationError("POS account name is required")
    if not access_token:
        raise ValidationError("POS access token is required")

    with guard.global_transaction() as session:
        tenant = session.execute(
            select(Tenant).where(Tenant.pos_account_name == normalized)
        ).scalar_one_or_none()
        created = tenant is None
        if created:
            tenant = Tenant(name=(tenant_name or normalized).strip(), pos_account_name=normalized)
            session.add(tenant)
        elif tenant_name:
            tenant.name = tenant_name.strip()

        tenant.pos_access_token = access_token
        tenant.is_active = True
        if account_id is not None:
            tenant.pos_account_id = str(account_id)
        if default_storage_id is not None:
            tenant.default_storage_id = str(default_storage_id)
        session.flush()
        logger.info(
            "POS account %s: tenant_id=%s account=%s",
            "linked" if created else "refreshed",
            tenant.id,
            normalized,
        )
        return tenant


def deactivate_tenant(tenant_id: int, *, guard: TenantGuard | None = None) -> Tenant:
    guard = guard or default_guard
    with guard.global_transaction() as session:
        tenant = session.get(Tenant, int(tenant_id))
        if tenant is None:
            raise NotFoundError(f"Tenant {tenant_id} not found")
        tenant.is_active = False
        session.flush()
        logger.info("Tenant deactivated: tenant_id=%s", tenant.id)
        return tenant
