import os

os.environ.setdefault("ENV", "test")

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from restock.core.database import Base, build_engine
from restock.core.enums import Role
from restock.models.product import Product
from restock.models.section import Section, SectionAssignment
from restock.models.supplier import Supplier
from restock.models.tenant import Tenant
from restock.models.user import User
from restock.services.permissions import Identity
from restock.services.tenant_context import TenantGuard
import restock.models  # noqa: F401


@pytest.fixture
def engine():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def guard(session_factory):
    return TenantGuard(session_factory)


class Seeder:
    """Writes fixture rows through the guard, the same way the services do."""

    def __init__(self, guard: TenantGuard):
        self.guard = guard
        self._emails = 0

    def tenant(self, name="Bistro", *, account="bistro", token="pos-token", default_storage_id=None, linked=True):
        with self.guard.global_transaction() as session:
            tenant = Tenant(
                name=name,
                pos_account_name=account if linked else None,
                pos_access_token=token if linked else None,
                default_storage_id=default_storage_id,
            )
            session.add(tenant)
            session.flush()
            return tenant

    def section(self, tenant_id, name, *, external_storage_id=None, is_active=True):
        with self.guard.tenant_transaction(tenant_id) as session:
            section = Section(name=name, external_storage_id=external_storage_id, is_active=is_active)
            session.add(section)
            session.flush()
            return section

    def user(self, tenant_id, role=Role.STAFF, *, email=None):
        self._emails += 1
        with self.guard.tenant_transaction(tenant_id) as session:
            user = User(
                email=email or f"user{self._emails}@example.com",
                name=f"User {self._emails}",
                password_hash="not-used",
                role=Role.parse(role).value,
            )
            session.add(user)
            session.flush()
            return user

    def assign(self, tenant_id, user_id, section_id, *, send=False, receive=False):
        with self.guard.tenant_transaction(tenant_id) as session:
            assignment = SectionAssignment(
                user_id=user_id,
                section_id=section_id,
                can_send_orders=send,
                can_receive_supplies=receive,
            )
            session.add(assignment)
            session.flush()
            return assignment

    def supplier(self, tenant_id, name, *, external_supplier_id=None):
        with self.guard.tenant_transaction(tenant_id) as session:
            supplier = Supplier(name=name, external_supplier_id=external_supplier_id)
            session.add(supplier)
            session.flush()
            return supplier

    def product(self, tenant_id, section_id, name, *, external_ingredient_id=None, supplier_id=None):
        with self.guard.tenant_transaction(tenant_id) as session:
            product = Product(
                section_id=section_id,
                name=name,
                external_ingredient_id=external_ingredient_id,
                supplier_id=supplier_id,
            )
            session.add(product)
            session.flush()
            return product


@pytest.fixture
def seed(guard):
    return Seeder(guard)


@pytest.fixture
def tenant(seed):
    return seed.tenant()


@pytest.fixture
def other_tenant(seed):
    return seed.tenant("Harbour Cafe", account="harbour", token="other-token")


@pytest.fixture
def admin(seed, tenant):
    user = seed.user(tenant.id, Role.ADMIN)
    return Identity(tenant_id=tenant.id, user_id=user.id, role=Role.ADMIN)
