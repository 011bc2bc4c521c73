import pytest
from sqlalchemy import func, select, update
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool

from restock.core.database import Base, build_engine
from restock.core.errors import TenantContextError
from restock.core.request_context import get_tenant_id
from restock.models.order import Order
from restock.models.section import Section
from restock.models.supplier import Supplier
from restock.services.tenant_context import TenantGuard


def test_pinned_session_returns_nothing_for_other_tenant_ids(guard, seed, tenant, other_tenant):
    own = seed.section(tenant.id, "Kitchen")
    foreign = seed.section(other_tenant.id, "Bar")

    with guard.tenant_session(tenant.id) as session:
        assert session.get(Section, foreign.id) is None
        assert session.execute(select(Section).where(Section.id == foreign.id)).scalars().all() == []
        names = [section.name for section in session.scalars(select(Section))]
        count = session.execute(select(func.count(Section.id))).scalar_one()

    assert names == ["Kitchen"]
    assert count == 1
    assert own.tenant_id == tenant.id


def test_bulk_update_statement_cannot_touch_other_tenant_rows(guard, seed, tenant, other_tenant):
    foreign = seed.section(other_tenant.id, "Bar")

    with guard.tenant_transaction(tenant.id) as session:
        result = session.execute(
            update(Section).where(Section.id == foreign.id).values(name="Hijacked").execution_options(
                synchronize_session=False
            )
        )
        assert result.rowcount == 0

    with guard.tenant_session(other_tenant.id) as session:
        assert session.get(Section, foreign.id).name == "Bar"


def test_new_rows_are_stamped_with_pinned_tenant(guard, tenant):
    with guard.tenant_transaction(tenant.id) as session:
        supplier = Supplier(name="Fresh Farm")
        session.add(supplier)
        session.flush()
        assert supplier.tenant_id == tenant.id


def test_writing_a_row_for_another_tenant_is_rejected(guard, tenant, other_tenant):
    with pytest.raises(TenantContextError):
        with guard.tenant_transaction(tenant.id) as session:
            session.add(Supplier(name="Sneaky", tenant_id=other_tenant.id))

    with guard.global_session() as session:
        assert session.execute(select(Supplier).where(Supplier.name == "Sneaky")).first() is None


def test_unpinned_session_refuses_tenant_scoped_queries(session_factory, tenant):
    session = session_factory()
    try:
        with pytest.raises(TenantContextError):
            session.execute(select(Order))
    finally:
        session.close()


def test_global_session_sees_every_tenant_and_requires_explicit_tenant_on_write(guard, seed, tenant, other_tenant):
    seed.section(tenant.id, "Kitchen")
    seed.section(other_tenant.id, "Bar")

    with guard.global_session() as session:
        assert session.execute(select(func.count(Section.id))).scalar_one() == 2

    with pytest.raises(TenantContextError):
        with guard.global_transaction() as session:
            session.add(Section(name="Orphan"))


def test_missing_tenant_id_is_rejected(guard):
    with pytest.raises(TenantContextError):
        with guard.tenant_session(None):
            pass


def test_functional_forms_return_callback_result(guard, seed, tenant):
    seed.section(tenant.id, "Kitchen")

    names = guard.with_tenant(tenant.id, lambda s: [row.name for row in s.scalars(select(Section))])
    created = guard.with_tenant_transaction(tenant.id, lambda s: s.add(Supplier(name="Dairy Co")) or "ok")
    total = guard.without_tenant(lambda s: s.execute(select(func.count(Supplier.id))).scalar_one())

    assert names == ["Kitchen"]
    assert created == "ok"
    assert total == 1


def test_tenant_log_context_is_set_inside_handle_and_reset_after(guard, tenant):
    assert get_tenant_id() is None
    with guard.tenant_session(tenant.id):
        assert get_tenant_id() == str(tenant.id)
    assert get_tenant_id() is None


def test_connection_is_released_on_every_exit_path(tmp_path):
    engine = build_engine(
        f"sqlite:///{tmp_path / 'pool.db'}",
        poolclass=QueuePool,
        pool_size=1,
        max_overflow=0,
        pool_timeout=0.5,
    )
    Base.metadata.create_all(bind=engine)
    guard = TenantGuard(sessionmaker(bind=engine, autoflush=False, expire_on_commit=False))

    for _ in range(5):
        with pytest.raises(RuntimeError):
            with guard.tenant_session(1) as session:
                session.execute(select(Section)).all()
                raise RuntimeError("boom")

    def early_return(session):
        session.execute(select(Section)).all()
        return "done"

    for _ in range(5):
        assert guard.with_tenant(1, early_return) == "done"

    assert engine.pool.checkedout() == 0
    engine.dispose()
