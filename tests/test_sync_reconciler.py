import itertools
from datetime import timedelta

import pytest
from sqlalchemy import select, update

from restock.core.errors import NotFoundError, ValidationError
from restock.models.mixins import utcnow
from restock.models.product import Product
from restock.models.section import Section
from restock.models.supplier import Supplier
from restock.models.sync_status import SyncStatus
from restock.services.sync_reconciler import SyncReconciler, parse_entity_types, section_icon
from tests.fakes import FakePosClient
from tests.fixtures_data import POS_INGREDIENTS, POS_LEFTOVERS_THREE, POS_STORAGES, POS_SUPPLIERS


def _pos(**overrides):
    options = {
        "storages": POS_STORAGES,
        "ingredients": POS_INGREDIENTS,
        "suppliers": POS_SUPPLIERS,
        "leftovers": {"1": [], "2": POS_LEFTOVERS_THREE},
    }
    options.update(overrides)
    return FakePosClient(**options)


def _rows(guard, tenant_id, model, *criteria):
    with guard.tenant_session(tenant_id) as session:
        return list(session.scalars(select(model).where(*criteria).order_by(model.id)))


def _section_ids(guard, tenant_id):
    return {section.external_storage_id: section.id for section in _rows(guard, tenant_id, Section)}


@pytest.mark.parametrize(
    "name, icon",
    [
        ("Main Kitchen", "🍳"),
        ("Бар на крыше", "🍷"),
        ("Housekeeping", "🧹"),
        ("Dry storage", "📦"),
        ("Back Office", "💼"),
        ("Reception desk", "🔑"),
        ("Terrace", "📍"),
    ],
)
def test_section_icon(name, icon):
    assert section_icon(name) == icon


def test_parse_entity_types():
    assert [entity.value for entity in parse_entity_types("all")] == ["sections", "suppliers", "ingredients"]
    assert [entity.value for entity in parse_entity_types("Suppliers")] == ["suppliers"]
    with pytest.raises(ValidationError):
        parse_entity_types("recipes")


def test_supplier_sync_is_idempotent(guard, tenant):
    pos = _pos()
    reconciler = SyncReconciler(guard=guard, pos_client_factory=pos)

    first = reconciler.reconcile(tenant.id, "suppliers")
    second = reconciler.reconcile(tenant.id, "suppliers")

    assert (first.created, first.updated, first.count) == (2, 0, 2)
    assert (second.created, second.updated, second.count) == (0, 0, 2)
    suppliers = _rows(guard, tenant.id, Supplier)
    assert [(s.name, s.external_supplier_id) for s in suppliers] == [("Fresh Farm", "11"), ("Dairy Co", "12")]
    assert suppliers[0].contact_info == "1 Farm Rd"
    assert pos.closed == 2
    assert pos.opened_with[0][:2] == ("bistro", "pos-token")


def test_empty_snapshot_bootstraps_whole_catalog_and_listed_snapshot_limits_it(guard, tenant):
    reconciler = SyncReconciler(guard=guard, pos_client_factory=_pos())

    report = reconciler.reconcile(tenant.id)

    sections = _section_ids(guard, tenant.id)
    kitchen_products = _rows(guard, tenant.id, Product, Product.section_id == sections["1"])
    bar_products = _rows(guard, tenant.id, Product, Product.section_id == sections["2"])
    assert len(kitchen_products) == 10
    assert sorted(p.external_ingredient_id for p in bar_products) == ["101", "105", "109"]
    assert report.per_entity_counts["ingredients"].created == 13
    assert report.partial_failures == []
    assert report.to_dict()["success"] is True


def test_sections_get_icons_and_are_created_once(guard, tenant):
    reconciler = SyncReconciler(guard=guard, pos_client_factory=_pos())

    reconciler.reconcile(tenant.id, "sections")
    again = reconciler.reconcile(tenant.id, "sections")

    sections = _rows(guard, tenant.id, Section)
    assert [(s.name, s.icon) for s in sections] == [("Main Kitchen", "🍳"), ("Bar", "🍷")]
    assert again.created == 0


def test_failed_stock_snapshot_skips_only_that_section(guard, tenant):
    reconciler = SyncReconciler(guard=guard, pos_client_factory=_pos(fail={"get_storage_leftovers:2"}))

    report = reconciler.reconcile(tenant.id)

    sections = _section_ids(guard, tenant.id)
    assert len(_rows(guard, tenant.id, Product, Product.section_id == sections["1"])) == 10
    assert _rows(guard, tenant.id, Product, Product.section_id == sections["2"]) == []
    assert [(f.entity_type, f.scope) for f in report.partial_failures] == [
        ("ingredients", f"section:{sections['2']}")
    ]
    status = reconciler.get_sync_status(tenant.id)["ingredients"]
    assert status["last_sync_success"] is False
    assert "HTTP 503" in status["last_sync_error"]
    assert status["needs_sync"] is False


def test_every_snapshot_failing_keeps_ingredients_stale(guard, tenant):
    pos = _pos(fail={"get_storage_leftovers:1", "get_storage_leftovers:2"})
    reconciler = SyncReconciler(guard=guard, pos_client_factory=pos)

    report = reconciler.reconcile(tenant.id)

    assert len(report.partial_failures) == 2
    assert _rows(guard, tenant.id, Product) == []
    assert reconciler.get_sync_status(tenant.id)["ingredients"]["needs_sync"] is True


def test_one_entity_failing_does_not_stop_the_others(guard, tenant):
    reconciler = SyncReconciler(guard=guard, pos_client_factory=_pos(fail={"get_suppliers"}))

    report = reconciler.reconcile(tenant.id)

    assert [(f.entity_type, f.scope) for f in report.partial_failures] == [("suppliers", "entity")]
    assert report.per_entity_counts["suppliers"].count == 0
    assert report.per_entity_counts["sections"].created == 2
    assert report.per_entity_counts["ingredients"].created == 13
    status = reconciler.get_sync_status(tenant.id)
    assert status["suppliers"]["last_synced_at"] is None
    assert status["suppliers"]["last_sync_success"] is False
    assert status["sections"]["needs_sync"] is False


def test_resync_refreshes_reactivates_and_never_deletes(guard, seed, tenant):
    reconciler = SyncReconciler(guard=guard, pos_client_factory=_pos())
    reconciler.reconcile(tenant.id)
    sections = _section_ids(guard, tenant.id)
    local_only = seed.product(tenant.id, sections["1"], "House sauce")
    with guard.tenant_transaction(tenant.id) as session:
        session.execute(
            update(Product)
            .where(Product.external_ingredient_id == "101")
            .values(is_active=False, name="Old name")
            .execution_options(synchronize_session=False)
        )
        session.execute(
            update(Section)
            .where(Section.id == sections["2"])
            .values(is_active=False, name="Old bar")
            .execution_options(synchronize_session=False)
        )

    trimmed = _pos(
        storages=[{"storage_id": "2", "storage_name": "Bar"}],
        ingredients=POS_INGREDIENTS[:1],
        leftovers={"2": []},
    )
    report = SyncReconciler(guard=guard, pos_client_factory=trimmed).reconcile(tenant.id)

    assert report.per_entity_counts["sections"].updated == 1
    bar = _rows(guard, tenant.id, Section, Section.id == sections["2"])[0]
    assert (bar.name, bar.is_active) == ("Bar", True)
    assert len(_rows(guard, tenant.id, Section)) == 2
    refreshed = _rows(guard, tenant.id, Product, Product.external_ingredient_id == "101")
    assert {(p.name, p.is_active) for p in refreshed} == {("Ingredient 1", True)}
    assert len(_rows(guard, tenant.id, Product, Product.section_id == sections["1"])) == 11
    assert _rows(guard, tenant.id, Product, Product.id == local_only.id)[0].name == "House sauce"


def test_unlinked_local_supplier_is_linked_by_name(guard, seed, tenant):
    local = seed.supplier(tenant.id, "fresh farm")
    reconciler = SyncReconciler(guard=guard, pos_client_factory=_pos())

    report = reconciler.reconcile(tenant.id, "suppliers")

    suppliers = _rows(guard, tenant.id, Supplier)
    assert len(suppliers) == 2
    assert suppliers[0].id == local.id
    assert (suppliers[0].name, suppliers[0].external_supplier_id) == ("Fresh Farm", "11")
    assert (report.created, report.updated) == (1, 1)


def test_sync_is_tenant_scoped(guard, tenant, other_tenant):
    SyncReconciler(guard=guard, pos_client_factory=_pos()).reconcile(tenant.id, "sections")

    assert _rows(guard, other_tenant.id, Section) == []
    assert SyncReconciler(guard=guard).get_sync_status(other_tenant.id)["sections"]["needs_sync"] is True


def test_entity_exceeding_its_deadline_is_reported_and_not_advanced(guard, tenant):
    ticks = itertools.count(0, 100)
    reconciler = SyncReconciler(
        guard=guard,
        pos_client_factory=_pos(),
        entity_timeout=60,
        clock=ticks.__next__,
    )

    report = reconciler.reconcile(tenant.id, "suppliers")

    assert report.partial_failures[0].scope == "entity"
    assert "exceeded" in report.partial_failures[0].error
    assert _rows(guard, tenant.id, Supplier) == []
    assert reconciler.get_sync_status(tenant.id)["suppliers"]["last_synced_at"] is None


def test_status_goes_stale_after_threshold(guard, tenant):
    reconciler = SyncReconciler(guard=guard, pos_client_factory=_pos(), stale_after_hours=24)
    assert all(entry["needs_sync"] for entry in reconciler.get_sync_status(tenant.id).values())

    reconciler.reconcile(tenant.id, "sections")
    assert reconciler.get_sync_status(tenant.id)["sections"]["needs_sync"] is False

    with guard.tenant_transaction(tenant.id) as session:
        row = session.execute(select(SyncStatus).where(SyncStatus.entity_type == "sections")).scalar_one()
        row.last_synced_at = utcnow() - timedelta(hours=25)
        assert row.sync_count == 1

    status = reconciler.get_sync_status(tenant.id)["sections"]
    assert status["needs_sync"] is True
    assert status["last_sync_success"] is True


def test_sync_requires_linked_pos_and_known_tenant(guard, seed):
    offline = seed.tenant("Offline Diner", account="offline", linked=False)
    reconciler = SyncReconciler(guard=guard, pos_client_factory=_pos())

    with pytest.raises(ValidationError):
        reconciler.reconcile(offline.id)
    with pytest.raises(NotFoundError):
        reconciler.reconcile(9999)
