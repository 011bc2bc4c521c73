"""Pull sections, suppliers and ingredients from the POS into tenant storage.

Every entity type is fetched with no database session held, then merged in a
short tenant transaction. Upserts are keyed on the upstream id so repeated runs
converge on the same rows; local rows missing upstream are left alone.

A failure in one entity type (or in one section's stock snapshot) is reported
in ``ReconcileReport.partial_failures`` and the run carries on with the rest.
"""
from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Any, Callable, Iterable

from sqlalchemy import select

from restock.core.config import POS_TIMEOUT_SECONDS, SYNC_ENTITY_TIMEOUT_SECONDS, SYNC_STALE_AFTER_HOURS
from restock.core.enums import SYNC_ORDER, SyncEntity
from restock.core.errors import ExternalSystemError, NotFoundError, ValidationError
from restock.integrations.pos_client import PosClient, PosIngredient
from restock.models.mixins import as_utc, utcnow
from restock.models.product import Product
from restock.models.section import Section
from restock.models.supplier import Supplier
from restock.models.sync_status import SyncStatus
from restock.models.tenant import Tenant
from restock.services.tenant_context import TenantGuard, default_guard

logger = logging.getLogger(__name__)

DEFAULT_SECTION_ICON = "📍"

# First keyword found in the lower-cased storage name wins.
_SECTION_ICONS = (
    (("kitchen", "кухня"), "🍳"),
    (("bar", "бар"), "🍷"),
    (("housekeeping", "горничная"), "🧹"),
    (("warehouse", "storage", "склад"), "📦"),
    (("office", "офис"), "💼"),
    (("reception", "ресепшн"), "🔑"),
)


def section_icon(name: str) -> str:
    lowered = (name or "").lower()
    for keywords, icon in _SECTION_ICONS:
        if any(keyword in lowered for keyword in keywords):
            return icon
    return DEFAULT_SECTION_ICON


class SyncTimeoutError(ExternalSystemError):
    pass


class Deadline:
    def __init__(self, seconds: float, entity_type: str, clock: Callable[[], float] = time.monotonic):
        self.seconds = seconds
        self.entity_type = entity_type
        self._clock = clock
        self._started = clock()

    def check(self) -> None:
        if self._clock() - self._started >= self.seconds:
            raise SyncTimeoutError(
                f"Sync of {self.entity_type} exceeded {self.seconds:g}s",
                operation=f"sync.{self.entity_type}",
            )


@dataclass
class EntityCounts:
    created: int = 0
    updated: int = 0
    count: int = 0


@dataclass
class PartialSyncFailure:
    entity_type: str
    scope: str
    error: str


@dataclass
class ReconcileReport:
    per_entity_counts: dict[str, EntityCounts] = field(default_factory=dict)
    partial_failures: list[PartialSyncFailure] = field(default_factory=list)

    @property
    def created(self) -> int:
        return sum(counts.created for counts in self.per_entity_counts.values())

    @property
    def updated(self) -> int:
        return sum(counts.updated for counts in self.per_entity_counts.values())

    @property
    def count(self) -> int:
        return sum(counts.count for counts in self.per_entity_counts.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "created": self.created,
            "updated": self.updated,
            "count": self.count,
            "per_entity_counts": {name: asdict(counts) for name, counts in self.per_entity_counts.items()},
            "partial_failures": [asdict(failure) for failure in self.partial_failures],
        }


@dataclass
class _EntityRun:
    counts: EntityCounts = field(default_factory=EntityCounts)
    failures: list[PartialSyncFailure] = field(default_factory=list)
    # False when nothing was actually reconciled, so staleness is kept.
    advance: bool = True


def parse_entity_types(entity_type: str | SyncEntity) -> tuple[SyncEntity, ...]:
    if isinstance(entity_type, SyncEntity):
        return (entity_type,)
    value = (entity_type or "").strip().lower()
    if value == "all":
        return SYNC_ORDER
    try:
        return (SyncEntity(value),)
    except ValueError as exc:
        raise ValidationError(f"Unknown sync entity type: {entity_type!r}") from exc


def _changed(row: Any, **values: Any) -> bool:
    changed = False
    for name, value in values.items():
        if getattr(row, name) != value:
            setattr(row, name, value)
            changed = True
    return changed


class SyncReconciler:
    def __init__(
        self,
        guard: TenantGuard | None = None,
        pos_client_factory: Callable[..., PosClient] | None = None,
        *,
        entity_timeout: float = SYNC_ENTITY_TIMEOUT_SECONDS,
        stale_after_hours: float = SYNC_STALE_AFTER_HOURS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.guard = guard or default_guard
        self._pos_client_factory = pos_client_factory or PosClient
        self.entity_timeout = entity_timeout
        self.stale_after = timedelta(hours=stale_after_hours)
        self._clock = clock

    def reconcile(self, tenant_id: int, entity_type: str | SyncEntity = "all") -> ReconcileReport:
        entity_types = parse_entity_types(entity_type)
        account_name, access_token = self._credentials(tenant_id)
        report = ReconcileReport()
        syncers = {
            SyncEntity.SECTIONS: self._sync_sections,
            SyncEntity.SUPPLIERS: self._sync_suppliers,
            SyncEntity.INGREDIENTS: self._sync_ingredients,
        }

        with self._pos_client_factory(account_name, access_token, timeout=POS_TIMEOUT_SECONDS) as client:
            for entity in entity_types:
                started = self._clock()
                deadline = Deadline(self.entity_timeout, entity.value, clock=self._clock)
                try:
                    run = syncers[entity](tenant_id, client, deadline)
                except ExternalSystemError as exc:
                    logger.warning(
                        "Sync failed: entity_type=%s error=%s", entity.value, exc.message,
                        extra={"entity_type": entity.value},
                    )
                    report.per_entity_counts[entity.value] = EntityCounts()
                    report.partial_failures.append(
                        PartialSyncFailure(entity_type=entity.value, scope="entity", error=exc.message)
                    )
                    self._record_status(tenant_id, entity, success=False, error=exc.message, advance=False)
                    continue

                report.per_entity_counts[entity.value] = run.counts
                report.partial_failures.extend(run.failures)
                error = "; ".join(f"{failure.scope}: {failure.error}" for failure in run.failures) or None
                self._record_status(tenant_id, entity, success=not run.failures, error=error, advance=run.advance)
                logger.info(
                    "Sync finished: entity_type=%s created=%s updated=%s count=%s failures=%s duration_ms=%.0f",
                    entity.value,
                    run.counts.created,
                    run.counts.updated,
                    run.counts.count,
                    len(run.failures),
                    (self._clock() - started) * 1000,
                    extra={"entity_type": entity.value},
                )
        return report

    def get_sync_status(self, tenant_id: int) -> dict[str, dict[str, Any]]:
        now = utcnow()
        with self.guard.tenant_session(tenant_id) as session:
            rows = {row.entity_type: row for row in session.scalars(select(SyncStatus))}

        status: dict[str, dict[str, Any]] = {}
        for entity in SYNC_ORDER:
            row = rows.get(entity.value)
            last_synced_at = as_utc(row.last_synced_at) if row is not None else None
            status[entity.value] = {
                "last_synced_at": last_synced_at,
                "needs_sync": last_synced_at is None or now - last_synced_at > self.stale_after,
                "last_sync_success": row.last_sync_success if row is not None else None,
                "last_sync_error": row.last_sync_error if row is not None else None,
            }
        return status

    # -- helpers -----------------------------------------------------------

    def _credentials(self, tenant_id: int) -> tuple[str, str]:
        with self.guard.tenant_session(tenant_id) as session:
            tenant = session.get(Tenant, int(tenant_id))
            if tenant is None or not tenant.is_active:
                raise NotFoundError(f"Tenant {tenant_id} not found")
            if not tenant.pos_configured:
                raise ValidationError("POS integration is not configured for this tenant")
            return tenant.pos_account_name, tenant.pos_access_token

    def _record_status(
        self,
        tenant_id: int,
        entity: SyncEntity,
        *,
        success: bool,
        error: str | None,
        advance: bool,
    ) -> None:
        now = utcnow()
        with self.guard.tenant_transaction(tenant_id) as session:
            row = session.execute(
                select(SyncStatus).where(SyncStatus.entity_type == entity.value)
            ).scalar_one_or_none()
            if row is None:
                row = SyncStatus(entity_type=entity.value, sync_count=0)
                session.add(row)
            if advance:
                row.last_synced_at = now
                row.sync_count = (row.sync_count or 0) + 1
            row.last_sync_success = success
            row.last_sync_error = error
            row.updated_at = now

    def _sync_sections(self, tenant_id: int, client: PosClient, deadline: Deadline) -> _EntityRun:
        storages = client.get_storages()
        deadline.check()
        run = _EntityRun()
        with self.guard.tenant_transaction(tenant_id) as session:
            existing = {
                section.external_storage_id: section
                for section in session.scalars(select(Section).where(Section.external_storage_id.is_not(None)))
            }
            for storage in storages:
                run.counts.count += 1
                section = existing.get(storage.storage_id)
                if section is None:
                    section = Section(
                        name=storage.name,
                        icon=section_icon(storage.name),
                        external_storage_id=storage.storage_id,
                        is_active=True,
                    )
                    session.add(section)
                    existing[storage.storage_id] = section
                    run.counts.created += 1
                elif _changed(section, name=storage.name, icon=section_icon(storage.name), is_active=True):
                    run.counts.updated += 1
        return run

    def _sync_suppliers(self, tenant_id: int, client: PosClient, deadline: Deadline) -> _EntityRun:
        upstream = client.get_suppliers()
        deadline.check()
        run = _EntityRun()
        with self.guard.tenant_transaction(tenant_id) as session:
            rows = list(session.scalars(select(Supplier).order_by(Supplier.id)))
            by_external = {row.external_supplier_id: row for row in rows if row.external_supplier_id}
            by_name = {}
            unlinked = {}
            for row in rows:
                by_name.setdefault(row.name, row)
                if not row.external_supplier_id:
                    unlinked.setdefault(row.name.strip().lower(), row)

            for supplier in upstream:
                run.counts.count += 1
                external_id = supplier.supplier_id or None
                local = None
                if external_id:
                    local = by_external.get(external_id)
                    if local is None:
                        local = unlinked.pop(supplier.name.strip().lower(), None)
                else:
                    local = by_name.get(supplier.name)

                values = {"name": supplier.name, "phone": supplier.phone, "contact_info": supplier.address}
                if local is None:
                    local = Supplier(external_supplier_id=external_id, **values)
                    session.add(local)
                    run.counts.created += 1
                else:
                    if external_id:
                        values["external_supplier_id"] = external_id
                    if _changed(local, **values):
                        run.counts.updated += 1

                if external_id:
                    by_external[external_id] = local
                by_name.setdefault(supplier.name, local)
        return run

    def _sync_ingredients(self, tenant_id: int, client: PosClient, deadline: Deadline) -> _EntityRun:
        catalog = client.get_ingredients()
        deadline.check()
        run = _EntityRun()

        with self.guard.tenant_session(tenant_id) as session:
            sections = [
                (section.id, section.external_storage_id)
                for section in session.scalars(
                    select(Section)
                    .where(Section.is_active.is_(True), Section.external_storage_id.is_not(None))
                    .order_by(Section.id)
                )
            ]

        snapshots: dict[int, set[str]] = {}
        for section_id, storage_id in sections:
            deadline.check()
            try:
                leftovers = client.get_storage_leftovers(storage_id)
            except SyncTimeoutError:
                raise
            except ExternalSystemError as exc:
                logger.warning(
                    "Stock snapshot failed: section_id=%s storage_id=%s error=%s",
                    section_id,
                    storage_id,
                    exc.message,
                    extra={"entity_type": SyncEntity.INGREDIENTS.value},
                )
                run.failures.append(
                    PartialSyncFailure(
                        entity_type=SyncEntity.INGREDIENTS.value,
                        scope=f"section:{section_id}",
                        error=exc.message,
                    )
                )
                continue
            snapshots[section_id] = {leftover.ingredient_id for leftover in leftovers}

        if sections and not snapshots:
            run.advance = False
            return run

        with self.guard.tenant_transaction(tenant_id) as session:
            existing = {
                (product.section_id, product.external_ingredient_id): product
                for product in session.scalars(
                    select(Product).where(Product.section_id.in_(list(snapshots) or [-1]))
                )
            }
            for section_id, stocked in snapshots.items():
                for ingredient in self._ingredients_for_section(catalog, stocked):
                    run.counts.count += 1
                    key = (section_id, ingredient.ingredient_id)
                    product = existing.get(key)
                    if product is None:
                        product = Product(
                            section_id=section_id,
                            external_ingredient_id=ingredient.ingredient_id,
                            name=ingredient.name,
                            unit=ingredient.unit,
                            is_active=True,
                        )
                        session.add(product)
                        existing[key] = product
                        run.counts.created += 1
                    elif _changed(product, name=ingredient.name, unit=ingredient.unit, is_active=True):
                        run.counts.updated += 1
        return run

    @staticmethod
    def _ingredients_for_section(catalog: Iterable[PosIngredient], stocked: set[str]) -> list[PosIngredient]:
        # Empty snapshot: storage not populated yet, offer the whole catalog.
        if not stocked:
            return list(catalog)
        return [ingredient for ingredient in catalog if ingredient.ingredient_id in stocked]
