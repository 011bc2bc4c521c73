from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from restock.core.errors import PermissionDenied
from restock.deps import get_identity, get_sync_reconciler
from restock.services.permissions import Identity, UserCapabilities
from restock.services.sync_reconciler import SyncReconciler

router = APIRouter(prefix="/api/sync", tags=["sync"])

logger = logging.getLogger(__name__)


@router.get("/status")
def sync_status(
    identity: Identity = Depends(get_identity),
    reconciler: SyncReconciler = Depends(get_sync_reconciler),
):
    return {"success": True, "data": reconciler.get_sync_status(identity.tenant_id)}


@router.post("/{entity_type}")
def run_sync(
    entity_type: str,
    identity: Identity = Depends(get_identity),
    reconciler: SyncReconciler = Depends(get_sync_reconciler),
):
    caps = UserCapabilities(user_id=identity.user_id, role=identity.role)
    if not caps.is_privileged:
        logger.warning("Sync denied: user_id=%s role=%s", identity.user_id, identity.role.value)
        raise PermissionDenied("Only admins and managers can run a POS sync", capability="sync")
    report = reconciler.reconcile(identity.tenant_id, entity_type)
    return report.to_dict()
