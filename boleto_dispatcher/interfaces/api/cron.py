"""Cron trigger routes — mirror sync, scheduled sends, the daily pipeline and scheduler status."""

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from boleto_dispatcher.application.services.mirror_service import sync_clone
from boleto_dispatcher.application.services.orchestrator_service import (
    StepFailed,
    run_daily,
    run_scheduled_pipeline,
)
from boleto_dispatcher.core.exceptions import error_body
from boleto_dispatcher.domain.repositories.cache_store import CacheStore
from boleto_dispatcher.infrastructure.cora.client import CoraClient
from boleto_dispatcher.infrastructure.supabase_rest import SupabaseRestClient
from boleto_dispatcher.interfaces.api.deps import (
    get_cache_store,
    get_cora_client,
    get_remote_store,
    verify_cron_secret,
)
from boleto_dispatcher.scheduler.jobs import scheduler_status

router = APIRouter(prefix="/api/cron", tags=["Cron"], dependencies=[Depends(verify_cron_secret)])


@router.post("/sync-clone")
async def trigger_sync_clone(
    store: CacheStore = Depends(get_cache_store),
    remote: Optional[SupabaseRestClient] = Depends(get_remote_store),
):
    """Replace the local cache with the Supabase tables."""
    counts = await sync_clone(store, remote)
    return {"success": True, "counts": counts}


@router.post("/run-scheduled-sends")
async def trigger_scheduled_sends(
    store: CacheStore = Depends(get_cache_store),
    cora: CoraClient = Depends(get_cora_client),
    remote: Optional[SupabaseRestClient] = Depends(get_remote_store),
):
    """Sync invoices for the current and next period, then send today's notifications."""
    return await run_scheduled_pipeline(store, cora, remote)


@router.post("/run-daily")
async def trigger_daily(
    store: CacheStore = Depends(get_cache_store),
    cora: CoraClient = Depends(get_cora_client),
    remote: Optional[SupabaseRestClient] = Depends(get_remote_store),
):
    try:
        return await run_daily(store, cora, remote)
    except StepFailed as e:
        body = error_body(e)
        body["code"] = e.cause.__class__.__name__
        body["step"] = e.step
        return JSONResponse(status_code=e.status_code, content=body)


@router.get("/scheduler-status")
def get_scheduler_status():
    return scheduler_status()
