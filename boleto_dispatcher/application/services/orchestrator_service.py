"""Sync orchestrator — the pipelines behind the cron triggers and the daily job."""

from datetime import date
from typing import Any, Dict, Optional

import httpx
import structlog

from boleto_dispatcher.application.services.invoice_sync_service import sync_rolling_window
from boleto_dispatcher.application.services.mirror_service import sync_clone
from boleto_dispatcher.application.services.notification_service import local_today, run_scheduled_sends
from boleto_dispatcher.application.services.send_log import SendLog
from boleto_dispatcher.core.exceptions import AppError
from boleto_dispatcher.domain.repositories.cache_store import CacheStore
from boleto_dispatcher.infrastructure.cora.client import CoraClient
from boleto_dispatcher.infrastructure.supabase_rest import SupabaseRestClient
from boleto_dispatcher.infrastructure.whatsapp_gateway import resolve_gateway

logger = structlog.get_logger(__name__)

STEP_SYNC_CLONE = "sync-clone"
STEP_SCHEDULED_SENDS = "run-scheduled-sends"


class StepFailed(AppError):
    """A daily-job step failed; carries the step name and the original error."""

    def __init__(self, step: str, cause: Exception):
        self.step = step
        self.cause = cause
        if isinstance(cause, AppError):
            super().__init__(cause.message, cause.status_code, cause.details)
        else:
            super().__init__(str(cause) or cause.__class__.__name__)


async def run_scheduled_pipeline(
    store: CacheStore,
    cora: CoraClient,
    remote: Optional[SupabaseRestClient] = None,
    today: Optional[date] = None,
    gateway_transport: Optional[httpx.AsyncBaseTransport] = None,
    **send_options: Any,
) -> Dict[str, Any]:
    """Invoice sync for the rolling window, then the notification scheduler."""
    today = today or local_today()
    # Fail on missing gateway config before any network call
    gateway = resolve_gateway(store, transport=gateway_transport)

    synced = await sync_rolling_window(store, cora, today)
    result = await run_scheduled_sends(
        store, cora, gateway, SendLog(store, remote), today=today, **send_options
    )
    return {"success": True, "synced": synced, **result}


async def run_daily(
    store: CacheStore,
    cora: CoraClient,
    remote: Optional[SupabaseRestClient],
    today: Optional[date] = None,
    **pipeline_options: Any,
) -> Dict[str, Any]:
    """Mirror sync, then scheduled sends. The first failing step raises ``StepFailed``."""
    try:
        counts = await sync_clone(store, remote)
    except Exception as e:
        logger.error("Daily job step failed", step=STEP_SYNC_CLONE, error=str(e))
        raise StepFailed(STEP_SYNC_CLONE, e) from e

    try:
        sends = await run_scheduled_pipeline(store, cora, remote, today=today, **pipeline_options)
    except Exception as e:
        logger.error("Daily job step failed", step=STEP_SCHEDULED_SENDS, error=str(e))
        raise StepFailed(STEP_SCHEDULED_SENDS, e) from e

    return {"success": True, "syncClone": {"success": True, "counts": counts}, "scheduledSends": sends}
