"""Notification routes — on-demand boleto delivery and reminders over WhatsApp."""

from fastapi import APIRouter, Depends

from boleto_dispatcher.application.services.boleto_delivery_service import (
    process_boleto_complete,
    send_reminder,
)
from boleto_dispatcher.domain.repositories.cache_store import CacheStore
from boleto_dispatcher.domain.schemas.billing import Competencia
from boleto_dispatcher.domain.schemas.notification import (
    ProcessBoletoRequest,
    ProcessBoletoResponse,
    SendReminderRequest,
    SendReminderResponse,
)
from boleto_dispatcher.infrastructure.cora.client import CoraClient
from boleto_dispatcher.infrastructure.whatsapp_gateway import resolve_gateway
from boleto_dispatcher.interfaces.api.deps import get_cache_store, get_cora_client, verify_cron_secret

router = APIRouter(
    prefix="/api/notifications/whatsapp-optimized",
    tags=["Notifications"],
    dependencies=[Depends(verify_cron_secret)],
)


@router.post("/process-boleto-complete", response_model=ProcessBoletoResponse)
async def process_boleto(
    body: ProcessBoletoRequest,
    store: CacheStore = Depends(get_cache_store),
    cora: CoraClient = Depends(get_cora_client),
):
    """Send the period's boleto PDF (best effort) followed by the message."""
    gateway = resolve_gateway(store, body.wascriptApiUrl, body.wascriptToken)
    return await process_boleto_complete(
        cora,
        gateway,
        body.empresa,
        Competencia.parse(body.competencia),
        message=body.mensagem,
        invoice_id=body.invoiceId,
    )


@router.post("/send-reminder", response_model=SendReminderResponse)
async def reminder(
    body: SendReminderRequest,
    store: CacheStore = Depends(get_cache_store),
):
    gateway = resolve_gateway(store, body.wascriptApiUrl, body.wascriptToken)
    return await send_reminder(gateway, body.empresa, body.mensagem)
