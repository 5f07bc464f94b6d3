"""On-demand delivery of one company's boleto (PDF + message) or a plain reminder."""

import asyncio
import base64
import re
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import structlog

from boleto_dispatcher.config import get_settings
from boleto_dispatcher.core.exceptions import AppError, SyncError
from boleto_dispatcher.domain.schemas.billing import Competencia
from boleto_dispatcher.domain.schemas.notification import EmpresaPayload
from boleto_dispatcher.infrastructure.cora.client import CoraClient
from boleto_dispatcher.infrastructure.whatsapp_gateway import WascriptClient, with_retry

logger = structlog.get_logger(__name__)


def delivery_filename(empresa: EmpresaPayload, competencia: Competencia) -> str:
    return f"boleto_{empresa.apelido or empresa.nome or 'cliente'}_{competencia.mes:02d}_{competencia.ano}.pdf"


async def find_invoice_id(cora: CoraClient, cnpj: str, competencia: Competencia) -> str:
    """First invoice of the period for the company's CNPJ."""
    page = await cora.search_invoices(
        competencia.first_day,
        competencia.last_day,
        page=1,
        per_page=get_settings().CORA_PAGE_SIZE,
        search=re.sub(r"\D", "", cnpj or "") or None,
    )
    items = page.get("items") if isinstance(page, dict) else None
    if not items or not items[0].get("id"):
        raise SyncError("No invoices found for the given period", details={"competencia": competencia.label})
    return str(items[0]["id"])


async def process_boleto_complete(
    cora: CoraClient,
    gateway: WascriptClient,
    empresa: EmpresaPayload,
    competencia: Competencia,
    message: str = "",
    invoice_id: Optional[str] = None,
    retry_attempts: Optional[int] = None,
    retry_delay: Optional[float] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Dict[str, Any]:
    """Send the boleto PDF (best effort), then the message text.

    A PDF failure is reported in ``pdfError`` and never blocks the text. A text
    failure propagates as a ``DispatchError``.
    """
    settings = get_settings()
    attempts = retry_attempts or settings.RETRY_ATTEMPTS
    delay = settings.RETRY_DELAY_SECONDS if retry_delay is None else retry_delay

    pdf_sent = False
    pdf_error = None
    try:
        invoice_id = invoice_id or await find_invoice_id(cora, empresa.cnpj, competencia)
        pdf = await cora.fetch_invoice_pdf(invoice_id)
        encoded = base64.b64encode(pdf).decode("ascii")
        filename = delivery_filename(empresa, competencia)
        await with_retry(
            lambda: gateway.send_document(empresa.telefone, encoded, filename),
            attempts=attempts,
            delay=delay,
            sleep=sleep,
        )
        pdf_sent = True
    except (AppError, httpx.HTTPError) as e:
        pdf_error = getattr(e, "message", None) or str(e)
        logger.warning("Boleto PDF not delivered", cnpj=empresa.cnpj, competencia=competencia.label, error=pdf_error)

    message_sent = False
    if message.strip():
        await with_retry(
            lambda: gateway.send_text(empresa.telefone, message),
            attempts=attempts,
            delay=delay,
            sleep=sleep,
        )
        message_sent = True

    logger.info(
        "Boleto delivery finished",
        cnpj=empresa.cnpj,
        competencia=competencia.label,
        pdf_sent=pdf_sent,
        message_sent=message_sent,
    )
    return {
        "success": pdf_sent or message_sent,
        "pdfSent": pdf_sent,
        "messageSent": message_sent,
        "invoiceId": invoice_id,
        "pdfError": pdf_error,
    }


async def send_reminder(
    gateway: WascriptClient,
    empresa: EmpresaPayload,
    message: str,
    retry_attempts: Optional[int] = None,
    retry_delay: Optional[float] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Dict[str, Any]:
    settings = get_settings()
    await with_retry(
        lambda: gateway.send_text(empresa.telefone, message),
        attempts=retry_attempts or settings.RETRY_ATTEMPTS,
        delay=settings.RETRY_DELAY_SECONDS if retry_delay is None else retry_delay,
        sleep=sleep,
    )
    return {"success": True, "messageSent": True}
