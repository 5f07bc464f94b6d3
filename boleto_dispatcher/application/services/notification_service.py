"""Notification scheduler — decides, per cached boleto, which WhatsApp message is due today.

Features:
- Offset rules from the due date (5 days before, due today, 2 and 5 days late)
- Dedup by (empresa, competência, tipo) against successful sends, including this run's
- PDF + text for reminders that carry the boleto, text only for the due-day nudge
- Per-boleto failure isolation, fixed delay between gateway calls
"""

import asyncio
import base64
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import pytz
import structlog

from boleto_dispatcher.application.services.send_log import SendLog
from boleto_dispatcher.application.services.template_service import effective_due_date, resolve_template
from boleto_dispatcher.config import get_settings
from boleto_dispatcher.core.exceptions import AuthError, ConfigurationError
from boleto_dispatcher.domain.models.boleto import CoraBoleto
from boleto_dispatcher.domain.models.empresa import CoraEmpresa
from boleto_dispatcher.domain.repositories.cache_store import CacheStore
from boleto_dispatcher.domain.schemas.billing import (
    BoletoStatus,
    Competencia,
    DedupKey,
    NotificationType,
    SendRecord,
)
from boleto_dispatcher.domain.schemas.notification import MIN_PHONE_DIGITS
from boleto_dispatcher.infrastructure.cora.client import CoraClient
from boleto_dispatcher.infrastructure.whatsapp_gateway import WascriptClient, with_retry

logger = structlog.get_logger(__name__)

CANDIDATE_STATUSES = (BoletoStatus.OPEN.value, BoletoStatus.LATE.value)

# Scheduled runs share the dedup ledger, so they must not overlap
_run_lock = asyncio.Lock()


@dataclass(frozen=True)
class NotificationRule:
    tipo: NotificationType
    template_key: str
    attach_pdf: bool


RULE_FIVE_DAYS_BEFORE = NotificationRule(NotificationType.FIVE_DAYS_BEFORE, "before_due", True)
RULE_DUE_TODAY = NotificationRule(NotificationType.DUE_TODAY, "reminder_today", False)
RULE_TWO_DAYS_LATE = NotificationRule(NotificationType.TWO_DAYS_LATE, "after_due", True)
RULE_FIVE_DAYS_LATE = NotificationRule(NotificationType.FIVE_DAYS_LATE, "after_due", True)


def days_until_due(due: date, today: date) -> int:
    return (due - today).days


def days_past_due(due: date, today: date) -> int:
    """Whole days since the due date, or -1 before it."""
    return (today - due).days if today >= due else -1


def select_rule(due: date, status: BoletoStatus, today: date) -> Optional[NotificationRule]:
    """The single notification due today for a boleto, if any."""
    until = days_until_due(due, today)
    past = days_past_due(due, today)
    if until == 5:
        return RULE_FIVE_DAYS_BEFORE
    if until == 0:
        return RULE_DUE_TODAY
    if status == BoletoStatus.LATE and past == 2:
        return RULE_TWO_DAYS_LATE
    if status == BoletoStatus.LATE and past == 5:
        return RULE_FIVE_DAYS_LATE
    return None


def boleto_competencia(boleto: CoraBoleto) -> Optional[Competencia]:
    if boleto.competencia_mes and boleto.competencia_ano:
        return Competencia(boleto.competencia_mes, boleto.competencia_ano)
    if boleto.due_date:
        return Competencia.of(boleto.due_date)
    return None


def pdf_filename(empresa: CoraEmpresa, competencia: Competencia) -> str:
    return f"boleto_{empresa.client_name or empresa.id}_{competencia.mes:02d}_{competencia.ano}.pdf"


def _phone_digits(raw: Optional[str]) -> str:
    return "".join(ch for ch in (raw or "") if ch.isdigit())


def local_today() -> date:
    return datetime.now(pytz.timezone(get_settings().TIMEZONE)).date()


async def _dispatch(
    rule: NotificationRule,
    boleto: CoraBoleto,
    empresa: CoraEmpresa,
    competencia: Competencia,
    message: str,
    cora: CoraClient,
    gateway: WascriptClient,
    attempts: int,
    retry_delay: float,
    sleep: Callable[[float], Awaitable[Any]],
) -> None:
    if rule.attach_pdf:
        pdf = await cora.fetch_invoice_pdf(boleto.cora_invoice_id)
        encoded = base64.b64encode(pdf).decode("ascii")
        filename = pdf_filename(empresa, competencia)
        await with_retry(
            lambda: gateway.send_document(empresa.telefone, encoded, filename),
            attempts=attempts,
            delay=retry_delay,
            sleep=sleep,
        )
    await with_retry(
        lambda: gateway.send_text(empresa.telefone, message),
        attempts=attempts,
        delay=retry_delay,
        sleep=sleep,
    )


async def run_scheduled_sends(
    store: CacheStore,
    cora: CoraClient,
    gateway: WascriptClient,
    send_log: SendLog,
    today: Optional[date] = None,
    delay_seconds: Optional[float] = None,
    retry_attempts: Optional[int] = None,
    retry_delay: Optional[float] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Dict[str, Any]:
    """Evaluate every open/late boleto against today's rules and send what is due.

    Returns ``{"sent": int, "skipped": int, "errors": [{"empresa", "tipo", "error"}]}``.
    ``ConfigurationError`` and ``AuthError`` abort the run; any other per-boleto
    failure is recorded and the loop moves on.
    """
    settings = get_settings()
    today = today or local_today()
    delay_seconds = settings.SEND_DELAY_SECONDS if delay_seconds is None else delay_seconds
    retry_attempts = retry_attempts or settings.RETRY_ATTEMPTS
    retry_delay = settings.RETRY_DELAY_SECONDS if retry_delay is None else retry_delay

    async with _run_lock:
        sent = 0
        skipped = 0
        errors: List[Dict[str, str]] = []
        already_sent: Set[DedupKey] = store.successful_envio_keys()
        empresas: Dict[str, Optional[CoraEmpresa]] = {}

        boletos = store.get_boletos(CANDIDATE_STATUSES)
        logger.info("Scheduled sends started", today=today.isoformat(), candidates=len(boletos))

        for boleto in boletos:
            if not boleto.empresa_id:
                skipped += 1
                continue
            if boleto.empresa_id not in empresas:
                empresas[boleto.empresa_id] = store.get_empresa(boleto.empresa_id)
            empresa = empresas[boleto.empresa_id]
            if empresa is None or not empresa.is_active or len(_phone_digits(empresa.telefone)) < MIN_PHONE_DIGITS:
                skipped += 1
                continue

            competencia = boleto_competencia(boleto)
            if competencia is None:
                skipped += 1
                continue

            due = effective_due_date(empresa, boleto, competencia)
            rule = select_rule(due, BoletoStatus.parse(boleto.status), today)
            if rule is None:
                skipped += 1  # not due today
                continue

            key = DedupKey(empresa.id, competencia.mes, competencia.ano, rule.tipo.value)
            if key in already_sent:
                skipped += 1
                logger.debug("Already sent", empresa_id=empresa.id, tipo=rule.tipo.value)
                continue

            message = resolve_template(store, rule.template_key, empresa, boleto, competencia, today)
            if not message:
                skipped += 1
                logger.warning("No active template", template_key=rule.template_key, empresa_id=empresa.id)
                continue

            try:
                await _dispatch(
                    rule, boleto, empresa, competencia, message,
                    cora, gateway, retry_attempts, retry_delay, sleep,
                )
            except (ConfigurationError, AuthError):
                raise
            except Exception as e:
                error = getattr(e, "message", None) or str(e)
                errors.append({"empresa": empresa.client_name or empresa.id, "tipo": rule.tipo.value, "error": error})
                logger.warning("Notification failed", empresa_id=empresa.id, tipo=rule.tipo.value, error=error)
                await send_log.record(SendRecord(
                    empresa_id=empresa.id,
                    boleto_id=boleto.id,
                    competencia=competencia,
                    tipo_envio=rule.tipo.value,
                    sucesso=False,
                    detalhe=error,
                ))
            else:
                sent += 1
                already_sent.add(key)
                logger.info("Notification sent", empresa_id=empresa.id, tipo=rule.tipo.value)
                await send_log.record(SendRecord(
                    empresa_id=empresa.id,
                    boleto_id=boleto.id,
                    competencia=competencia,
                    tipo_envio=rule.tipo.value,
                    sucesso=True,
                    detalhe=f"{rule.tipo.value} enviado",
                ))

            await sleep(delay_seconds)

        logger.info("Scheduled sends finished", sent=sent, skipped=skipped, errors=len(errors))
        return {"sent": sent, "skipped": skipped, "errors": errors}
