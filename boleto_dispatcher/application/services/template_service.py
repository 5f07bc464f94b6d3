"""Template resolver — fills a stored message template for a company/boleto/period."""

from datetime import date
from typing import Optional

from boleto_dispatcher.domain.models.boleto import CoraBoleto
from boleto_dispatcher.domain.models.empresa import CoraEmpresa
from boleto_dispatcher.domain.repositories.cache_store import CacheStore
from boleto_dispatcher.domain.schemas.billing import BoletoStatus, Competencia

DEFAULT_CLIENT_NAME = "Cliente"


def format_brl(amount: float) -> str:
    """pt-BR money without the currency sign: 1234.5 → '1.234,50'."""
    return f"{amount:,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")


def format_date_br(day: date) -> str:
    return day.strftime("%d/%m/%Y")


def effective_due_date(
    empresa: CoraEmpresa,
    boleto: Optional[CoraBoleto],
    competencia: Competencia,
) -> date:
    """The boleto's due date, or one built from the company's due-day in the period."""
    if boleto is not None and boleto.due_date:
        return boleto.due_date
    return competencia.due_date(empresa.dia_vencimento)


def effective_amount(empresa: CoraEmpresa, boleto: Optional[CoraBoleto]) -> float:
    if boleto is not None and boleto.total_amount_cents:
        return boleto.total_amount_cents / 100
    return float(empresa.valor_mensal or 0)


def days_late(boleto: Optional[CoraBoleto], due: Optional[date], today: date) -> int:
    if boleto is None or due is None or BoletoStatus.parse(boleto.status) != BoletoStatus.LATE:
        return 0
    return max(0, (today - due).days)


def render_template(
    body: str,
    empresa: CoraEmpresa,
    boleto: Optional[CoraBoleto],
    competencia: Competencia,
    today: date,
) -> str:
    due = effective_due_date(empresa, boleto, competencia)
    values = {
        "nome": empresa.client_name or DEFAULT_CLIENT_NAME,
        "competencia": competencia.label,
        "vencimento": format_date_br(due),
        "valor": format_brl(effective_amount(empresa, boleto)),
        "dias_atraso": str(days_late(boleto, due, today)),
    }
    text = body
    for name, value in values.items():
        text = text.replace("{{" + name + "}}", value)
    return text


def resolve_template(
    store: CacheStore,
    template_key: str,
    empresa: CoraEmpresa,
    boleto: Optional[CoraBoleto],
    competencia: Competencia,
    today: date,
) -> str:
    """Resolved message, or "" when there is no active template for the key (nothing to send)."""
    template = store.get_active_template(template_key)
    if template is None or not (template.message_body or "").strip():
        return ""
    return render_template(template.message_body, empresa, boleto, competencia, today)
