"""Invoice sync — pages Cora invoices for a date range into the local cache.

Features:
- Full re-fetch of a rolling window (current + next billing period), no delta sync
- Page loop with an explicit exit predicate and a hard page ceiling
- Partial acceptance: a failed or malformed page ends pagination, keeps what was read
- Owning company resolved by CNPJ against the cached companies
"""

import re
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
import structlog

from boleto_dispatcher.config import get_settings
from boleto_dispatcher.core.exceptions import CoraAPIError, SyncError
from boleto_dispatcher.domain.repositories.cache_store import CacheStore
from boleto_dispatcher.domain.schemas.billing import BoletoStatus, Competencia
from boleto_dispatcher.infrastructure.cora.client import CoraClient

logger = structlog.get_logger(__name__)

TOTAL_KEYS = ("totalItems", "total_items", "total")


def only_digits(value: Any) -> str:
    return re.sub(r"\D", "", str(value or ""))


def _parse_date(value: Any) -> Optional[date]:
    if not value:
        return None
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass
    try:
        return datetime.strptime(text, "%d/%m/%Y").date()
    except ValueError:
        return None


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    text = str(value).strip().replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        day = _parse_date(text)
        return datetime(day.year, day.month, day.day, tzinfo=timezone.utc) if day else None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def extract_cnpj(item: Dict[str, Any]) -> str:
    document = item.get("customer_document")
    if not document:
        customer = item.get("customer") or {}
        document = (customer.get("document") or {}).get("identity")
    return only_digits(document)


def extract_amount_cents(item: Dict[str, Any]) -> int:
    """total_amount, else the nested services[].amount, else zero."""
    total = item.get("total_amount")
    if total is not None:
        try:
            return int(round(float(total)))
        except (TypeError, ValueError):
            pass
    services = item.get("services") or []
    amounts = [s.get("amount") for s in services if isinstance(s, dict) and s.get("amount") is not None]
    try:
        return int(round(sum(float(a) for a in amounts)))
    except (TypeError, ValueError):
        return 0


def extract_due_date(item: Dict[str, Any]) -> Optional[date]:
    return _parse_date(item.get("due_date") or (item.get("payment_terms") or {}).get("due_date"))


def normalize_invoice(
    item: Dict[str, Any],
    empresas_by_cnpj: Dict[str, str],
    fallback: Competencia,
    synced_at: datetime,
) -> Optional[Dict[str, Any]]:
    """Map a Cora invoice to a cora_boletos row; None when it has no id."""
    invoice_id = item.get("id")
    if not invoice_id:
        return None

    cnpj = extract_cnpj(item)
    status = BoletoStatus.parse(item.get("status"))
    due = extract_due_date(item)
    competencia = Competencia.of(due) if due else fallback
    paid_at = None
    if status == BoletoStatus.PAID:
        paid_at = _parse_datetime(item.get("paid_at") or item.get("occurrence_date"))

    return {
        "cora_invoice_id": str(invoice_id),
        "empresa_id": empresas_by_cnpj.get(cnpj) if cnpj else None,
        "cnpj": cnpj,
        "status": status.value,
        "total_amount_cents": extract_amount_cents(item),
        "due_date": due,
        "paid_at": paid_at,
        "competencia_mes": competencia.mes,
        "competencia_ano": competencia.ano,
        "synced_at": synced_at,
    }


def _reported_total(page: Dict[str, Any]) -> Optional[int]:
    for key in TOTAL_KEYS:
        value = page.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


async def fetch_invoices(
    cora: CoraClient,
    period_start: date,
    period_end: date,
    page_size: int,
    max_pages: int,
) -> List[Dict[str, Any]]:
    """Accumulate invoice items until empty page, reported total, page ceiling or page failure."""
    items: List[Dict[str, Any]] = []
    total: Optional[int] = None

    for page_number in range(1, max_pages + 1):
        try:
            page = await cora.search_invoices(period_start, period_end, page=page_number, per_page=page_size)
            if not isinstance(page, dict) or not isinstance(page.get("items"), list):
                raise SyncError("Unexpected invoice search payload", details={"page": page_number})
        except (CoraAPIError, SyncError, httpx.HTTPError, ValueError) as e:
            logger.warning(
                "Invoice page failed, keeping partial result",
                page=page_number,
                accumulated=len(items),
                error=str(e),
            )
            break

        batch = page["items"]
        if not batch:
            break  # authoritative end of data, whatever the total says
        items.extend(batch)

        total = _reported_total(page) if total is None else total
        if total is not None and len(items) >= total:
            break
    else:
        logger.warning("Invoice page ceiling reached", max_pages=max_pages, accumulated=len(items))

    return items


async def sync_boletos(
    store: CacheStore,
    cora: CoraClient,
    period_start: date,
    period_end: date,
    page_size: Optional[int] = None,
    max_pages: Optional[int] = None,
) -> int:
    """Fetch Cora invoices due in [period_start, period_end] and upsert them. Returns rows written."""
    settings = get_settings()
    items = await fetch_invoices(
        cora,
        period_start,
        period_end,
        page_size or settings.CORA_PAGE_SIZE,
        max_pages or settings.CORA_MAX_PAGES,
    )

    empresas_by_cnpj = {only_digits(e.cnpj): e.id for e in store.get_active_empresas() if e.cnpj}
    synced_at = datetime.now(timezone.utc)
    fallback = Competencia.of(period_start)

    rows = []
    for item in items:
        row = normalize_invoice(item, empresas_by_cnpj, fallback, synced_at) if isinstance(item, dict) else None
        if row is None:
            logger.warning("Skipping invoice without id")
            continue
        rows.append(row)

    written = store.upsert_boletos(rows)
    unmatched = sum(1 for r in rows if r["empresa_id"] is None)
    logger.info(
        "Invoices synced",
        start=period_start.isoformat(),
        end=period_end.isoformat(),
        fetched=len(items),
        written=written,
        unmatched=unmatched,
    )
    return written


async def sync_rolling_window(store: CacheStore, cora: CoraClient, today: date) -> int:
    """Re-fetch the current and the next billing period."""
    current = Competencia.of(today)
    total = 0
    for competencia in (current, current.next()):
        total += await sync_boletos(store, cora, competencia.first_day, competencia.last_day)
    return total
