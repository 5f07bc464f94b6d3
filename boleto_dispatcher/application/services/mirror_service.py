"""Mirror sync — full replace of the local cache from the Supabase tables."""

import asyncio
import json
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import structlog

from boleto_dispatcher.core.exceptions import ConfigurationError, SyncError
from boleto_dispatcher.domain.repositories.cache_store import CacheStore
from boleto_dispatcher.infrastructure.supabase_rest import SupabaseRestClient

logger = structlog.get_logger(__name__)

REMOTE_COLUMNS = {
    "cora_empresas": "id,client_name,cnpj,telefone,dia_vencimento,valor_mensal,is_active,updated_at",
    "cora_boletos": (
        "id,cora_invoice_id,empresa_id,cnpj,status,total_amount_cents,due_date,paid_at,"
        "competencia_mes,competencia_ano,synced_at"
    ),
    "cora_message_templates": "id,template_key,message_body,is_active",
    "cora_config": "chave,valor,updated_at",
    "cora_envios": (
        "id,empresa_id,boleto_id,competencia_mes,competencia_ano,canal,sucesso,detalhe,tipo_envio,created_at"
    ),
}


def _to_date(value: Any) -> Optional[date]:
    if not value:
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _to_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _default(value: Any, fallback: Any) -> Any:
    return fallback if value is None else value


def normalize_empresa(row: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "client_name": row.get("client_name"),
        "cnpj": _default(row.get("cnpj"), ""),
        "telefone": row.get("telefone"),
        "dia_vencimento": _default(row.get("dia_vencimento"), 15),
        "valor_mensal": float(_default(row.get("valor_mensal"), 0)),
        "is_active": bool(row.get("is_active")),
        "updated_at": _to_datetime(row.get("updated_at")),
    }


def normalize_boleto(row: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "cora_invoice_id": row["cora_invoice_id"],
        "empresa_id": row.get("empresa_id"),
        "cnpj": _default(row.get("cnpj"), ""),
        "status": _default(row.get("status"), "OPEN"),
        "total_amount_cents": _default(row.get("total_amount_cents"), 0),
        "due_date": _to_date(row.get("due_date")),
        "paid_at": _to_datetime(row.get("paid_at")),
        "competencia_mes": row.get("competencia_mes"),
        "competencia_ano": row.get("competencia_ano"),
        "synced_at": _to_datetime(row.get("synced_at")),
    }


def normalize_template(row: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "template_key": row["template_key"],
        "message_body": _default(row.get("message_body"), ""),
        "is_active": bool(row.get("is_active")),
    }


def normalize_config(row: Mapping[str, Any]) -> Dict[str, Any]:
    valor = row.get("valor")
    return {
        "chave": row["chave"],
        "valor": valor if isinstance(valor, str) else json.dumps(valor or {}),
        "updated_at": _to_datetime(row.get("updated_at")),
    }


def normalize_envio(row: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "empresa_id": row.get("empresa_id"),
        "boleto_id": row.get("boleto_id"),
        "competencia_mes": row.get("competencia_mes"),
        "competencia_ano": row.get("competencia_ano"),
        "canal": row.get("canal"),
        "sucesso": bool(row.get("sucesso")),
        "detalhe": row.get("detalhe"),
        "tipo_envio": row.get("tipo_envio"),
        "created_at": _to_datetime(row.get("created_at")),
    }


NORMALIZERS = {
    "cora_empresas": normalize_empresa,
    "cora_boletos": normalize_boleto,
    "cora_message_templates": normalize_template,
    "cora_config": normalize_config,
    "cora_envios": normalize_envio,
}


async def sync_clone(store: CacheStore, remote: Optional[SupabaseRestClient]) -> Dict[str, int]:
    """Pull all five tables, then replace the cache in one transaction.

    Every fetch completes before the cache is touched, so a remote failure
    (``SyncError``) leaves the previous mirror intact.
    """
    if remote is None:
        raise ConfigurationError("Supabase not configured (SUPABASE_URL/SUPABASE_SERVICE_ROLE_KEY)")

    tables = list(REMOTE_COLUMNS)
    fetched: List[List[Dict[str, Any]]] = await asyncio.gather(
        *(remote.fetch_table(table, REMOTE_COLUMNS[table]) for table in tables)
    )

    try:
        normalized = {
            table: [NORMALIZERS[table](row) for row in rows]
            for table, rows in zip(tables, fetched)
        }
    except (KeyError, TypeError, ValueError) as e:
        raise SyncError(f"Malformed row in Supabase mirror: {e}") from e
    counts = store.replace_mirror(normalized)
    logger.info("Mirror replaced", **counts)
    return counts
