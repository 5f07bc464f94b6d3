"""
SQLAlchemy Implementation of the Cache Store.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from sqlalchemy import delete, insert
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from boleto_dispatcher.domain.models.boleto import CoraBoleto
from boleto_dispatcher.domain.models.config_entry import CoraConfig
from boleto_dispatcher.domain.models.empresa import CoraEmpresa
from boleto_dispatcher.domain.models.envio import CoraEnvio
from boleto_dispatcher.domain.models.message_template import CoraMessageTemplate
from boleto_dispatcher.domain.repositories.cache_store import CacheStore
from boleto_dispatcher.domain.schemas.billing import DedupKey, SendRecord

logger = logging.getLogger(__name__)

MIRRORED_TABLES = {
    "cora_empresas": CoraEmpresa,
    "cora_boletos": CoraBoleto,
    "cora_message_templates": CoraMessageTemplate,
    "cora_config": CoraConfig,
    "cora_envios": CoraEnvio,
}

# Columns the remote may change between syncs ("last sync wins")
BOLETO_MUTABLE_COLUMNS = (
    "empresa_id",
    "cnpj",
    "status",
    "total_amount_cents",
    "due_date",
    "paid_at",
    "competencia_mes",
    "competencia_ano",
    "synced_at",
)


def _model_for(table: str):
    try:
        return MIRRORED_TABLES[table]
    except KeyError:
        raise ValueError(f"Unknown cache table: {table}") from None


def _project(model, row: Mapping[str, Any]) -> Dict[str, Any]:
    """Keep only the keys that are columns of ``model``."""
    columns = model.__table__.columns.keys()
    return {key: value for key, value in row.items() if key in columns}


class SQLAlchemyCacheStore(CacheStore):
    """Cache store implementation using SQLAlchemy (SQLite by default)."""

    def __init__(self, db: Session):
        self.db = db

    # ── Mirror writes ──────────────────────────────────────

    def replace_all(self, table: str, rows: Iterable[Mapping[str, Any]]) -> int:
        return self.replace_mirror({table: rows})[table]

    def replace_mirror(self, tables: Mapping[str, Iterable[Mapping[str, Any]]]) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        try:
            for table, rows in tables.items():
                model = _model_for(table)
                self.db.execute(delete(model))
                payload = [_project(model, row) for row in rows]
                # Row by row so the failing row is the one that raises
                for row in payload:
                    self.db.execute(insert(model).values(**row))
                counts[table] = len(payload)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.error(f"Mirror replace rolled back ({', '.join(tables)})")
            raise
        return counts

    def upsert_boletos(self, rows: Iterable[Mapping[str, Any]]) -> int:
        written = 0
        for row in rows:
            values = _project(CoraBoleto, row)
            values.setdefault("synced_at", datetime.now(timezone.utc))
            if not values.get("id"):
                values.pop("id", None)  # column default generates one; kept on conflict
            try:
                self.db.execute(self._boleto_upsert(values))
                self.db.commit()
                written += 1
            except SQLAlchemyError as e:
                # One bad row must not abort the rest of the batch
                self.db.rollback()
                logger.warning(f"Boleto upsert failed for {values.get('cora_invoice_id')}: {e}")
        return written

    def _boleto_upsert(self, values: Dict[str, Any]):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = postgresql.insert(CoraBoleto).values(**values)
        elif dialect == "sqlite":
            stmt = sqlite.insert(CoraBoleto).values(**values)
        else:
            raise NotImplementedError(f"Upsert not supported on {dialect}")
        update = {col: stmt.excluded[col] for col in BOLETO_MUTABLE_COLUMNS if col in values}
        return stmt.on_conflict_do_update(index_elements=["cora_invoice_id"], set_=update)

    # ── Reads ──────────────────────────────────────────────

    def get_active_empresas(self) -> List[CoraEmpresa]:
        return self.db.query(CoraEmpresa).filter(CoraEmpresa.is_active.is_(True)).all()

    def get_empresa(self, empresa_id: str) -> Optional[CoraEmpresa]:
        return self.db.query(CoraEmpresa).filter(CoraEmpresa.id == empresa_id).first()

    def get_boletos(self, statuses: Optional[Iterable[str]] = None) -> List[CoraBoleto]:
        query = self.db.query(CoraBoleto)
        if statuses:
            query = query.filter(CoraBoleto.status.in_([str(getattr(s, "value", s)) for s in statuses]))
        return query.order_by(CoraBoleto.due_date.asc().nullslast(), CoraBoleto.cora_invoice_id).all()

    def get_active_template(self, template_key: str) -> Optional[CoraMessageTemplate]:
        return (
            self.db.query(CoraMessageTemplate)
            .filter(
                CoraMessageTemplate.template_key == template_key,
                CoraMessageTemplate.is_active.is_(True),
            )
            .first()
        )

    def get_config(self, chave: str) -> Optional[Any]:
        row = self.db.query(CoraConfig).filter(CoraConfig.chave == chave).first()
        if row is None or not row.valor:
            return None
        try:
            return json.loads(row.valor)
        except (TypeError, ValueError):
            logger.warning(f"Config '{chave}' is not valid JSON, ignoring")
            return None

    # ── Send log ───────────────────────────────────────────

    def successful_envio_keys(self) -> Set[DedupKey]:
        rows = (
            self.db.query(
                CoraEnvio.empresa_id,
                CoraEnvio.competencia_mes,
                CoraEnvio.competencia_ano,
                CoraEnvio.tipo_envio,
            )
            .filter(
                CoraEnvio.sucesso.is_(True),
                CoraEnvio.empresa_id.isnot(None),
                CoraEnvio.tipo_envio.isnot(None),
            )
            .all()
        )
        return {DedupKey(r.empresa_id, r.competencia_mes, r.competencia_ano, r.tipo_envio) for r in rows}

    def has_successful_envio(self, key: DedupKey) -> bool:
        return (
            self.db.query(CoraEnvio.id)
            .filter(
                CoraEnvio.empresa_id == key.empresa_id,
                CoraEnvio.competencia_mes == key.mes,
                CoraEnvio.competencia_ano == key.ano,
                CoraEnvio.tipo_envio == key.tipo,
                CoraEnvio.sucesso.is_(True),
            )
            .first()
            is not None
        )

    def insert_envio(self, record: SendRecord) -> CoraEnvio:
        envio = CoraEnvio(
            empresa_id=record.empresa_id,
            boleto_id=record.boleto_id,
            competencia_mes=record.competencia.mes,
            competencia_ano=record.competencia.ano,
            canal=record.canal,
            sucesso=record.sucesso,
            detalhe=(record.detalhe or "")[:1000] or None,
            tipo_envio=record.tipo_envio,
            created_at=datetime.now(timezone.utc),
        )
        self.db.add(envio)
        self.db.commit()
        return envio

    def list_envios(self) -> List[CoraEnvio]:
        return self.db.query(CoraEnvio).order_by(CoraEnvio.created_at.asc()).all()
