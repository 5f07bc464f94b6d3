"""Send log — one logical write of a notification outcome.

The local cache is authoritative for dedup inside a run. When Supabase is
configured the record is mirrored to the remote ``cora_envios`` table too,
otherwise the next full mirror replace would erase it.
"""

from typing import Optional

import structlog

from boleto_dispatcher.core.exceptions import SyncError
from boleto_dispatcher.domain.models.envio import CoraEnvio
from boleto_dispatcher.domain.repositories.cache_store import CacheStore
from boleto_dispatcher.domain.schemas.billing import SendRecord
from boleto_dispatcher.infrastructure.supabase_rest import SupabaseRestClient

logger = structlog.get_logger(__name__)

REMOTE_TABLE = "cora_envios"


class SendLog:
    def __init__(self, store: CacheStore, remote: Optional[SupabaseRestClient] = None):
        self.store = store
        self.remote = remote

    async def record(self, record: SendRecord) -> CoraEnvio:
        envio = self.store.insert_envio(record)
        if self.remote is not None:
            try:
                await self.remote.insert_row(REMOTE_TABLE, {
                    "id": envio.id,
                    "empresa_id": envio.empresa_id,
                    "boleto_id": envio.boleto_id,
                    "competencia_mes": envio.competencia_mes,
                    "competencia_ano": envio.competencia_ano,
                    "canal": envio.canal,
                    "sucesso": envio.sucesso,
                    "detalhe": envio.detalhe,
                    "tipo_envio": envio.tipo_envio,
                })
            except SyncError as e:
                logger.warning("Remote send-log write failed", envio_id=envio.id, error=e.message)
        return envio
