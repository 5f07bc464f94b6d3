"""
Cache Store Interface.
Defines the data access operations the dispatcher needs on the local mirror.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Set

from boleto_dispatcher.domain.models.boleto import CoraBoleto
from boleto_dispatcher.domain.models.empresa import CoraEmpresa
from boleto_dispatcher.domain.models.envio import CoraEnvio
from boleto_dispatcher.domain.models.message_template import CoraMessageTemplate
from boleto_dispatcher.domain.schemas.billing import DedupKey, SendRecord


class CacheStore(Protocol):
    """Interface for the local cache of mirrored billing entities."""

    def replace_all(self, table: str, rows: Iterable[Mapping[str, Any]]) -> int:
        """Delete every row of ``table`` and insert ``rows`` in one transaction."""
        ...

    def replace_mirror(self, tables: Mapping[str, Iterable[Mapping[str, Any]]]) -> Dict[str, int]:
        """Replace several tables in one transaction; returns row counts per table."""
        ...

    def upsert_boletos(self, rows: Iterable[Mapping[str, Any]]) -> int:
        """Insert or update boletos by Cora invoice id, row by row."""
        ...

    def get_active_empresas(self) -> List[CoraEmpresa]:
        ...

    def get_empresa(self, empresa_id: str) -> Optional[CoraEmpresa]:
        ...

    def get_boletos(self, statuses: Optional[Iterable[str]] = None) -> List[CoraBoleto]:
        ...

    def get_active_template(self, template_key: str) -> Optional[CoraMessageTemplate]:
        ...

    def get_config(self, chave: str) -> Optional[Any]:
        """JSON-decoded config value, or None."""
        ...

    def successful_envio_keys(self) -> Set[DedupKey]:
        ...

    def has_successful_envio(self, key: DedupKey) -> bool:
        ...

    def insert_envio(self, record: SendRecord) -> CoraEnvio:
        ...

    def list_envios(self) -> List[CoraEnvio]:
        ...
