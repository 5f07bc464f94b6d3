"""Supabase (PostgREST) client for the remote system of record."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from boleto_dispatcher.config import Settings
from boleto_dispatcher.core.exceptions import SyncError

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000  # PostgREST default max-rows


class SupabaseRestClient:
    """Reads whole tables and appends rows through the REST API with the service-role key."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        timeout: float = 45,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.rest_url = f"{base_url.rstrip('/')}/rest/v1"
        self.headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
        }
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["SupabaseRestClient"]:
        if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
            return None
        return cls(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY, timeout=settings.HTTP_TIMEOUT_SECONDS)

    async def fetch_table(self, table: str, columns: str = "*") -> List[Dict[str, Any]]:
        """All rows of ``table``, paged with Range headers."""
        rows: List[Dict[str, Any]] = []
        offset = 0
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            while True:
                headers = {**self.headers, "Range-Unit": "items", "Range": f"{offset}-{offset + PAGE_SIZE - 1}"}
                try:
                    response = await client.get(
                        f"{self.rest_url}/{table}", params={"select": columns}, headers=headers
                    )
                except httpx.HTTPError as e:
                    raise SyncError(f"Failed to read {table} from Supabase: {e}") from e

                if not response.is_success:
                    raise SyncError(
                        f"Failed to read {table} from Supabase: {response.status_code}",
                        details={"table": table, "status": response.status_code},
                    )
                try:
                    page = response.json()
                except ValueError:
                    raise SyncError(f"Supabase returned a non-JSON body for {table}") from None
                if not isinstance(page, list):
                    raise SyncError(f"Unexpected Supabase payload for {table}")

                rows.extend(page)
                if len(page) < PAGE_SIZE:
                    break
                offset += PAGE_SIZE

        logger.info(f"Fetched {len(rows)} rows from {table}")
        return rows

    async def insert_row(self, table: str, row: Dict[str, Any]) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.rest_url}/{table}",
                    json=row,
                    headers={**self.headers, "Prefer": "return=minimal"},
                )
        except httpx.HTTPError as e:
            raise SyncError(f"Failed to insert into {table}: {e}") from e
        if not response.is_success:
            raise SyncError(
                f"Failed to insert into {table}: {response.status_code}",
                details={"table": table, "status": response.status_code, "body": response.text[:200]},
            )
