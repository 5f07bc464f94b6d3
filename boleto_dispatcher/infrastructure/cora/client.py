"""Cora billing API client (invoice search, invoice detail, bank slip PDF)."""

import logging
from datetime import date
from typing import Any, Dict, Optional

import httpx

from boleto_dispatcher.config import Settings
from boleto_dispatcher.core.exceptions import CoraAPIError, SyncError
from boleto_dispatcher.infrastructure.cora.token_provider import CoraTokenProvider, mtls_client

logger = logging.getLogger(__name__)


class CoraClient:
    """Only the endpoints the dispatcher consumes."""

    def __init__(
        self,
        settings: Settings,
        token_provider: CoraTokenProvider,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        download_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = settings.CORA_API_BASE_URL.rstrip("/")
        self.timeout = settings.HTTP_TIMEOUT_SECONDS
        self.token_provider = token_provider
        self.transport = transport
        self.download_transport = download_transport

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        token = await self.token_provider.get_token()
        try:
            async with mtls_client(self.token_provider.credentials, self.timeout, self.transport) as client:
                response = await client.get(
                    f"{self.base_url}{path}",
                    params=params,
                    headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
                )
        except httpx.HTTPError as e:
            logger.warning(f"Cora request to {path} failed: {e!r}")
            raise SyncError(f"Cora request to {path} failed: {e}", details={"path": path}) from e

        if response.status_code == 401:
            self.token_provider.invalidate()
        if not response.is_success:
            logger.warning(f"Cora API error on {path}: {response.status_code} - {response.text[:200]}")
            raise CoraAPIError(
                f"Cora API returned {response.status_code} for {path}",
                http_status=response.status_code,
            )
        return response

    async def search_invoices(
        self,
        start: date,
        end: date,
        page: int = 1,
        per_page: int = 200,
        search: Optional[str] = None,
    ) -> Any:
        """One page of ``GET /v2/invoices/``. Returns the decoded body as-is."""
        params: Dict[str, Any] = {
            "start": start.isoformat(),
            "end": end.isoformat(),
            "page": page,
            "perPage": per_page,
        }
        if search:
            params["search"] = search
        response = await self._get("/v2/invoices/", params=params)
        return response.json()

    async def get_invoice(self, invoice_id: str) -> Dict[str, Any]:
        response = await self._get(f"/v2/invoices/{invoice_id}")
        return response.json()

    async def get_invoice_pdf_url(self, invoice_id: str) -> str:
        details = await self.get_invoice(invoice_id)
        url = ((details.get("payment_options") or {}).get("bank_slip") or {}).get("url")
        if not url:
            raise SyncError(f"PDF URL not found in invoice {invoice_id}")
        return url

    async def download_document(self, url: str) -> bytes:
        """Plain HTTPS download of the bank slip (no client certificate)."""
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.download_transport, follow_redirects=True
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            raise SyncError(f"Failed to download PDF: {e}") from e
        if not response.is_success:
            raise CoraAPIError(f"Failed to download PDF: {response.status_code}", http_status=response.status_code)
        return response.content

    async def fetch_invoice_pdf(self, invoice_id: str) -> bytes:
        url = await self.get_invoice_pdf_url(invoice_id)
        content = await self.download_document(url)
        logger.info(f"PDF downloaded for invoice {invoice_id} ({len(content)} bytes)")
        return content
