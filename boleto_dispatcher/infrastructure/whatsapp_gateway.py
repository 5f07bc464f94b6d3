"""Wascript WhatsApp gateway HTTP client.

Failures are classified here, where they happen: session/token/connection
problems become ``TransientDispatchError`` (worth retrying through
``with_retry``), everything else ``PermanentDispatchError``.
"""

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from boleto_dispatcher.config import get_settings
from boleto_dispatcher.core.exceptions import (
    ConfigurationError,
    DispatchError,
    PermanentDispatchError,
    TransientDispatchError,
)
from boleto_dispatcher.domain.repositories.cache_store import CacheStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

COUNTRY_CODE = "55"
WHATSAPP_CONFIG_KEY = "whatsapp"

# Case-insensitive fragments the gateway uses when its WhatsApp session drops
TRANSIENT_VOCABULARY = (
    "reconnect",
    "reconecte",
    "token",
    "whatsapp session",
    "sessão whatsapp",
    "sessao whatsapp",
    "disconnected",
    "desconectad",
    "unknown error",
    "erro desconhecido",
)
TRANSIENT_HTTP_STATUSES = {502, 503, 504}


def normalize_phone(raw: Optional[str]) -> str:
    """Digits only; local numbers (≤ 11 digits) get the Brazilian country code.

    Examples:
        "(66) 99610-9797" → "5566996109797"
        "5566996109797"   → "5566996109797"
    """
    digits = re.sub(r"\D", "", raw or "")
    if len(digits) <= 11 and not digits.startswith(COUNTRY_CODE):
        return f"{COUNTRY_CODE}{digits}"
    return digits


def is_transient_failure(message: Optional[str]) -> bool:
    lower = (message or "").lower()
    return any(fragment in lower for fragment in TRANSIENT_VOCABULARY)


def classify_failure(message: str, status_code: Optional[int] = None) -> DispatchError:
    details = {"status": status_code} if status_code is not None else None
    if (status_code in TRANSIENT_HTTP_STATUSES) or is_transient_failure(message):
        return TransientDispatchError(message, details)
    return PermanentDispatchError(message, details)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    attempts: int = 3,
    delay: float = 4.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Call ``fn`` up to ``attempts`` times, retrying only transient failures."""
    if attempts < 1:
        raise ValueError(f"attempts must be at least 1, got {attempts}")
    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except TransientDispatchError as e:
            if attempt >= attempts:
                logger.warning(f"Transient gateway failure, giving up after {attempt} attempts: {e.message}")
                raise
            logger.warning(f"Transient gateway failure (attempt {attempt}/{attempts}): {e.message}")
            await sleep(delay)
    raise AssertionError("unreachable")


class WascriptClient:
    """Client for the Wascript WhatsApp API (text and PDF documents)."""

    def __init__(
        self,
        api_url: str,
        token: str,
        timeout: float = 45,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.transport = transport

    async def _post(self, endpoint: str, payload: dict) -> dict:
        url = f"{self.api_url}/api/{endpoint}/{self.token}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, json=payload)
        except httpx.TransportError as e:
            # Connection refused, reset, timeout
            raise TransientDispatchError(f"Gateway connection error: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.is_success and isinstance(data, dict) and data.get("success") is not False:
            return data

        if isinstance(data, dict):
            message = data.get("error") or data.get("message") or f"HTTP {response.status_code}"
        elif response.is_success:
            message = f"Gateway returned a non-JSON body (HTTP {response.status_code})"
        else:
            message = f"HTTP {response.status_code}"
        raise classify_failure(str(message), response.status_code)

    async def send_text(self, phone: str, message: str) -> dict:
        clean_phone = normalize_phone(phone)
        result = await self._post("enviar-texto", {"phone": clean_phone, "message": message})
        logger.info(f"Text sent to {clean_phone}")
        return result

    async def send_document(
        self,
        phone: str,
        base64_pdf: str,
        filename: str,
        caption: Optional[str] = None,
    ) -> dict:
        clean_phone = normalize_phone(phone)
        if not base64_pdf.startswith("data:"):
            base64_pdf = f"data:application/pdf;base64,{base64_pdf}"
        payload = {"phone": clean_phone, "base64": base64_pdf, "name": filename}
        if caption:
            payload["caption"] = caption
        result = await self._post("enviar-documento", payload)
        logger.info(f"Document {filename} sent to {clean_phone}")
        return result


def resolve_gateway(
    store: CacheStore,
    api_url: Optional[str] = None,
    token: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> WascriptClient:
    """Request override, then the cached 'whatsapp' config blob, then env settings."""
    settings = get_settings()
    if not (api_url and token):
        cached = store.get_config(WHATSAPP_CONFIG_KEY)
        if isinstance(cached, dict) and cached.get("api_url") and cached.get("token"):
            api_url, token = cached["api_url"], cached["token"]
        else:
            api_url, token = settings.WASCRIPT_API_URL, settings.WASCRIPT_TOKEN

    if not api_url or not token:
        raise ConfigurationError("WhatsApp gateway not configured (api_url/token)")
    return WascriptClient(api_url, token, timeout=settings.HTTP_TIMEOUT_SECONDS, transport=transport)
