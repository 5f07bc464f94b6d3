"""Cora OAuth2 client-credentials token over mutual TLS.

The token lives in the provider instance (one per process, injected into the
Cora client). Refreshes are single-flight: concurrent callers that find the
token expired wait on the same lock and the second one reuses the fresh token.
"""

import asyncio
import base64
import binascii
import logging
import os
import ssl
import tempfile
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import httpx

from boleto_dispatcher.config import Settings
from boleto_dispatcher.core.exceptions import AuthError, ConfigurationError

logger = logging.getLogger(__name__)

PEM_MARKER = "-----BEGIN"


def _decode_pem(raw: str) -> str:
    """Accept PEM text, PEM with escaped newlines, or base64-encoded PEM."""
    value = raw.strip()
    if PEM_MARKER in value:
        return value.replace("\\n", "\n")
    try:
        decoded = base64.b64decode(value, validate=False).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        raise ConfigurationError("Cora certificate material is neither PEM nor base64 PEM") from None
    if PEM_MARKER not in decoded:
        raise ConfigurationError("Cora certificate material is neither PEM nor base64 PEM")
    return decoded


def _write_private_file(content: str, suffix: str) -> str:
    fd, path = tempfile.mkstemp(prefix="cora-", suffix=suffix)
    with os.fdopen(fd, "w") as handle:
        handle.write(content)
    os.chmod(path, 0o600)
    return path


@dataclass
class MTLSCredentials:
    """Client id plus the certificate/key pair presented to Cora."""

    client_id: str
    cert_path: str
    key_path: str
    _ssl_context: Optional[ssl.SSLContext] = field(default=None, repr=False)

    @classmethod
    def load(cls, settings: Settings) -> "MTLSCredentials":
        """Inline env material wins over the filesystem paths."""
        if not settings.CORA_CLIENT_ID:
            raise ConfigurationError("CORA_CLIENT_ID not configured")

        if settings.CORA_CERTIFICATE and settings.CORA_PRIVATE_KEY:
            cert = _decode_pem(settings.CORA_CERTIFICATE)
            key = _decode_pem(settings.CORA_PRIVATE_KEY)
            return cls(
                client_id=settings.CORA_CLIENT_ID,
                cert_path=_write_private_file(cert, ".crt.pem"),
                key_path=_write_private_file(key, ".key.pem"),
            )

        cert_path, key_path = settings.CORA_CERT_PATH, settings.CORA_KEY_PATH
        if not (cert_path and key_path and os.path.isfile(cert_path) and os.path.isfile(key_path)):
            raise ConfigurationError(
                "Cora mTLS certificates not found",
                details={"cert_path": cert_path, "key_path": key_path},
            )
        return cls(client_id=settings.CORA_CLIENT_ID, cert_path=cert_path, key_path=key_path)

    def ssl_context(self) -> ssl.SSLContext:
        if self._ssl_context is None:
            context = ssl.create_default_context()
            try:
                context.load_cert_chain(certfile=self.cert_path, keyfile=self.key_path)
            except (OSError, ssl.SSLError) as e:
                raise ConfigurationError(f"Invalid Cora certificate/key pair: {e}") from e
            self._ssl_context = context
        return self._ssl_context


def mtls_client(
    credentials: MTLSCredentials,
    timeout: float,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """An AsyncClient presenting the client certificate (an injected transport replaces the TLS stack)."""
    if transport is not None:
        return httpx.AsyncClient(transport=transport, timeout=timeout)
    return httpx.AsyncClient(verify=credentials.ssl_context(), timeout=timeout)


class CoraTokenProvider:
    """Obtains and caches the Cora access token."""

    def __init__(
        self,
        settings: Settings,
        credentials: Optional[MTLSCredentials] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.token_url = f"{settings.CORA_API_BASE_URL.rstrip('/')}/token"
        self.safety_margin = settings.CORA_TOKEN_SAFETY_MARGIN_SECONDS
        self.timeout = settings.HTTP_TIMEOUT_SECONDS
        self.transport = transport
        self._credentials = credentials
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    @property
    def credentials(self) -> MTLSCredentials:
        if self._credentials is None:
            self._credentials = MTLSCredentials.load(self.settings)
        return self._credentials

    def _cached(self) -> Optional[str]:
        if self._token and self._clock() < self._expires_at:
            return self._token
        return None

    async def get_token(self) -> str:
        token = self._cached()
        if token:
            return token

        async with self._lock:
            # Another caller may have refreshed while we waited
            token = self._cached()
            if token:
                return token
            return await self._refresh()

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0

    async def _refresh(self) -> str:
        credentials = self.credentials
        issued_at = self._clock()
        logger.info("Requesting new Cora token")

        try:
            async with mtls_client(credentials, self.timeout, self.transport) as client:
                response = await client.post(
                    self.token_url,
                    data={"grant_type": "client_credentials", "client_id": credentials.client_id},
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
        except httpx.HTTPError as e:
            raise AuthError(f"Cora token request failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"Cora token error: {response.status_code} - {response.text[:200]}")
            raise AuthError(
                f"Failed to get Cora token: {response.status_code}",
                details={"status": response.status_code},
            )

        try:
            data = response.json()
        except ValueError:
            raise AuthError("Cora token response is not JSON") from None

        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not access_token:
            raise AuthError("Cora returned an empty access token")

        expires_in = int(data.get("expires_in") or 0)
        self._token = access_token
        self._expires_at = issued_at + expires_in - self.safety_margin
        logger.info(f"Cora token obtained (expires in {expires_in}s)")
        return access_token
