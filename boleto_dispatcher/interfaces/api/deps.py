"""FastAPI dependencies — shared-secret guard, cache store and external clients."""

import hmac
from typing import Optional

from fastapi import Depends, Header, Query
from sqlalchemy.orm import Session

from boleto_dispatcher.config import get_settings
from boleto_dispatcher.core.exceptions import UnauthorizedException
from boleto_dispatcher.domain.repositories.cache_store import CacheStore
from boleto_dispatcher.infrastructure.clients import build_cora_client, build_remote_store
from boleto_dispatcher.infrastructure.cora.client import CoraClient
from boleto_dispatcher.infrastructure.database import get_db
from boleto_dispatcher.infrastructure.repositories.cache_store import SQLAlchemyCacheStore
from boleto_dispatcher.infrastructure.supabase_rest import SupabaseRestClient


def verify_cron_secret(
    secret: Optional[str] = Query(None),
    x_cron_secret: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None),
) -> None:
    """Accepts ``?secret=``, ``X-Cron-Secret`` or ``Authorization: Bearer``. Open when no secret is set."""
    expected = get_settings().CRON_SECRET
    if not expected:
        return

    provided = secret or x_cron_secret
    if not provided and authorization and authorization.lower().startswith("bearer "):
        provided = authorization[7:].strip()

    if not provided or not hmac.compare_digest(provided.encode(), expected.encode()):
        raise UnauthorizedException("Invalid or missing cron secret")


def get_cache_store(db: Session = Depends(get_db)) -> CacheStore:
    """Get cache store instance."""
    return SQLAlchemyCacheStore(db)


def get_cora_client() -> CoraClient:
    return build_cora_client()


def get_remote_store() -> Optional[SupabaseRestClient]:
    return build_remote_store()
