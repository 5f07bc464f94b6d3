"""Process-wide client factories shared by the API and the scheduler."""

from functools import lru_cache
from typing import Optional

from boleto_dispatcher.config import get_settings
from boleto_dispatcher.infrastructure.cora.client import CoraClient
from boleto_dispatcher.infrastructure.cora.token_provider import CoraTokenProvider
from boleto_dispatcher.infrastructure.supabase_rest import SupabaseRestClient


@lru_cache
def get_token_provider() -> CoraTokenProvider:
    # One provider per process so the cached token is shared
    return CoraTokenProvider(get_settings())


def build_cora_client() -> CoraClient:
    return CoraClient(get_settings(), get_token_provider())


def build_remote_store() -> Optional[SupabaseRestClient]:
    return SupabaseRestClient.from_settings(get_settings())
