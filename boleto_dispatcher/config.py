"""Boleto Dispatcher — Configuration via pydantic-settings."""

from pydantic import Field
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Local cache (mirror of the remote system of record)
    DATABASE_URL: str = "sqlite:///./data/cora-clone.db"

    # Timezone used to decide what "today" is
    TIMEZONE: str = "America/Sao_Paulo"

    # Cora (billing provider, mTLS)
    CORA_CLIENT_ID: str = ""
    CORA_CERTIFICATE: str = ""  # inline PEM or base64-encoded PEM
    CORA_PRIVATE_KEY: str = ""
    CORA_CERT_PATH: str = "/certs/certificate.pem"
    CORA_KEY_PATH: str = "/certs/private-key.pem"
    CORA_API_BASE_URL: str = "https://matls-clients.api.cora.com.br"
    CORA_TOKEN_SAFETY_MARGIN_SECONDS: int = 300
    CORA_PAGE_SIZE: int = 200
    CORA_MAX_PAGES: int = 50

    # Supabase (remote system of record)
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_ROLE_KEY: str = ""

    # Wascript WhatsApp gateway (fallback when cora_config has no "whatsapp" entry)
    WASCRIPT_API_URL: str = ""
    WASCRIPT_TOKEN: str = ""

    # Trigger endpoints
    CRON_SECRET: str = ""

    # Dispatch pacing
    SEND_DELAY_SECONDS: float = 2.5
    RETRY_ATTEMPTS: int = Field(default=3, ge=1)
    RETRY_DELAY_SECONDS: float = 4.0
    HTTP_TIMEOUT_SECONDS: float = 45.0

    # Daily job
    DAILY_JOB_ENABLED: bool = True
    DAILY_JOB_HOUR: int = 9
    DAILY_JOB_MINUTE: int = 0

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
