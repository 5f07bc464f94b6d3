"""Shared fixtures for dispatcher tests.

Provides an in-memory cache database, row factories, and fake Cora /
WhatsApp / Supabase clients that record what they were asked to do.
"""

from __future__ import annotations

import os
from datetime import date
from typing import Any

# Deterministic settings BEFORE importing application modules
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CRON_SECRET"] = ""
os.environ["WASCRIPT_API_URL"] = ""
os.environ["WASCRIPT_TOKEN"] = ""
os.environ["SUPABASE_URL"] = ""
os.environ["SUPABASE_SERVICE_ROLE_KEY"] = ""
os.environ["CORA_CLIENT_ID"] = ""
os.environ["DAILY_JOB_ENABLED"] = "false"
os.environ["SEND_DELAY_SECONDS"] = "0"
os.environ["RETRY_DELAY_SECONDS"] = "0"

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from boleto_dispatcher.config import get_settings
from boleto_dispatcher.core.exceptions import PermanentDispatchError, SyncError
from boleto_dispatcher.domain.models.boleto import CoraBoleto
from boleto_dispatcher.domain.models.config_entry import CoraConfig
from boleto_dispatcher.domain.models.empresa import CoraEmpresa
from boleto_dispatcher.domain.models.message_template import CoraMessageTemplate
from boleto_dispatcher.infrastructure.database import build_engine, init_db
from boleto_dispatcher.infrastructure.repositories.cache_store import SQLAlchemyCacheStore


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
def engine():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    yield session
    session.close()


@pytest.fixture
def store(db):
    return SQLAlchemyCacheStore(db)


# ---------------------------------------------------------------------------
# Row factories
# ---------------------------------------------------------------------------


def make_empresa(db, **overrides: Any) -> CoraEmpresa:
    values = {
        "id": "emp-1",
        "client_name": "Padaria Central",
        "cnpj": "12345678000199",
        "telefone": "(66) 99610-9797",
        "dia_vencimento": 15,
        "valor_mensal": 350.0,
        "is_active": True,
    }
    values.update(overrides)
    empresa = CoraEmpresa(**values)
    db.add(empresa)
    db.commit()
    return empresa


def make_boleto(db, **overrides: Any) -> CoraBoleto:
    values = {
        "cora_invoice_id": "inv_1",
        "empresa_id": "emp-1",
        "cnpj": "12345678000199",
        "status": "OPEN",
        "total_amount_cents": 35000,
        "due_date": date(2026, 3, 15),
        "competencia_mes": 3,
        "competencia_ano": 2026,
    }
    values.update(overrides)
    boleto = CoraBoleto(**values)
    db.add(boleto)
    db.commit()
    return boleto


def make_template(db, template_key: str, body: str, **overrides: Any) -> CoraMessageTemplate:
    values = {"id": f"tpl-{template_key}", "template_key": template_key, "message_body": body, "is_active": True}
    values.update(overrides)
    template = CoraMessageTemplate(**values)
    db.add(template)
    db.commit()
    return template


def make_default_templates(db) -> None:
    make_template(db, "before_due", "Olá {{nome}}, seu boleto de {{competencia}} vence em {{vencimento}}.")
    make_template(db, "reminder_today", "Olá {{nome}}, seu boleto de R$ {{valor}} vence hoje.")
    make_template(db, "after_due", "Olá {{nome}}, seu boleto está {{dias_atraso}} dias em atraso.")


def make_whatsapp_config(db, api_url: str = "https://gw.example", token: str = "tok") -> None:
    db.add(CoraConfig(chave="whatsapp", valor=f'{{"api_url": "{api_url}", "token": "{token}"}}'))
    db.commit()


# ---------------------------------------------------------------------------
# Fake clients
# ---------------------------------------------------------------------------


class FakeGateway:
    """Records sends. ``failures`` is a list of exceptions raised, in order, before succeeding."""

    def __init__(self, failures: list[Exception] | None = None, fail_phones: set[str] | None = None):
        self.failures = list(failures or [])
        self.fail_phones = fail_phones or set()
        self.texts: list[tuple[str, str]] = []
        self.documents: list[tuple[str, str]] = []
        self.calls = 0

    def _maybe_fail(self, phone: str) -> None:
        self.calls += 1
        if phone in self.fail_phones:
            raise PermanentDispatchError("Número inválido")
        if self.failures:
            raise self.failures.pop(0)

    async def send_text(self, phone: str, message: str) -> dict:
        self._maybe_fail(phone)
        self.texts.append((phone, message))
        return {"success": True}

    async def send_document(self, phone: str, base64_pdf: str, filename: str, caption: str | None = None) -> dict:
        self._maybe_fail(phone)
        self.documents.append((phone, filename))
        return {"success": True}


class FakeCora:
    def __init__(self, pages: list[Any] | None = None, pdf: bytes = b"%PDF-1.4 fake"):
        self.pages = list(pages or [])
        self.pdf = pdf
        self.searches: list[dict] = []
        self.pdf_requests: list[str] = []

    async def search_invoices(self, start, end, page=1, per_page=200, search=None):
        self.searches.append({"start": start, "end": end, "page": page, "per_page": per_page, "search": search})
        if not self.pages:
            return {"items": []}
        result = self.pages.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def fetch_invoice_pdf(self, invoice_id: str) -> bytes:
        self.pdf_requests.append(invoice_id)
        return self.pdf


class FakeRemote:
    def __init__(self, tables: dict[str, list[dict]] | None = None, fail_on: str | None = None):
        self.tables = tables or {}
        self.fail_on = fail_on
        self.inserted: list[tuple[str, dict]] = []

    async def fetch_table(self, table: str, columns: str = "*") -> list[dict]:
        if table == self.fail_on:
            raise SyncError(f"Failed to read {table} from Supabase: 500")
        return list(self.tables.get(table, []))

    async def insert_row(self, table: str, row: dict) -> None:
        self.inserted.append((table, row))


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def cora():
    return FakeCora()

