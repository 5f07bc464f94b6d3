"""Tests for the Supabase mirror sync."""

from __future__ import annotations

from datetime import date

import httpx
import pytest

from boleto_dispatcher.application.services.mirror_service import sync_clone
from boleto_dispatcher.core.exceptions import ConfigurationError, SyncError
from boleto_dispatcher.domain.models.boleto import CoraBoleto
from boleto_dispatcher.domain.models.config_entry import CoraConfig
from boleto_dispatcher.domain.models.empresa import CoraEmpresa
from boleto_dispatcher.domain.models.envio import CoraEnvio
from boleto_dispatcher.infrastructure.supabase_rest import PAGE_SIZE, SupabaseRestClient

from conftest import FakeRemote, make_empresa

REMOTE_TABLES = {
    "cora_empresas": [
        {"id": "emp-1", "client_name": "Padaria", "cnpj": "1", "telefone": "66996109797",
         "dia_vencimento": None, "valor_mensal": None, "is_active": True, "updated_at": "2025-03-01T10:00:00+00:00"},
    ],
    "cora_boletos": [
        {"id": "b1", "cora_invoice_id": "inv_1", "empresa_id": "emp-1", "cnpj": "1", "status": None,
         "total_amount_cents": 35000, "due_date": "2025-03-10", "paid_at": None,
         "competencia_mes": 3, "competencia_ano": 2025, "synced_at": None},
    ],
    "cora_message_templates": [
        {"id": "t1", "template_key": "before_due", "message_body": None, "is_active": True},
    ],
    "cora_config": [
        {"chave": "whatsapp", "valor": {"api_url": "https://gw", "token": "t"}, "updated_at": None},
    ],
    "cora_envios": [
        {"id": "e1", "empresa_id": "emp-1", "boleto_id": "b1", "competencia_mes": 2, "competencia_ano": 2025,
         "canal": "WHATSAPP", "sucesso": True, "detalhe": None, "tipo_envio": "due_today",
         "created_at": "2025-02-10T12:00:00Z"},
    ],
}


class TestSyncClone:
    @pytest.mark.asyncio
    async def test_replaces_cache_with_normalized_rows(self, db, store):
        make_empresa(db, id="stale")

        counts = await sync_clone(store, FakeRemote(REMOTE_TABLES))

        assert counts == {
            "cora_empresas": 1,
            "cora_boletos": 1,
            "cora_message_templates": 1,
            "cora_config": 1,
            "cora_envios": 1,
        }
        db.expire_all()
        empresa = db.query(CoraEmpresa).one()
        assert (empresa.id, empresa.dia_vencimento, empresa.valor_mensal) == ("emp-1", 15, 0)
        boleto = db.query(CoraBoleto).one()
        assert (boleto.status, boleto.due_date) == ("OPEN", date(2025, 3, 10))
        assert store.get_config("whatsapp") == {"api_url": "https://gw", "token": "t"}
        assert db.query(CoraEnvio).one().sucesso is True

    @pytest.mark.asyncio
    async def test_remote_failure_leaves_cache_untouched(self, db, store):
        make_empresa(db, id="kept")

        with pytest.raises(SyncError):
            await sync_clone(store, FakeRemote(REMOTE_TABLES, fail_on="cora_envios"))

        assert [e.id for e in db.query(CoraEmpresa).all()] == ["kept"]

    @pytest.mark.asyncio
    async def test_malformed_row_is_a_sync_error(self, db, store):
        tables = {**REMOTE_TABLES, "cora_boletos": [{"id": "b1"}]}
        with pytest.raises(SyncError):
            await sync_clone(store, FakeRemote(tables))
        assert db.query(CoraConfig).count() == 0

    @pytest.mark.asyncio
    async def test_unconfigured_remote(self, store):
        with pytest.raises(ConfigurationError):
            await sync_clone(store, None)


class TestSupabaseRestClient:
    @pytest.mark.asyncio
    async def test_fetch_table_pages_with_range_headers(self):
        ranges = []

        def handler(request: httpx.Request) -> httpx.Response:
            ranges.append(request.headers["range"])
            assert request.headers["apikey"] == "service-key"
            if len(ranges) == 1:
                return httpx.Response(200, json=[{"id": n} for n in range(PAGE_SIZE)])
            return httpx.Response(200, json=[{"id": "last"}])

        client = SupabaseRestClient("https://proj.supabase.co", "service-key", transport=httpx.MockTransport(handler))
        rows = await client.fetch_table("cora_empresas", "id")

        assert len(rows) == PAGE_SIZE + 1
        assert ranges == [f"0-{PAGE_SIZE - 1}", f"{PAGE_SIZE}-{2 * PAGE_SIZE - 1}"]

    @pytest.mark.asyncio
    async def test_error_status_raises_sync_error(self):
        client = SupabaseRestClient(
            "https://proj.supabase.co", "k", transport=httpx.MockTransport(lambda r: httpx.Response(500, text="boom"))
        )
        with pytest.raises(SyncError):
            await client.fetch_table("cora_boletos")
        with pytest.raises(SyncError):
            await client.insert_row("cora_envios", {"id": "e1"})
