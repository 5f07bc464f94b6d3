"""Tests for the notification scheduler: offsets, dedup, dispatch and failure isolation."""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from boleto_dispatcher.application.services.notification_service import (
    RULE_DUE_TODAY,
    RULE_FIVE_DAYS_BEFORE,
    RULE_FIVE_DAYS_LATE,
    RULE_TWO_DAYS_LATE,
    run_scheduled_sends,
    select_rule,
)
from boleto_dispatcher.application.services.send_log import SendLog
from boleto_dispatcher.core.exceptions import AuthError, TransientDispatchError
from boleto_dispatcher.domain.models.envio import CoraEnvio
from boleto_dispatcher.domain.schemas.billing import BoletoStatus

from conftest import FakeCora, FakeGateway, FakeRemote, make_boleto, make_default_templates, make_empresa, no_sleep

DUE = date(2025, 3, 10)


async def _run(store, cora, gateway, today, remote=None):
    return await run_scheduled_sends(
        store, cora, gateway, SendLog(store, remote),
        today=today, delay_seconds=0, retry_attempts=3, retry_delay=0, sleep=no_sleep,
    )


# ---------------------------------------------------------------------------
# Offset rules
# ---------------------------------------------------------------------------


class TestSelectRule:
    def test_five_days_before(self):
        assert select_rule(DUE, BoletoStatus.OPEN, DUE - timedelta(days=5)) is RULE_FIVE_DAYS_BEFORE

    def test_due_today(self):
        assert select_rule(DUE, BoletoStatus.OPEN, DUE) is RULE_DUE_TODAY

    def test_late_offsets(self):
        assert select_rule(DUE, BoletoStatus.LATE, DUE + timedelta(days=2)) is RULE_TWO_DAYS_LATE
        assert select_rule(DUE, BoletoStatus.LATE, DUE + timedelta(days=5)) is RULE_FIVE_DAYS_LATE

    def test_late_rules_need_late_status(self):
        assert select_rule(DUE, BoletoStatus.OPEN, DUE + timedelta(days=2)) is None
        assert select_rule(DUE, BoletoStatus.OPEN, DUE + timedelta(days=5)) is None

    @pytest.mark.parametrize("offset", [1, 3, 4, 6, -1, -3, -4, -6])
    def test_no_rule_for_other_offsets(self, offset):
        today = DUE + timedelta(days=offset)
        assert select_rule(DUE, BoletoStatus.LATE, today) is None
        assert select_rule(DUE, BoletoStatus.OPEN, today) is None


# ---------------------------------------------------------------------------
# Scheduler runs
# ---------------------------------------------------------------------------


class TestRunScheduledSends:
    @pytest.mark.asyncio
    async def test_five_days_before_sends_pdf_and_text(self, db, store):
        make_empresa(db, dia_vencimento=10)
        make_boleto(db, due_date=None, competencia_mes=3, competencia_ano=2025)
        make_default_templates(db)
        cora, gateway = FakeCora(), FakeGateway()

        result = await _run(store, cora, gateway, date(2025, 3, 5))

        assert result == {"sent": 1, "skipped": 0, "errors": []}
        assert cora.pdf_requests == ["inv_1"]
        assert gateway.documents == [("(66) 99610-9797", "boleto_Padaria Central_03_2025.pdf")]
        assert gateway.texts[0][1] == "Olá Padaria Central, seu boleto de 03/2025 vence em 10/03/2025."
        envio = db.query(CoraEnvio).one()
        assert (envio.tipo_envio, envio.sucesso, envio.canal) == ("5_days_before", True, "WHATSAPP")
        assert (envio.competencia_mes, envio.competencia_ano) == (3, 2025)

    @pytest.mark.asyncio
    async def test_two_days_late_uses_after_due(self, db, store):
        make_empresa(db, dia_vencimento=10)
        make_boleto(db, status="LATE", due_date=DUE, competencia_mes=3, competencia_ano=2025)
        make_default_templates(db)
        gateway = FakeGateway()

        result = await _run(store, FakeCora(), gateway, date(2025, 3, 12))

        assert result["sent"] == 1
        assert gateway.texts[0][1] == "Olá Padaria Central, seu boleto está 2 dias em atraso."
        assert db.query(CoraEnvio).one().tipo_envio == "2_days_late"

    @pytest.mark.asyncio
    async def test_due_today_is_text_only(self, db, store):
        make_empresa(db)
        make_boleto(db, due_date=DUE, competencia_mes=3, competencia_ano=2025, total_amount_cents=35050)
        make_default_templates(db)
        cora, gateway = FakeCora(), FakeGateway()

        await _run(store, cora, gateway, DUE)

        assert cora.pdf_requests == []
        assert gateway.documents == []
        assert gateway.texts[0][1] == "Olá Padaria Central, seu boleto de R$ 350,50 vence hoje."

    @pytest.mark.asyncio
    async def test_second_run_same_day_is_idempotent(self, db, store):
        make_empresa(db)
        make_boleto(db, due_date=DUE, competencia_mes=3, competencia_ano=2025)
        make_default_templates(db)
        gateway = FakeGateway()

        first = await _run(store, FakeCora(), gateway, DUE)
        second = await _run(store, FakeCora(), gateway, DUE)

        assert first["sent"] == 1
        assert second == {"sent": 0, "skipped": 1, "errors": []}
        assert db.query(CoraEnvio).filter(CoraEnvio.sucesso.is_(True)).count() == 1
        assert len(gateway.texts) == 1

    @pytest.mark.asyncio
    async def test_dedup_within_one_run(self, db, store):
        # Two invoices for the same company and period only notify once
        make_empresa(db)
        make_boleto(db, cora_invoice_id="inv_1", due_date=DUE, competencia_mes=3, competencia_ano=2025)
        make_boleto(db, cora_invoice_id="inv_2", due_date=DUE, competencia_mes=3, competencia_ano=2025)
        make_default_templates(db)

        result = await _run(store, FakeCora(), FakeGateway(), DUE)

        assert result["sent"] == 1
        assert result["skipped"] == 1

    @pytest.mark.asyncio
    async def test_failure_is_recorded_and_run_continues(self, db, store):
        make_empresa(db, id="emp-1", telefone="66 99999-0001")
        make_empresa(db, id="emp-2", client_name="Oficina", cnpj="2", telefone="66 99999-0002")
        make_boleto(db, cora_invoice_id="inv_1", empresa_id="emp-1", due_date=DUE, competencia_mes=3, competencia_ano=2025)
        make_boleto(db, cora_invoice_id="inv_2", empresa_id="emp-2", due_date=DUE, competencia_mes=3, competencia_ano=2025)
        make_default_templates(db)
        gateway = FakeGateway(fail_phones={"66 99999-0001"})

        result = await _run(store, FakeCora(), gateway, DUE)

        assert result["sent"] == 1
        assert result["errors"] == [{"empresa": "Padaria Central", "tipo": "due_today", "error": "Número inválido"}]
        failed = db.query(CoraEnvio).filter(CoraEnvio.sucesso.is_(False)).one()
        assert (failed.empresa_id, failed.detalhe) == ("emp-1", "Número inválido")

    @pytest.mark.asyncio
    async def test_failed_send_does_not_block_a_later_retry(self, db, store):
        make_empresa(db)
        make_boleto(db, due_date=DUE, competencia_mes=3, competencia_ano=2025)
        make_default_templates(db)
        always_down = FakeGateway(failures=[TransientDispatchError("reconecte")] * 3)

        first = await _run(store, FakeCora(), always_down, DUE)
        second = await _run(store, FakeCora(), FakeGateway(), DUE)

        assert always_down.calls == 3
        assert len(first["errors"]) == 1
        assert second["sent"] == 1

    @pytest.mark.asyncio
    async def test_missing_template_is_skipped_not_attempted(self, db, store):
        make_empresa(db)
        make_boleto(db, due_date=DUE, competencia_mes=3, competencia_ano=2025)
        gateway = FakeGateway()

        result = await _run(store, FakeCora(), gateway, DUE)

        assert result == {"sent": 0, "skipped": 1, "errors": []}
        assert gateway.calls == 0
        assert db.query(CoraEnvio).count() == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "empresa_overrides",
        [{"is_active": False}, {"telefone": "9999-0000"}, {"telefone": None}],
    )
    async def test_ineligible_companies_are_skipped(self, db, store, empresa_overrides):
        make_empresa(db, **empresa_overrides)
        make_boleto(db, due_date=DUE, competencia_mes=3, competencia_ano=2025)
        make_default_templates(db)
        gateway = FakeGateway()

        result = await _run(store, FakeCora(), gateway, DUE)

        assert result["skipped"] == 1
        assert gateway.calls == 0

    @pytest.mark.asyncio
    async def test_paid_and_orphan_boletos_are_not_candidates(self, db, store):
        make_empresa(db)
        make_boleto(db, cora_invoice_id="paid", status="PAID", due_date=DUE)
        make_boleto(db, cora_invoice_id="orphan", empresa_id=None, due_date=DUE)
        make_default_templates(db)
        gateway = FakeGateway()

        result = await _run(store, FakeCora(), gateway, DUE)

        assert result == {"sent": 0, "skipped": 1, "errors": []}
        assert gateway.calls == 0

    @pytest.mark.asyncio
    async def test_auth_error_aborts_the_run(self, db, store):
        class BrokenCora(FakeCora):
            async def fetch_invoice_pdf(self, invoice_id):
                raise AuthError("Failed to get Cora token: 401")

        make_empresa(db)
        make_boleto(db, due_date=DUE, competencia_mes=3, competencia_ano=2025)
        make_default_templates(db)

        with pytest.raises(AuthError):
            await _run(store, BrokenCora(), FakeGateway(), DUE - timedelta(days=5))

    @pytest.mark.asyncio
    async def test_records_are_mirrored_to_remote(self, db, store):
        make_empresa(db)
        make_boleto(db, due_date=DUE, competencia_mes=3, competencia_ano=2025)
        make_default_templates(db)
        remote = FakeRemote()

        await _run(store, FakeCora(), FakeGateway(), DUE, remote=remote)

        (table, row), = remote.inserted
        assert table == "cora_envios"
        assert row["id"] == db.query(CoraEnvio).one().id
        assert row["tipo_envio"] == "due_today"
