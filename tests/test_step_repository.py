import json

import pytest

from app.services.step_repository import (
    Option,
    StepNotFoundError,
    SystemAction,
    find_step,
    get_step,
    parse_action,
    parse_options,
)


class TestParseAction:
    def test_known_actions(self):
        assert parse_action("crear_ticket") == SystemAction.CREATE_TICKET
        assert parse_action("consultar_deuda") == SystemAction.QUERY_DEBT
        assert parse_action("verificar_pago_magico") == SystemAction.VERIFY_PAYMENT
        assert parse_action("cerrar_sesion") == SystemAction.CLOSE_SESSION
        assert parse_action("transferir_agente") == SystemAction.ESCALATE_TO_HUMAN

    def test_unknown_action_is_no_action(self):
        assert parse_action("enviar_fax", "paso_x") is None

    def test_empty(self):
        assert parse_action(None) is None
        assert parse_action("") is None


class TestParseOptions:
    def test_canonical_keys(self):
        raw = [{"text": "Si", "destination": "pedir_referencia", "pattern": "^s"}]
        assert parse_options(raw) == (Option(text="Si", destination="pedir_referencia", pattern="^s"),)

    def test_legacy_keys(self):
        raw = [{"texto": "1. Deuda", "valor": "consulta_deuda", "regex": "deuda"}]
        assert parse_options(raw) == (Option(text="1. Deuda", destination="consulta_deuda", pattern="deuda"),)

    def test_json_string(self):
        raw = json.dumps([{"texto": "Volver", "valor": "inicio"}])
        assert parse_options(raw) == (Option(text="Volver", destination="inicio"),)

    def test_order_is_preserved(self):
        raw = [{"text": str(i), "destination": f"d{i}"} for i in range(5)]
        assert [o.destination for o in parse_options(raw)] == ["d0", "d1", "d2", "d3", "d4"]

    def test_invalid_entries_skipped(self):
        raw = ["bad", {"text": "sin destino"}, {"text": "Ok", "destination": "inicio"}]
        assert parse_options(raw) == (Option(text="Ok", destination="inicio"),)

    def test_invalid_json(self):
        assert parse_options("{not json") == ()

    def test_empty(self):
        assert parse_options(None) == ()
        assert parse_options([]) == ()


class TestStepLookup:
    def test_get_step(self, flow_db):
        step = get_step(flow_db, "pedir_referencia")
        assert step.is_question is True
        assert step.default_next == "verificar_pago"
        assert step.options == ()
        assert step.action is None

    def test_action_is_resolved_on_load(self, flow_db):
        assert get_step(flow_db, "consulta_deuda").action == SystemAction.QUERY_DEBT

    def test_unknown_step_raises(self, flow_db):
        with pytest.raises(StepNotFoundError) as exc_info:
            get_step(flow_db, "no_existe")
        assert exc_info.value.code == "no_existe"

    def test_find_step_returns_none(self, flow_db):
        assert find_step(flow_db, "no_existe") is None
        assert find_step(flow_db, None) is None
