import asyncio
from unittest.mock import AsyncMock

import pytest

from cantina_bot.services import menu_catalog as menu
from cantina_bot.services.alert_service import AdminNotifier
from cantina_bot.services.conversation_service import (
    ConversationEngine,
    contains,
    first_word_in,
    normalize_text,
)
from cantina_bot.services.result import NETWORK_ERROR, Result
from cantina_bot.services.session_store import SessionStore
from cantina_bot.services.state_machine import SessionState
from cantina_bot.services.workbook_service import WorkbookLookupError

PHONE = "5511999999999"
ADMIN_PHONE = "5551000000000"


async def at_state(engine, state, unit="PERG"):
    """Put the customer's session directly into a state."""
    session = engine.store.get_or_create(PHONE)
    session.state = state
    session.unit = unit
    return session


class TestMatchingHelpers:
    def test_normalize_text(self):
        assert normalize_text("  Fazer PEDIDO ") == "fazer pedido"
        assert normalize_text("nao_chegou") == "nao chegou"
        assert normalize_text(None) == ""

    def test_contains(self):
        assert contains("pedido")("quero fazer pedido") is True
        assert contains("pedido")("consultar") is False

    def test_first_word_in(self):
        matcher = first_word_in("s", "sim", "1")
        assert matcher("sim, obrigado") is True
        assert matcher("1") is True
        assert matcher("sabonete") is False
        assert matcher("") is False


class TestInitAndUnitSelection:
    @pytest.mark.asyncio
    async def test_first_empty_message_sends_unit_list(self, engine, gateway):
        session = await engine.handle_inbound(PHONE, "")

        assert session.state == SessionState.AWAITING_UNIT
        lists = gateway.lists_to(PHONE)
        assert len(lists) == 1
        assert [option.id for option in lists[0]["options"]] == [unit.code for unit in menu.UNITS]

    @pytest.mark.asyncio
    async def test_unit_title_selects_unit(self, engine, gateway):
        await engine.handle_inbound(PHONE, "oi")

        session = await engine.handle_inbound(PHONE, "PERG – Rio Grande")

        assert session.state == SessionState.AWAITING_OPTION
        assert session.unit == "PERG"
        last = gateway.lists_to(PHONE)[-1]
        assert "PERG – Rio Grande" in last["message"]
        assert last["options"] == menu.SERVICE_OPTIONS

    @pytest.mark.parametrize(
        "text,code",
        [("pej", "PEJ"), ("PEC – Charqueadas", "PEC"), ("pmec – monte", "PMEC"), ("perg", "PERG")],
    )
    @pytest.mark.asyncio
    async def test_code_title_or_prefix_selects_unit(self, engine, text, code):
        await at_state(engine, SessionState.AWAITING_UNIT, unit=None)

        session = await engine.handle_inbound(PHONE, text)

        assert session.state == SessionState.AWAITING_OPTION
        assert session.unit == code

    @pytest.mark.asyncio
    async def test_unknown_unit_resends_list(self, engine, gateway):
        await at_state(engine, SessionState.AWAITING_UNIT, unit=None)

        session = await engine.handle_inbound(PHONE, "porto alegre")

        assert session.state == SessionState.AWAITING_UNIT
        assert session.unit is None
        assert len(gateway.lists_to(PHONE)) == 1

    @pytest.mark.asyncio
    async def test_numbered_reply_picks_listed_unit(self, engine):
        await engine.handle_inbound(PHONE, "")

        session = await engine.handle_inbound(PHONE, "2")

        assert session.unit == menu.UNITS[1].code
        assert session.state == SessionState.AWAITING_OPTION


class TestServiceOptions:
    @pytest.mark.asyncio
    async def test_unmatched_text_resends_option_list(self, engine, gateway):
        await at_state(engine, SessionState.AWAITING_OPTION)

        session = await engine.handle_inbound(PHONE, "xyz123")

        assert session.state == SessionState.AWAITING_OPTION
        assert gateway.lists_to(PHONE)[-1]["options"] == menu.SERVICE_OPTIONS
        assert gateway.to(ADMIN_PHONE) == []

    @pytest.mark.asyncio
    async def test_pedido_opens_order_methods(self, engine, gateway):
        await at_state(engine, SessionState.AWAITING_OPTION)

        session = await engine.handle_inbound(PHONE, "Fazer pedido")

        assert session.state == SessionState.AWAITING_PEDIDO_METHOD
        assert gateway.lists_to(PHONE)[-1]["options"] == menu.ORDER_METHOD_OPTIONS

    @pytest.mark.asyncio
    async def test_consultar_asks_name_and_cpf(self, engine, gateway):
        await at_state(engine, SessionState.AWAITING_OPTION)

        session = await engine.handle_inbound(PHONE, "Consultar vales e dívidas")

        assert session.state == SessionState.AWAITING_NAME_CPF
        assert gateway.texts_to(PHONE)[-1] == menu.MSG_ASK_NAME_CPF

    @pytest.mark.asyncio
    async def test_outros_opens_complaint_list(self, engine, gateway):
        await at_state(engine, SessionState.AWAITING_OPTION)

        session = await engine.handle_inbound(PHONE, "outros")

        assert session.state == SessionState.AWAITING_OUTROS
        assert gateway.lists_to(PHONE)[-1]["options"] == menu.OUTROS_OPTIONS

    @pytest.mark.asyncio
    async def test_voltar_returns_to_units(self, engine):
        await at_state(engine, SessionState.AWAITING_OPTION)

        session = await engine.handle_inbound(PHONE, "Voltar")

        assert session.state == SessionState.AWAITING_UNIT


class TestOrderMethod:
    @pytest.mark.asyncio
    async def test_site_sends_link_then_options(self, engine, gateway, settings):
        await at_state(engine, SessionState.AWAITING_PEDIDO_METHOD)

        session = await engine.handle_inbound(PHONE, "Pedir pelo site")

        assert session.state == SessionState.AWAITING_OPTION
        sent = gateway.to(PHONE)
        assert sent[-2]["kind"] == "text"
        assert settings.order_site_url in sent[-2]["message"]
        assert sent[-1]["kind"] == "list"

    @pytest.mark.asyncio
    async def test_text_sends_catalogue_and_template(self, engine, gateway, settings):
        await at_state(engine, SessionState.AWAITING_PEDIDO_METHOD)

        session = await engine.handle_inbound(PHONE, "continuar por texto")

        assert session.state == SessionState.AWAITING_OPTION
        message = gateway.texts_to(PHONE)[-1]
        assert settings.catalogue_url in message
        assert "Itens" in message

    @pytest.mark.asyncio
    async def test_voltar_resends_options(self, engine, gateway):
        await at_state(engine, SessionState.AWAITING_PEDIDO_METHOD)

        session = await engine.handle_inbound(PHONE, "voltar")

        assert session.state == SessionState.AWAITING_OPTION
        assert gateway.lists_to(PHONE)[-1]["options"] == menu.SERVICE_OPTIONS

    @pytest.mark.asyncio
    async def test_unknown_escalates(self, engine, gateway):
        await at_state(engine, SessionState.AWAITING_PEDIDO_METHOD)

        session = await engine.handle_inbound(PHONE, "hmm")

        assert session.state == SessionState.AWAITING_HUMAN
        assert gateway.texts_to(PHONE)[-1] == menu.MSG_HUMAN_HANDOFF
        admin = gateway.texts_to(ADMIN_PHONE)
        assert len(admin) == 1
        assert PHONE in admin[0]
        assert "AWAITING_PEDIDO_METHOD" in admin[0]


class TestComplaints:
    @pytest.mark.asyncio
    async def test_not_arrived_records_issue(self, engine, gateway):
        await at_state(engine, SessionState.AWAITING_OUTROS)

        session = await engine.handle_inbound(PHONE, "Pedido não chegou")

        assert session.state == SessionState.AWAITING_CONFIRM_ISSUE
        assert session.last_issue == menu.ISSUE_NOT_ARRIVED
        assert gateway.texts_to(PHONE)[-1] == menu.MSG_NOT_ARRIVED

    @pytest.mark.asyncio
    async def test_list_id_reply_is_matched(self, engine):
        await at_state(engine, SessionState.AWAITING_OUTROS)

        session = await engine.handle_inbound(PHONE, "nao_chegou")

        assert session.last_issue == menu.ISSUE_NOT_ARRIVED

    @pytest.mark.parametrize("text", ["faltou um item", "veio errado", "Pedido incompleto ou errado"])
    @pytest.mark.asyncio
    async def test_incomplete_records_issue(self, engine, gateway, text):
        await at_state(engine, SessionState.AWAITING_OUTROS)

        session = await engine.handle_inbound(PHONE, text)

        assert session.state == SessionState.AWAITING_CONFIRM_ISSUE
        assert session.last_issue == menu.ISSUE_INCOMPLETE
        assert gateway.texts_to(PHONE)[-1] == menu.MSG_INCOMPLETE

    @pytest.mark.asyncio
    async def test_modify_then_forward(self, engine, gateway):
        await at_state(engine, SessionState.AWAITING_OUTROS)

        session = await engine.handle_inbound(PHONE, "modificar pedido")
        assert session.state == SessionState.AWAITING_MODIFY

        session = await engine.handle_inbound(PHONE, "Pedido 4521: trocar café por açúcar")

        assert session.state == SessionState.AWAITING_HUMAN
        admin = gateway.texts_to(ADMIN_PHONE)
        assert len(admin) == 1
        assert "Pedido 4521: trocar café por açúcar" in admin[0]
        assert "Modificação" in admin[0]
        assert gateway.texts_to(PHONE)[-1] == menu.MSG_REQUEST_FORWARDED

    @pytest.mark.asyncio
    async def test_cancel_then_forward(self, engine, gateway):
        await at_state(engine, SessionState.AWAITING_OUTROS)

        session = await engine.handle_inbound(PHONE, "cancelar")
        assert session.state == SessionState.AWAITING_CANCEL

        session = await engine.handle_inbound(PHONE, "4521")

        assert session.state == SessionState.AWAITING_HUMAN
        assert "Cancelamento" in gateway.texts_to(ADMIN_PHONE)[0]

    @pytest.mark.asyncio
    async def test_attendant_request(self, engine, gateway):
        await at_state(engine, SessionState.AWAITING_OUTROS)

        session = await engine.handle_inbound(PHONE, "Falar com atendente")

        assert session.state == SessionState.AWAITING_HUMAN
        assert len(gateway.texts_to(ADMIN_PHONE)) == 1
        assert gateway.texts_to(PHONE)[-1] == menu.MSG_REQUEST_FORWARDED

    @pytest.mark.asyncio
    async def test_voltar_resends_options(self, engine):
        await at_state(engine, SessionState.AWAITING_OUTROS)

        session = await engine.handle_inbound(PHONE, "voltar")

        assert session.state == SessionState.AWAITING_OPTION

    @pytest.mark.asyncio
    async def test_unknown_escalates(self, engine, gateway):
        await at_state(engine, SessionState.AWAITING_OUTROS)

        session = await engine.handle_inbound(PHONE, "qualquer coisa")

        assert session.state == SessionState.AWAITING_HUMAN
        assert len(gateway.texts_to(ADMIN_PHONE)) == 1


class TestConfirmIssue:
    @pytest.mark.parametrize("text", ["s", "Sim", "1", "sim, obrigado"])
    @pytest.mark.asyncio
    async def test_affirmative_thanks_and_returns_to_options(self, engine, gateway, text):
        session = await at_state(engine, SessionState.AWAITING_CONFIRM_ISSUE)
        session.last_issue = menu.ISSUE_NOT_ARRIVED

        await engine.handle_inbound(PHONE, text)

        assert session.state == SessionState.AWAITING_OPTION
        assert menu.MSG_THANKS in gateway.texts_to(PHONE)
        assert gateway.lists_to(PHONE)[-1]["options"] == menu.SERVICE_OPTIONS

    @pytest.mark.parametrize("text", ["n", "Não", "nao", "2"])
    @pytest.mark.asyncio
    async def test_negative_notifies_admin_with_issue(self, engine, gateway, text):
        session = await at_state(engine, SessionState.AWAITING_CONFIRM_ISSUE)
        session.last_issue = menu.ISSUE_INCOMPLETE

        await engine.handle_inbound(PHONE, text)

        assert session.state == SessionState.AWAITING_HUMAN
        admin = gateway.texts_to(ADMIN_PHONE)
        assert len(admin) == 1
        assert menu.ISSUE_INCOMPLETE in admin[0]

    @pytest.mark.asyncio
    async def test_unrecognized_escalates(self, engine, gateway):
        await at_state(engine, SessionState.AWAITING_CONFIRM_ISSUE)

        session = await engine.handle_inbound(PHONE, "talvez")

        assert session.state == SessionState.AWAITING_HUMAN
        assert gateway.texts_to(PHONE)[-1] == menu.MSG_HUMAN_HANDOFF


SHEET = [
    ["Nome", "João da Silva"],
    ["CPF", "123.456.789-00"],
    ["Dívidas", "Pedido 03/2024 - R$ 45,00; Pedido 04/2024 - R$ 12,50"],
    ["Vales", ""],
    ["Haveres", "Crédito item em falta - R$ 8,90"],
]


class TestConsultation:
    @pytest.mark.asyncio
    async def test_successful_consultation(self, engine, gateway, workbook):
        workbook.fetch_workbook = AsyncMock(return_value={"Outros": [["x"]], "12345678900": SHEET})
        await at_state(engine, SessionState.AWAITING_NAME_CPF)

        session = await engine.handle_inbound(PHONE, "João da Silva – 123.456.789-00")

        assert session.state == SessionState.AWAITING_OPTION_AFTER_CONSULT
        summary, hint = gateway.texts_to(PHONE)[-2:]
        assert "João da Silva" in summary
        assert "12345678900" in summary
        assert "PERG – Rio Grande" in summary
        assert "• Pedido 03/2024 - R$ 45,00" in summary
        assert "• Pedido 04/2024 - R$ 12,50" in summary
        assert "*Vales em aberto:*\nNenhum" in summary
        assert "• Crédito item em falta - R$ 8,90" in summary
        assert hint == menu.MSG_BACK_HINT
        workbook.fetch_workbook.assert_awaited_once_with("https://sheets.example.com/perg.xlsx")

    @pytest.mark.asyncio
    async def test_empty_lists_show_none_markers(self, engine, gateway, workbook):
        workbook.fetch_workbook = AsyncMock(return_value={"12345678900": [["Nome", "Maria Souza"]]})
        await at_state(engine, SessionState.AWAITING_NAME_CPF)

        await engine.handle_inbound(PHONE, "Maria Souza 12345678900")

        summary = gateway.texts_to(PHONE)[-2]
        assert "*Dívidas:*\nNenhuma" in summary
        assert "*Vales em aberto:*\nNenhum" in summary
        assert "*Haveres:*\nNenhum" in summary

    @pytest.mark.asyncio
    async def test_unparseable_input_reprompts(self, engine, gateway):
        await at_state(engine, SessionState.AWAITING_NAME_CPF)

        session = await engine.handle_inbound(PHONE, "joão")

        assert session.state == SessionState.AWAITING_NAME_CPF
        assert gateway.texts_to(PHONE)[-1] == menu.MSG_NAME_CPF_HINT
        assert gateway.to(ADMIN_PHONE) == []

    @pytest.mark.asyncio
    async def test_unit_without_source_escalates(self, engine, gateway, workbook):
        workbook.fetch_workbook = AsyncMock()
        await at_state(engine, SessionState.AWAITING_NAME_CPF, unit="PEJ")

        session = await engine.handle_inbound(PHONE, "João da Silva – 123.456.789-00")

        assert session.state == SessionState.AWAITING_HUMAN
        assert gateway.texts_to(PHONE)[-1] == menu.MSG_CONSULT_NOT_CONFIGURED
        admin = gateway.texts_to(ADMIN_PHONE)
        assert len(admin) == 1
        assert "PEJ" in admin[0]
        workbook.fetch_workbook.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fetch_failure_escalates_with_detail_for_admin_only(self, engine, gateway, workbook):
        workbook.fetch_workbook = AsyncMock(side_effect=WorkbookLookupError("connect timeout", NETWORK_ERROR))
        await at_state(engine, SessionState.AWAITING_NAME_CPF)

        session = await engine.handle_inbound(PHONE, "João da Silva – 123.456.789-00")

        assert session.state == SessionState.AWAITING_HUMAN
        assert gateway.texts_to(PHONE)[-1] == menu.MSG_CONSULT_FAILED
        assert all("connect timeout" not in text for text in gateway.texts_to(PHONE))
        assert "connect timeout" in gateway.texts_to(ADMIN_PHONE)[0]

    @pytest.mark.asyncio
    async def test_not_found_escalates(self, engine, gateway, workbook):
        workbook.fetch_workbook = AsyncMock(return_value={"11122233344": [["Nome", "Outra Pessoa"]]})
        await at_state(engine, SessionState.AWAITING_NAME_CPF)

        session = await engine.handle_inbound(PHONE, "João da Silva – 123.456.789-00")

        assert session.state == SessionState.AWAITING_HUMAN
        assert gateway.texts_to(PHONE)[-1] == menu.MSG_CONSULT_NOT_FOUND
        assert "12345678900" in gateway.texts_to(ADMIN_PHONE)[0]

    @pytest.mark.asyncio
    async def test_after_consult_falls_back_to_human(self, engine, gateway):
        await at_state(engine, SessionState.AWAITING_OPTION_AFTER_CONSULT)

        session = await engine.handle_inbound(PHONE, "voltar")

        assert session.state == SessionState.AWAITING_HUMAN
        assert gateway.texts_to(PHONE)[-1] == menu.MSG_HUMAN_HANDOFF


class TestAwaitingHuman:
    @pytest.mark.asyncio
    async def test_messages_are_ignored(self, engine, gateway):
        await at_state(engine, SessionState.AWAITING_HUMAN)

        session = await engine.handle_inbound(PHONE, "alô?")

        assert session.state == SessionState.AWAITING_HUMAN
        assert gateway.sent == []

    @pytest.mark.asyncio
    async def test_release_restarts_menu(self, engine):
        session = await at_state(engine, SessionState.AWAITING_HUMAN)
        session.last_issue = menu.ISSUE_INCOMPLETE

        released = engine.release(PHONE)

        assert released is session
        assert session.state == SessionState.INIT
        assert session.unit is None
        assert session.last_issue is None

        await engine.handle_inbound(PHONE, "oi")
        assert session.state == SessionState.AWAITING_UNIT

    def test_release_unknown_phone(self, engine):
        assert engine.release("5500000000000") is None


class TestGatewayFailures:
    @pytest.mark.asyncio
    async def test_failed_send_does_not_block_transition(self, engine, gateway):
        gateway.send_option_list = AsyncMock(return_value=Result.failure("down", NETWORK_ERROR))

        session = await engine.handle_inbound(PHONE, "")

        assert session.state == SessionState.AWAITING_UNIT


class TestInactivity:
    @pytest.mark.asyncio
    async def test_idle_session_is_handed_to_human(self, gateway, workbook, settings):
        store = SessionStore(0.05)
        engine = ConversationEngine(store, gateway, workbook, AdminNotifier(gateway, ADMIN_PHONE), settings)

        await engine.handle_inbound(PHONE, "")
        await engine.handle_inbound(PHONE, "PERG")
        await asyncio.sleep(0.3)

        session = store.get(PHONE)
        assert session.state == SessionState.AWAITING_HUMAN
        assert gateway.texts_to(PHONE) == [menu.MSG_INACTIVITY]
        admin = gateway.texts_to(ADMIN_PHONE)
        assert len(admin) == 1
        assert PHONE in admin[0]
        assert "AWAITING_OPTION" in admin[0]

    @pytest.mark.asyncio
    async def test_inactivity_sets_state_even_if_notices_fail(self, gateway, workbook, settings):
        store = SessionStore(60)
        engine = ConversationEngine(store, gateway, workbook, AdminNotifier(gateway, None), settings)
        gateway.send_text = AsyncMock(return_value=Result.failure("down", NETWORK_ERROR))
        session = await at_state(engine, SessionState.AWAITING_OPTION)

        await engine.handle_inactivity(session)

        assert session.state == SessionState.AWAITING_HUMAN
        gateway.send_text.assert_awaited_once()
        await store.close()


def slow_down(gateway, delay=0.01):
    """Make every gateway send yield to the event loop for a while."""
    send_text, send_option_list = gateway.send_text, gateway.send_option_list

    async def slow_text(phone, message):
        await asyncio.sleep(delay)
        return await send_text(phone, message)

    async def slow_list(phone, prompt, options):
        await asyncio.sleep(delay)
        return await send_option_list(phone, prompt, options)

    gateway.send_text = slow_text
    gateway.send_option_list = slow_list


class TestConcurrentHandling:
    @pytest.mark.asyncio
    async def test_same_phone_race_last_writer_wins(self, engine, gateway):
        slow_down(gateway)
        await at_state(engine, SessionState.AWAITING_OPTION)

        first, second = await asyncio.gather(
            engine.handle_inbound(PHONE, "pedido"),
            engine.handle_inbound(PHONE, "consultar"),
        )

        assert first is second
        assert first.state == SessionState.AWAITING_NAME_CPF
        assert gateway.lists_to(PHONE)[-1]["options"] == menu.ORDER_METHOD_OPTIONS
        assert menu.MSG_ASK_NAME_CPF in gateway.texts_to(PHONE)

    @pytest.mark.asyncio
    async def test_timer_is_paused_while_message_is_handled(self, gateway, workbook, settings):
        store = SessionStore(0.05)
        engine = ConversationEngine(store, gateway, workbook, AdminNotifier(gateway, ADMIN_PHONE), settings)

        async def slow_fetch(url):
            await asyncio.sleep(0.2)
            return {"12345678900": SHEET}

        workbook.fetch_workbook = slow_fetch
        await at_state(engine, SessionState.AWAITING_NAME_CPF)

        session = await engine.handle_inbound(PHONE, "João da Silva – 123.456.789-00")

        assert session.state == SessionState.AWAITING_OPTION_AFTER_CONSULT
        assert menu.MSG_INACTIVITY not in gateway.texts_to(PHONE)
        assert gateway.to(ADMIN_PHONE) == []
        assert store.pending_timers() == 1
        await store.close()

    @pytest.mark.asyncio
    async def test_expiry_during_lookup_does_not_fail_the_message(self, engine, gateway, workbook):
        session = await at_state(engine, SessionState.AWAITING_NAME_CPF)

        async def fetch_with_expiry(url):
            await engine.handle_inactivity(session)
            return {"12345678900": SHEET}

        workbook.fetch_workbook = fetch_with_expiry

        result = await engine.handle_inbound(PHONE, "João da Silva – 123.456.789-00")

        assert result.state == SessionState.AWAITING_OPTION_AFTER_CONSULT
        assert gateway.texts_to(PHONE)[0] == menu.MSG_INACTIVITY
        assert "João da Silva" in gateway.texts_to(PHONE)[1]
