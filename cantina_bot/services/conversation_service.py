"""Conversation engine: the menu state machine driven by inbound WhatsApp text.

Each state owns an ordered list of rules; the first rule whose predicate matches
the normalized text runs. States without a matching rule escalate to a human.
"""

import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from cantina_bot.config import Settings
from cantina_bot.logging_config import SessionLogger, get_logger
from cantina_bot.services import menu_catalog as menu
from cantina_bot.services.alert_service import AdminNotifier
from cantina_bot.services.consultation_service import format_summary, parse_name_cpf
from cantina_bot.services.gateway_service import GatewayClient, MenuOption
from cantina_bot.services.result import NOT_CONFIGURED, NOT_FOUND, Result
from cantina_bot.services.session_store import Session, SessionStore
from cantina_bot.services.state_machine import LIST_STATES, SessionState, escalate, transition
from cantina_bot.services.workbook_service import WorkbookLookup

logger = get_logger("conversation")

S = SessionState


@dataclass(frozen=True)
class Inbound:
    raw: str
    text: str
    # State the message was dispatched from; transitions are validated against it.
    state: SessionState


Predicate = Callable[[str], bool]
Action = Callable[[Session, Inbound], Awaitable[None]]


@dataclass(frozen=True)
class Rule:
    matches: Predicate
    action: Action


def normalize_text(text: Optional[str]) -> str:
    """Lower-case and trim; underscores in list ids read as spaces."""
    return re.sub(r"[_\s]+", " ", (text or "").strip().lower()).strip()


def contains(*keywords: str) -> Predicate:
    return lambda text: any(keyword in text for keyword in keywords)


def first_word_in(*words: str) -> Predicate:
    def _matches(text: str) -> bool:
        tokens = re.split(r"[\s,.!;:-]+", text)
        return bool(tokens) and tokens[0] in words

    return _matches


def always(_text: str) -> bool:
    return True


def is_unit(text: str) -> bool:
    return menu.match_unit(text) is not None


def is_name_cpf(text: str) -> bool:
    return parse_name_cpf(text) is not None


class ConversationEngine:
    def __init__(
        self,
        store: SessionStore,
        gateway: GatewayClient,
        workbook: WorkbookLookup,
        notifier: AdminNotifier,
        settings: Settings,
    ):
        self.store = store
        self.gateway = gateway
        self.workbook = workbook
        self.notifier = notifier
        self.settings = settings
        self.rules = self._build_rules()
        store.set_inactivity_handler(self.handle_inactivity)

    def _build_rules(self) -> Dict[SessionState, List[Rule]]:
        return {
            S.INIT: [
                Rule(always, self._show_units),
            ],
            S.AWAITING_UNIT: [
                Rule(is_unit, self._select_unit),
                Rule(always, self._show_units),
            ],
            S.AWAITING_OPTION: [
                Rule(contains("fazer pedido", "pedido"), self._ask_order_method),
                Rule(contains("consultar", "vales", "dívidas", "dividas"), self._ask_name_cpf),
                Rule(contains("outros", "duvidas", "dúvidas"), self._show_outros),
                Rule(contains("voltar"), self._show_units),
                Rule(always, self._show_service_options),
            ],
            S.AWAITING_PEDIDO_METHOD: [
                Rule(contains("site"), self._order_via_site),
                Rule(contains("continuar", "texto"), self._order_via_text),
                Rule(contains("voltar"), self._show_service_options),
            ],
            S.AWAITING_OUTROS: [
                Rule(contains("não chegou", "nao chegou"), self._issue_not_arrived),
                Rule(contains("incompleto", "faltou", "errado"), self._issue_incomplete),
                Rule(contains("modificar"), self._ask_modify),
                Rule(contains("cancelar"), self._ask_cancel),
                Rule(contains("outro", "atendente"), self._request_attendant),
                Rule(contains("voltar"), self._show_service_options),
            ],
            S.AWAITING_CONFIRM_ISSUE: [
                Rule(first_word_in("s", "sim", "1"), self._issue_resolved),
                Rule(first_word_in("n", "não", "nao", "2"), self._issue_unresolved),
            ],
            S.AWAITING_MODIFY: [
                Rule(always, self._forward_request),
            ],
            S.AWAITING_CANCEL: [
                Rule(always, self._forward_request),
            ],
            S.AWAITING_NAME_CPF: [
                Rule(is_name_cpf, self._consult),
                Rule(always, self._name_cpf_hint),
            ],
            S.AWAITING_HUMAN: [
                Rule(always, self._already_escalated),
            ],
        }

    def _log(self, session: Session) -> SessionLogger:
        return SessionLogger(logger, {"phone": session.phone, "unit": session.unit})

    # Entry points

    async def handle_inbound(self, phone: str, text: Optional[str]) -> Session:
        """Run one inbound message through the state machine and reset the session timer."""
        session = self.store.get_or_create(phone)
        # No expiry while the message is being handled; rescheduled below.
        self.store.cancel_timer(phone)
        normalized = self._resolve_numbered_reply(session, normalize_text(text))
        inbound = Inbound(raw=(text or "").strip(), text=normalized, state=session.state)
        self._log(session).info(
            "Inbound message",
            context={"state": session.state.value, "text": inbound.text[:100]},
        )
        try:
            await self._dispatch(session, inbound)
        finally:
            self.store.reset_timer(phone)
        return session

    async def handle_inactivity(self, session: Session) -> None:
        """Timer expiry: hand the session to a human and tell both sides."""
        previous = session.state
        session.state = escalate(previous)
        self._log(session).info("Session escalated by inactivity", context={"from_state": previous.value})

        await self._send_text(session, menu.MSG_INACTIVITY)
        await self.notifier.handoff(
            "Atendimento encaminhado por inatividade",
            {"telefone": session.phone, "estado": previous.value, "unidade": session.unit},
        )

    def release(self, phone: str) -> Optional[Session]:
        """Hand a session back to the bot; the next message restarts the menu."""
        session = self.store.get(phone)
        if session is None:
            return None
        previous = session.state
        session.state = S.INIT
        session.unit = None
        session.last_issue = None
        session.last_options = []
        self._log(session).info("Session released to bot", context={"from_state": previous.value})
        return session

    async def fallback_to_human(self, session: Session, inbound: Inbound, reason: str = "unrecognized") -> None:
        await self._send_text(session, menu.MSG_HUMAN_HANDOFF)
        await self.notifier.handoff(
            "Cliente encaminhado para atendimento humano",
            {
                "telefone": session.phone,
                "estado": inbound.state.value,
                "unidade": session.unit,
                "motivo": reason,
                "mensagem": inbound.raw or None,
            },
        )
        self._set_state(session, inbound, S.AWAITING_HUMAN)

    # Dispatch

    async def _dispatch(self, session: Session, inbound: Inbound) -> None:
        for rule in self.rules.get(inbound.state, ()):
            if rule.matches(inbound.text):
                await rule.action(session, inbound)
                return
        await self.fallback_to_human(session, inbound)

    def _resolve_numbered_reply(self, session: Session, text: str) -> str:
        if session.state not in LIST_STATES or not text.isdigit() or not session.last_options:
            return text
        index = int(text)
        if 1 <= index <= len(session.last_options):
            return session.last_options[index - 1].lower()
        return text

    def _set_state(self, session: Session, inbound: Inbound, new_state: SessionState) -> None:
        """Move to new_state, checked against the state the message arrived in.

        Another message from the same phone (or the inactivity timer) may have
        changed session.state while this one awaited I/O; the last write wins.
        """
        previous = session.state
        session.state = transition(inbound.state, new_state)
        if previous != new_state:
            self._log(session).info(
                "State changed",
                context={"from_state": previous.value, "to_state": new_state.value},
            )

    async def _send_text(self, session: Session, message: str) -> Result[dict]:
        session.last_options = []
        result = await self.gateway.send_text(session.phone, message)
        if not result.ok:
            self._log(session).warning("Reply not delivered", context={"error": result.error})
        return result

    async def _send_list(self, session: Session, prompt: str, options: Sequence[MenuOption]) -> Result[dict]:
        session.last_options = [option.title for option in options]
        result = await self.gateway.send_option_list(session.phone, prompt, options)
        if not result.ok:
            self._log(session).warning("Option list not delivered", context={"error": result.error})
        return result

    # Menus

    async def _show_units(self, session: Session, inbound: Inbound) -> None:
        await self._send_list(session, menu.UNIT_PROMPT, menu.unit_options())
        self._set_state(session, inbound, S.AWAITING_UNIT)

    async def _select_unit(self, session: Session, inbound: Inbound) -> None:
        unit = menu.match_unit(inbound.text)
        session.unit = unit.code
        await self._show_service_options(session, inbound)

    async def _show_service_options(self, session: Session, inbound: Inbound) -> None:
        unit = menu.find_unit(session.unit)
        await self._send_list(session, menu.service_prompt(unit), menu.SERVICE_OPTIONS)
        self._set_state(session, inbound, S.AWAITING_OPTION)

    async def _ask_order_method(self, session: Session, inbound: Inbound) -> None:
        await self._send_list(session, menu.ORDER_METHOD_PROMPT, menu.ORDER_METHOD_OPTIONS)
        self._set_state(session, inbound, S.AWAITING_PEDIDO_METHOD)

    async def _show_outros(self, session: Session, inbound: Inbound) -> None:
        await self._send_list(session, menu.OUTROS_PROMPT, menu.OUTROS_OPTIONS)
        self._set_state(session, inbound, S.AWAITING_OUTROS)

    # Ordering

    async def _order_via_site(self, session: Session, inbound: Inbound) -> None:
        await self._send_text(session, menu.MSG_ORDER_SITE.format(url=self.settings.order_site_url))
        await self._show_service_options(session, inbound)

    async def _order_via_text(self, session: Session, inbound: Inbound) -> None:
        await self._send_text(session, menu.MSG_ORDER_TEXT.format(url=self.settings.catalogue_url))
        self._set_state(session, inbound, S.AWAITING_OPTION)

    # Complaints

    async def _issue_not_arrived(self, session: Session, inbound: Inbound) -> None:
        session.last_issue = menu.ISSUE_NOT_ARRIVED
        await self._send_text(session, menu.MSG_NOT_ARRIVED)
        self._set_state(session, inbound, S.AWAITING_CONFIRM_ISSUE)

    async def _issue_incomplete(self, session: Session, inbound: Inbound) -> None:
        session.last_issue = menu.ISSUE_INCOMPLETE
        await self._send_text(session, menu.MSG_INCOMPLETE)
        self._set_state(session, inbound, S.AWAITING_CONFIRM_ISSUE)

    async def _ask_modify(self, session: Session, inbound: Inbound) -> None:
        await self._send_text(session, menu.MSG_MODIFY_PROMPT)
        self._set_state(session, inbound, S.AWAITING_MODIFY)

    async def _ask_cancel(self, session: Session, inbound: Inbound) -> None:
        await self._send_text(session, menu.MSG_CANCEL_PROMPT)
        self._set_state(session, inbound, S.AWAITING_CANCEL)

    async def _request_attendant(self, session: Session, inbound: Inbound) -> None:
        await self.notifier.handoff(
            "Cliente pediu para falar com um atendente",
            {"telefone": session.phone, "unidade": session.unit},
        )
        await self._send_text(session, menu.MSG_REQUEST_FORWARDED)
        self._set_state(session, inbound, S.AWAITING_HUMAN)

    async def _issue_resolved(self, session: Session, inbound: Inbound) -> None:
        await self._send_text(session, menu.MSG_THANKS)
        await self._show_service_options(session, inbound)

    async def _issue_unresolved(self, session: Session, inbound: Inbound) -> None:
        await self.notifier.handoff(
            "Problema com pedido não resolvido",
            {"telefone": session.phone, "unidade": session.unit, "ocorrencia": session.last_issue},
        )
        await self._send_text(session, menu.MSG_REQUEST_FORWARDED)
        self._set_state(session, inbound, S.AWAITING_HUMAN)

    async def _forward_request(self, session: Session, inbound: Inbound) -> None:
        kind = "Modificação" if inbound.state == S.AWAITING_MODIFY else "Cancelamento"
        await self.notifier.handoff(
            f"{kind} de pedido solicitado",
            {"telefone": session.phone, "unidade": session.unit, "mensagem": inbound.raw},
        )
        await self._send_text(session, menu.MSG_REQUEST_FORWARDED)
        self._set_state(session, inbound, S.AWAITING_HUMAN)

    # Consultation

    async def _ask_name_cpf(self, session: Session, inbound: Inbound) -> None:
        await self._send_text(session, menu.MSG_ASK_NAME_CPF)
        self._set_state(session, inbound, S.AWAITING_NAME_CPF)

    async def _name_cpf_hint(self, session: Session, inbound: Inbound) -> None:
        await self._send_text(session, menu.MSG_NAME_CPF_HINT)
        self._set_state(session, inbound, S.AWAITING_NAME_CPF)

    async def _consult(self, session: Session, inbound: Inbound) -> None:
        query = parse_name_cpf(inbound.raw)
        unit = menu.find_unit(session.unit)
        context = {"telefone": session.phone, "unidade": session.unit}

        if not self.workbook.source_for(session.unit):
            await self._consult_not_configured(session, inbound, context)
            return

        result = await self.workbook.fetch_customer_record(session.unit, query.identifier, query.name)
        if result.ok:
            await self._send_text(session, format_summary(result.value, unit))
            await self._send_text(session, menu.MSG_BACK_HINT)
            self._set_state(session, inbound, S.AWAITING_OPTION_AFTER_CONSULT)
            return

        if result.error_code == NOT_CONFIGURED:
            await self._consult_not_configured(session, inbound, context)
        elif result.error_code == NOT_FOUND:
            await self._send_text(session, menu.MSG_CONSULT_NOT_FOUND)
            await self.notifier.handoff(
                "Cadastro não localizado na planilha",
                {**context, "nome": query.name or None, "cpf": query.identifier or None},
            )
        else:
            await self._send_text(session, menu.MSG_CONSULT_FAILED)
            await self.notifier.error(
                "Falha ao consultar planilha",
                {**context, "erro": result.error, "codigo": result.error_code},
            )
        self._set_state(session, inbound, S.AWAITING_HUMAN)

    async def _consult_not_configured(self, session: Session, inbound: Inbound, context: dict) -> None:
        await self._send_text(session, menu.MSG_CONSULT_NOT_CONFIGURED)
        await self.notifier.error("Unidade sem planilha configurada", context)
        self._set_state(session, inbound, S.AWAITING_HUMAN)

    async def _already_escalated(self, session: Session, inbound: Inbound) -> None:
        self._log(session).info("Message ignored, waiting for human attendant")
