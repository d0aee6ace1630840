from unittest.mock import Mock

import pytest

from cantina_bot.config import Settings
from cantina_bot.services.alert_service import AdminNotifier
from cantina_bot.services.conversation_service import ConversationEngine
from cantina_bot.services.result import Result
from cantina_bot.services.session_store import SessionStore
from cantina_bot.services.workbook_service import WorkbookLookup

CUSTOMER_PHONE = "5511999999999"
ADMIN_PHONE = "5551000000000"


class FakeGateway:
    """Records outbound messages instead of calling the gateway."""

    def __init__(self):
        self.sent = []

    async def send_text(self, phone, message):
        self.sent.append({"kind": "text", "phone": phone, "message": message})
        return Result.success({"messageId": f"m{len(self.sent)}"})

    async def send_option_list(self, phone, prompt, options):
        self.sent.append({"kind": "list", "phone": phone, "message": prompt, "options": list(options)})
        return Result.success({"messageId": f"m{len(self.sent)}"})

    def to(self, phone):
        return [item for item in self.sent if item["phone"] == phone]

    def texts_to(self, phone):
        return [item["message"] for item in self.to(phone) if item["kind"] == "text"]

    def lists_to(self, phone):
        return [item for item in self.to(phone) if item["kind"] == "list"]


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        gateway_instance="instance-1",
        gateway_token="token-1",
        admin_phone=ADMIN_PHONE,
        unit_sources={"PERG": "https://sheets.example.com/perg.xlsx"},
        inactivity_ms=15 * 60 * 1000,
        order_site_url="https://loja.example.com",
        catalogue_url="https://loja.example.com/catalogo",
    )


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def workbook(settings):
    return WorkbookLookup(settings, http_client=Mock())


@pytest.fixture
def store(settings):
    return SessionStore(settings.inactivity_seconds)


@pytest.fixture
def engine(store, gateway, workbook, settings):
    return ConversationEngine(
        store=store,
        gateway=gateway,
        workbook=workbook,
        notifier=AdminNotifier(gateway, settings.admin_phone),
        settings=settings,
    )
