"""Outbound WhatsApp messaging through the Z-API compatible gateway."""

from dataclasses import dataclass
from typing import Optional, Sequence

import httpx

from cantina_bot.config import Settings
from cantina_bot.logging_config import get_logger
from cantina_bot.services.result import HTTP_ERROR, NETWORK_ERROR, NOT_CONFIGURED, Result

logger = get_logger("gateway_service")

LIST_TITLE = "Opções disponíveis"
LIST_BUTTON_LABEL = "Ver opções"


@dataclass(frozen=True)
class MenuOption:
    id: str
    title: str
    description: str = ""


def format_numbered_list(prompt: str, options: Sequence[MenuOption]) -> str:
    """Plain-text rendition of an option list, used when the list call fails."""
    lines = [prompt, ""]
    lines.extend(f"{index}. {option.title}" for index, option in enumerate(options, start=1))
    return "\n".join(lines)


class GatewayClient:
    """Sends text messages and interactive option lists to a phone number.

    Failures never raise: every call returns a Result and logs the outcome.
    """

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=settings.gateway_timeout_seconds)

    @property
    def configured(self) -> bool:
        return bool(self.settings.gateway_instance and self.settings.gateway_token)

    def _url(self, endpoint: str) -> str:
        base = self.settings.gateway_base_url.rstrip("/")
        return f"{base}/instances/{self.settings.gateway_instance}/token/{self.settings.gateway_token}/{endpoint}"

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.settings.gateway_client_token:
            headers["Client-Token"] = self.settings.gateway_client_token
        return headers

    async def _post(self, endpoint: str, payload: dict) -> Result[dict]:
        phone = payload.get("phone")
        if not self.configured:
            logger.error(
                "Gateway not configured (GATEWAY_INSTANCE/GATEWAY_TOKEN missing)",
                extra={"context": {"phone": phone, "endpoint": endpoint}},
            )
            return Result.failure("gateway not configured", NOT_CONFIGURED)

        try:
            response = await self._client.post(self._url(endpoint), json=payload, headers=self._headers())
        except httpx.HTTPError as e:
            logger.error(
                f"Gateway request failed: {e}",
                extra={"context": {"phone": phone, "endpoint": endpoint}},
            )
            return Result.failure(str(e), NETWORK_ERROR)

        logger.info(
            f"Gateway response: status={response.status_code}",
            extra={"context": {"phone": phone, "endpoint": endpoint, "body": response.text[:200]}},
        )
        if response.status_code >= 300:
            return Result.failure(f"gateway returned {response.status_code}", HTTP_ERROR)

        try:
            body = response.json()
        except ValueError:
            body = {}
        return Result.success(body if isinstance(body, dict) else {"response": body})

    async def send_text(self, phone: str, message: str) -> Result[dict]:
        if not phone or not message:
            logger.warning("send_text: missing phone or message", extra={"context": {"phone": phone}})
            return Result.failure("missing phone or message", "invalid_request")
        return await self._post("send-text", {"phone": phone, "message": message})

    async def send_option_list(self, phone: str, prompt: str, options: Sequence[MenuOption]) -> Result[dict]:
        """Send an interactive list; on failure resend it as a numbered text list."""
        payload = {
            "phone": phone,
            "message": prompt,
            "optionList": {
                "title": LIST_TITLE,
                "buttonLabel": LIST_BUTTON_LABEL,
                "options": [
                    {"id": option.id, "title": option.title, "description": option.description}
                    for option in options
                ],
            },
        }
        result = await self._post("send-option-list", payload)
        if result.ok:
            return result

        logger.warning(
            "Option list failed, falling back to text",
            extra={"context": {"phone": phone, "error": result.error}},
        )
        return await self.send_text(phone, format_numbered_list(prompt, options))

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
