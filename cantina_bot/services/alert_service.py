"""Notifications to the administrative contact over WhatsApp."""

from typing import Optional

from cantina_bot.logging_config import get_logger
from cantina_bot.services.gateway_service import GatewayClient
from cantina_bot.services.result import NOT_CONFIGURED, Result

logger = get_logger("alert_service")

LEVEL_EMOJI = {"INFO": "ℹ️", "WARNING": "⚠️", "ERROR": "❌", "HANDOFF": "🙋"}


def format_alert(level: str, message: str, context: Optional[dict] = None) -> str:
    text = f"{LEVEL_EMOJI.get(level, '📢')} *{level}*\n\n{message}"
    if context:
        context_str = "\n".join(f"{k}: {v}" for k, v in context.items() if v is not None)
        if context_str:
            text += f"\n\n{context_str}"
    return text


class AdminNotifier:
    def __init__(self, gateway: GatewayClient, admin_phone: Optional[str]):
        self.gateway = gateway
        self.admin_phone = admin_phone

    async def send(self, level: str, message: str, context: Optional[dict] = None) -> Result[dict]:
        """Send a notice to the admin; failures are logged and returned, never raised."""
        if not self.admin_phone:
            logger.warning(f"Admin contact not configured: {level} - {message}", extra={"context": context})
            return Result.failure("admin contact not configured", NOT_CONFIGURED)

        result = await self.gateway.send_text(self.admin_phone, format_alert(level, message, context))
        if not result.ok:
            logger.error(
                f"Failed to notify admin: {result.error}",
                extra={"context": {"level": level, "message": message}},
            )
        return result

    async def handoff(self, message: str, context: Optional[dict] = None) -> Result[dict]:
        return await self.send("HANDOFF", message, context)

    async def error(self, message: str, context: Optional[dict] = None) -> Result[dict]:
        return await self.send("ERROR", message, context)

    async def info(self, message: str, context: Optional[dict] = None) -> Result[dict]:
        return await self.send("INFO", message, context)
