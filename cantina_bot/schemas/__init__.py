from cantina_bot.schemas.webhook import INBOUND_SHAPES, InboundMessage, WebhookResponse, normalize_phone

__all__ = ["INBOUND_SHAPES", "InboundMessage", "WebhookResponse", "normalize_phone"]
