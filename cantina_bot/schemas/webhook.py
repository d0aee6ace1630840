import re
from typing import Optional, Union

from pydantic import AliasChoices, BaseModel, Field

PhoneValue = Union[str, int]


def normalize_phone(value: Optional[PhoneValue]) -> str:
    """Digits of a phone or chat id ("5511999999999@c.us" -> "5511999999999")."""
    if value is None:
        return ""
    raw = str(value).split("@", 1)[0]
    return re.sub(r"\D", "", raw)


class InboundMessage(BaseModel):
    phone: str
    text: str = ""


class EventBody(BaseModel):
    text: Optional[str] = None


class GatewayEvent(BaseModel):
    """{"type": "message", "from": ..., "body": {"text": ...} | "message": ...}"""

    type: str
    sender: PhoneValue = Field(validation_alias=AliasChoices("from", "sender"))
    body: Optional[Union[EventBody, str]] = None
    message: Optional[str] = None

    def to_inbound(self) -> Optional[InboundMessage]:
        if self.type != "message":
            return None
        if isinstance(self.body, EventBody) and self.body.text is not None:
            text = self.body.text
        elif isinstance(self.body, str):
            text = self.body
        else:
            text = self.message or ""
        return InboundMessage(phone=normalize_phone(self.sender), text=text)


class ChatMessage(BaseModel):
    chatId: str
    type: Optional[str] = None
    body: Optional[str] = None
    selectedButtonId: Optional[str] = None
    selectedButtonText: Optional[str] = None
    fromMe: bool = False


class ChatEvent(BaseModel):
    """{"message": {"chatId", "type", "body" | "selectedButtonId" | "selectedButtonText"}}"""

    message: ChatMessage

    def to_inbound(self) -> Optional[InboundMessage]:
        message = self.message
        if message.fromMe:
            return None
        if message.body is None and message.selectedButtonId is None and message.selectedButtonText is None:
            return None
        text = message.body or message.selectedButtonId or message.selectedButtonText or ""
        return InboundMessage(phone=normalize_phone(message.chatId), text=text)


class SenderEvent(BaseModel):
    """{"sender": ..., "message": "..."}"""

    sender: PhoneValue
    message: str

    def to_inbound(self) -> Optional[InboundMessage]:
        return InboundMessage(phone=normalize_phone(self.sender), text=self.message)


class TextContent(BaseModel):
    message: Optional[str] = None


RECEIVED_CALLBACK = "ReceivedCallback"


class ListResponse(BaseModel):
    selectedRowId: Optional[str] = None
    title: Optional[str] = None
    message: Optional[str] = None


class ButtonResponse(BaseModel):
    buttonId: Optional[str] = None
    message: Optional[str] = None


class PhoneEvent(BaseModel):
    """Gateway callback {"phone", "text": "..." | {"message"}} and list/button replies.

    Delivery, status and presence callbacks carry a phone but no text; they are
    not customer messages.
    """

    phone: PhoneValue
    type: Optional[str] = None
    text: Optional[Union[TextContent, str]] = None
    listResponseMessage: Optional[ListResponse] = None
    buttonsResponseMessage: Optional[ButtonResponse] = None
    fromMe: bool = False
    isGroup: bool = False

    def to_inbound(self) -> Optional[InboundMessage]:
        if self.fromMe or self.isGroup:
            return None
        if self.type is not None and self.type != RECEIVED_CALLBACK:
            return None
        if self.text is None and not self.listResponseMessage and not self.buttonsResponseMessage:
            return None
        if isinstance(self.text, TextContent):
            text = self.text.message or ""
        else:
            text = self.text or ""
        if not text and self.listResponseMessage:
            text = self.listResponseMessage.title or self.listResponseMessage.selectedRowId or ""
        if not text and self.buttonsResponseMessage:
            text = self.buttonsResponseMessage.message or self.buttonsResponseMessage.buttonId or ""
        return InboundMessage(phone=normalize_phone(self.phone), text=text)


INBOUND_SHAPES = (GatewayEvent, ChatEvent, SenderEvent, PhoneEvent)


class WebhookResponse(BaseModel):
    success: bool
    message: str
    state: Optional[str] = None
