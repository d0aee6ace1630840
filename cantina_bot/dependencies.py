from fastapi import Request

from cantina_bot.config import Settings
from cantina_bot.services.conversation_service import ConversationEngine


def get_engine(request: Request) -> ConversationEngine:
    return request.app.state.engine


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings
