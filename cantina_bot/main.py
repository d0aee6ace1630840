import httpx
from fastapi import FastAPI

from cantina_bot import __version__
from cantina_bot.config import Settings, get_settings
from cantina_bot.logging_config import get_logger, setup_logging
from cantina_bot.routers import admin, webhook
from cantina_bot.services.alert_service import AdminNotifier
from cantina_bot.services.conversation_service import ConversationEngine
from cantina_bot.services.gateway_service import GatewayClient
from cantina_bot.services.session_store import SessionStore
from cantina_bot.services.workbook_service import WorkbookLookup

settings = get_settings()
setup_logging(settings.log_level)

logger = get_logger("main")

app = FastAPI(
    title="Cantina Bot",
    description="WhatsApp ordering and support bot for prison commissary units",
    version=__version__,
)

app.include_router(webhook.router)
app.include_router(admin.router)


def build_engine(settings: Settings, http_client: httpx.AsyncClient) -> ConversationEngine:
    gateway = GatewayClient(settings, http_client)
    return ConversationEngine(
        store=SessionStore(settings.inactivity_seconds),
        gateway=gateway,
        workbook=WorkbookLookup(settings, http_client),
        notifier=AdminNotifier(gateway, settings.admin_phone),
        settings=settings,
    )


@app.on_event("startup")
async def start_engine() -> None:
    http_client = httpx.AsyncClient(timeout=settings.gateway_timeout_seconds, follow_redirects=True)
    app.state.settings = settings
    app.state.http_client = http_client
    app.state.engine = build_engine(settings, http_client)
    logger.info(
        "Cantina bot started",
        extra={
            "context": {
                "units_with_sources": sorted(settings.unit_sources),
                "inactivity_ms": settings.inactivity_ms,
                "admin_configured": bool(settings.admin_phone),
            }
        },
    )


@app.on_event("shutdown")
async def stop_engine() -> None:
    engine = getattr(app.state, "engine", None)
    if engine is not None:
        await engine.store.close()
    http_client = getattr(app.state, "http_client", None)
    if http_client is not None:
        await http_client.aclose()
    logger.info("Cantina bot stopped")


@app.get("/health")
async def health():
    return {"status": "ok"}


def run() -> None:
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.port)
