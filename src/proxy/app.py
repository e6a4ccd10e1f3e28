"""FastAPI application hosting webhook intake and the account gateway."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from src.config import BridgeSettings, ConfigFile, configure_logging
from src.gateway.manager import ChannelGateway, ConfigProvider
from src.gateway.status import StatusStore, build_channel_summary, collect_status_issues
from src.models import ConfigError
from src.pipeline.dispatcher import ReplyDispatcher, UpstreamReplyDispatcher
from src.webhook.router import WebhookRouter


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables."""
    settings = BridgeSettings.from_env()
    configure_logging(settings.log_level)
    if not settings.upstream_url or not settings.upstream_token:
        raise ConfigError("UPSTREAM_URL and OPENCLAW_TOKEN must be set")
    dispatcher = UpstreamReplyDispatcher(settings.upstream_url, settings.upstream_token)
    return create_app(ConfigFile(settings.config_path), dispatcher)


def create_app(
    config_provider: ConfigProvider,
    dispatcher: ReplyDispatcher,
    router: WebhookRouter | None = None,
    status: StatusStore | None = None,
    start_gateway: bool = True,
) -> FastAPI:
    """Create the bridge app; accounts start and stop with the app lifespan."""
    webhook_router = router or WebhookRouter()
    gateway = ChannelGateway(config_provider, dispatcher, status=status)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if start_gateway:
            await gateway.start()
        try:
            yield
        finally:
            await gateway.stop()

    app = FastAPI(docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.gateway = gateway

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/status")
    async def channel_status() -> JSONResponse:
        snapshots = gateway.snapshots()
        return JSONResponse({
            "accounts": [s.model_dump(mode="json") for s in snapshots],
            "summary": {
                s.account_id: build_channel_summary(s) for s in snapshots
            },
            "issues": [i.model_dump(mode="json") for i in collect_status_issues(snapshots)],
        })

    @app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "DELETE", "PATCH"])
    async def webhook(request: Request, path: str) -> Response:
        response = await webhook_router.handle(request)
        if response is None:
            return JSONResponse({"error": "Not found"}, status_code=404)
        return response

    return app
