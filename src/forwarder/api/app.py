"""FastAPI application factory."""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from forwarder.archive.database import ArchiveDatabase
from forwarder.config import Settings, get_settings
from forwarder.errors import ForwarderError, get_proper_error
from forwarder.gateway.base import LedgerGateway
from forwarder.gateway.factory import get_gateway
from forwarder.keystore.store import FileKeyStore
from forwarder.notifications.webhook import WebhookNotifier
from forwarder.services.reaper import WalletReaper
from forwarder.services.sessions import PaymentProcessor
from forwarder.transactions.builder import TransactionBuilder

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "Internal server error."


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "status": status_code, "message": message},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings: Settings = app.state.settings
    gateway: LedgerGateway = app.state.gateway or get_gateway(settings)

    # Startup
    archive = ArchiveDatabase.from_settings(settings)
    await archive.init()

    http_client = app.state.http_client or httpx.AsyncClient(follow_redirects=False)
    notifier = WebhookNotifier.from_settings(settings, client=http_client)
    keystore = FileKeyStore.from_settings(settings, gateway=gateway)
    builder = TransactionBuilder(gateway)
    processor = PaymentProcessor(settings, gateway, keystore, builder, notifier, archive=archive)
    app.state.processor = processor

    reaper_task = None
    if settings.reaper_enabled:
        reaper = WalletReaper(processor, gateway, builder, keystore, settings)
        reaper_task = asyncio.create_task(reaper.run(), name="wallet-reaper")

    mode = "DRY RUN" if settings.dry_run else "LIVE"
    logger.info(f"Forwarder started ({mode}), forwarding to {settings.forward_address}")

    yield

    # Shutdown
    if reaper_task is not None:
        reaper_task.cancel()
        with suppress(asyncio.CancelledError):
            await reaper_task
    await processor.shutdown()
    await notifier.close()
    await gateway.close()
    await archive.close()
    logger.info("Forwarder stopped")


def create_app(
    settings: Optional[Settings] = None,
    gateway: Optional[LedgerGateway] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to run with (loaded from the environment if omitted)
        gateway: Ledger gateway override (chosen from settings if omitted)
        http_client: Client used for callback delivery
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Forwarder API",
        description="Solana payment forwarder",
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.settings = settings
    app.state.gateway = gateway
    app.state.http_client = http_client

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ForwarderError)
    async def forwarder_error_handler(request: Request, exc: ForwarderError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
            return error_response(exc.status_code, INTERNAL_ERROR_MESSAGE)
        logger.info(f"{request.method} {request.url.path} rejected: {exc}")
        return error_response(exc.status_code, get_proper_error(exc))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return error_response(500, INTERNAL_ERROR_MESSAGE)

    # Register routes
    from forwarder.api.routes import health, payments

    app.include_router(health.router, tags=["Health"])
    app.include_router(payments.router, tags=["Payments"])

    return app


# Default app instance
app = create_app()
