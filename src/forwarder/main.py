"""Main entry point for the payment forwarder."""

import logging

import uvicorn

from forwarder.api.app import create_app
from forwarder.config import Settings, get_settings

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    level = settings.log_level or ("DEBUG" if settings.debug else "INFO")
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # Keep third-party chatter out of debug logs
    for name in ("httpx", "httpcore", "websockets", "aiosqlite"):
        logging.getLogger(name).setLevel(logging.WARNING)


def main():
    """Main entry point."""
    settings = get_settings()
    configure_logging(settings)

    logger.info(f"Starting forwarder ({settings.environment})")
    logger.info(f"Settings: {settings.get_safe_dict()}")

    if not settings.forward_address:
        logger.error("FORWARD_ADDRESS must be set")
        raise SystemExit(1)

    app = create_app(settings)
    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    main()
