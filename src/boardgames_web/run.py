from aiohttp import web

from boardgames_web.app import create_app
from boardgames_web.config import load_settings
from boardgames_web.logging_config import get_logger, setup_logging

logger = get_logger(__name__)


def main():
    setup_logging()
    try:
        settings = load_settings()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        raise SystemExit(1) from e

    if not settings.admin_token:
        logger.warning("BOARDGAMES_TOKEN not set; /api/load is open to anyone who can reach it.")

    logger.info(f"DB mode: {settings.database_path}")
    logger.info(f"Starting server on 0.0.0.0:{settings.port}")
    web.run_app(create_app(settings), host="0.0.0.0", port=settings.port, print=None)  # nosec B104


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        # Handle Ctrl+C gracefully
        pass
