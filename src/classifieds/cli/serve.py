"""Run the classifieds API server."""

from __future__ import annotations

import argparse
import sys

import uvicorn
from loguru import logger

from classifieds.infrastructure.settings import get_settings


def main() -> int:
    """Entry point for the API server."""
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Serve the classifieds API")
    parser.add_argument("--host", default=settings.api_host, help="Bind address")
    parser.add_argument("--port", type=int, default=settings.api_port, help="Bind port")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes (development)")
    args = parser.parse_args()

    # Configure logging
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=settings.log_level,
    )

    logger.info(f"Serving {settings.app_name} on {args.host}:{args.port}")
    uvicorn.run(
        "classifieds.api.main:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
