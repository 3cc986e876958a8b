"""
Process entry-point for the entrybook service.

Responsibilities
- Load settings from the environment (.env aware)
- Configure logging
- Serve the REST, tool-session and chat surfaces with uvicorn
"""
from __future__ import annotations

import logging

import uvicorn

from entrybook.config import load_settings
from entrybook.server import MESSAGES_PATH, create_app

logger = logging.getLogger(__name__)


def main() -> None:
    """Run the HTTP server until interrupted."""
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = create_app(settings)
    base_url = f"http://{settings.host}:{settings.port}"
    logger.info("Server running at %s", base_url)
    logger.info("Tool session endpoint: GET %s/sse, POST %s%s", base_url, base_url, MESSAGES_PATH)
    if settings.auth_token:
        logger.info("Shared-secret auth enabled for /sse")

    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
