"""AskBoard entrypoint.

- Loads `.env` before settings are read
- Serves `services.forum.app:app` with uvicorn on the configured host/port
"""
from __future__ import annotations

import argparse

import uvicorn
from dotenv import load_dotenv

load_dotenv(override=False)

from packages.common.config import get_settings  # noqa: E402
from packages.common.logging import configure_logging  # noqa: E402


def main() -> None:
    """Parse CLI flags and run the API server."""
    settings = get_settings()
    ap = argparse.ArgumentParser(description="Run the AskBoard API server")
    ap.add_argument("--host", default=settings.HOST)
    ap.add_argument("--port", type=int, default=settings.PORT)
    ap.add_argument("--reload", action="store_true", help="Auto-reload on code changes (dev only)")
    args = ap.parse_args()

    log = configure_logging(settings.LOG_LEVEL, settings.SERVICE_NAME)
    log.info("Backend starting on %s:%s (storage=%s)", args.host, args.port, settings.backend.value)

    uvicorn.run(
        "services.forum.app:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_config=None,
    )


if __name__ == "__main__":
    main()
