"""Run the API server: python -m tunelink_api (or the tunelink-api script)."""

import sys

import uvicorn
from pydantic import ValidationError

from tunelink_api.settings import get_settings

# Seconds to wait for open event streams before forcing shutdown
GRACEFUL_SHUTDOWN_SECONDS = 5


def main() -> None:
    try:
        settings = get_settings()
    except ValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error["loc"]) or "settings"
        print(f"Invalid configuration for {field}: {error['msg']}", file=sys.stderr)
        sys.exit(1)

    # Logging is configured by the app with a Rich handler
    uvicorn.run(
        "tunelink_api.api.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_config=None,
        log_level=settings.log_level.lower(),
        timeout_graceful_shutdown=GRACEFUL_SHUTDOWN_SECONDS,
    )


if __name__ == "__main__":
    main()
