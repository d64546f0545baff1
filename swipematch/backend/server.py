"""Run the API with uvicorn using environment settings."""

from __future__ import annotations

import uvicorn

from swipematch.backend.config import configure_logging, load_settings


def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    uvicorn.run(
        "swipematch.backend.api:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
