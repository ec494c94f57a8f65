"""Entry point for running the operational API with uvicorn."""

import uvicorn

from athenut_mint.api.app import create_app
from athenut_mint.config import get_settings
from athenut_mint.logging_config import configure_logging


def main() -> None:
    """Run the application."""
    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(
        create_app(),
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
