"""Server entry point (``mcpauth-server``)."""

import uvicorn

from mcpauth.core.app import create_app
from mcpauth.core.logging_config import setup_logging
from mcpauth.core.settings import AuthSettings


def main() -> None:
    """Run the server with settings taken from the environment."""
    settings = AuthSettings()
    setup_logging(settings.log_level)
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
