"""Run the broker's HTTP surface: ``python -m passgage_session``."""
import os

from aiohttp import web

from .handlers import create_app
from .log import setup_logging


def main() -> None:
    setup_logging(os.environ.get("LOG_LEVEL", "INFO"))
    web.run_app(
        create_app(),
        host=os.environ.get("HTTP_HOST", "localhost"),
        port=int(os.environ.get("HTTP_PORT", "3000")),
    )


if __name__ == "__main__":
    main()
