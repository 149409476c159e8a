from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from typing import Optional, Sequence

from .api.app import build_service, create_app
from .domain.errors import ConfigurationError, InvalidIconError, ListenerError
from .env import Settings, get_settings
from .infrastructure.icon import load_icon_file
from .infrastructure.lnd.lnd_client import build_lnd_client
from .server import run_server

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y/%m/%d %H:%M:%S"


def configure_logging(level: int = logging.INFO) -> None:
    """Log to stderr with UTC timestamps."""
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    formatter.converter = time.gmtime
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="lnurlp-server",
        description="LNURL-pay / Lightning Address server",
    )
    parser.add_argument(
        "config",
        nargs="?",
        help="Path to the YAML config file (default: $LNURLP_CONFIG)",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    return parser.parse_args(argv)


async def serve(settings: Settings) -> None:
    """Assemble the service from settings and run the listeners."""
    icon_bytes = load_icon_file(settings.lnurl.icon_file)
    async with build_lnd_client(settings.lnd) as backend:
        pay_service = build_service(settings, backend, icon_bytes)
        app = create_app(pay_service)
        await run_server(app, settings.webserver)


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Main entry point for the LNURL-pay server."""
    args = parse_args(argv)
    configure_logging(logging.DEBUG if args.debug else logging.INFO)

    try:
        settings = get_settings(args.config)
    except ConfigurationError as e:
        logger.error("Error reading config file: %s", e)
        sys.exit(1)

    logger.info(
        "Serving %d lightning address(es) for %s",
        len(settings.lightning_address_usernames),
        settings.lnurl.url_authority,
    )

    try:
        asyncio.run(serve(settings))
    except (ConfigurationError, InvalidIconError) as e:
        logger.error("Error setting up server: %s", e)
        sys.exit(1)
    except ListenerError as e:
        logger.error("SERVER FATAL ERROR: %s", e)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Server stopped by user")


if __name__ == "__main__":
    main()
