"""
Command-line entry point: ``python -m bizdash`` or ``bizdash``.
"""

from __future__ import annotations

import asyncio

from bizdash.config import load_config
from bizdash.logging import setup_logging
from bizdash.server import create_server


def main(argv: list[str] | None = None) -> int:
    """Load configuration, set up logging and serve JSON-RPC on stdio."""
    config = load_config(cli_args=argv)
    setup_logging(config.logging)
    server = create_server(config)
    try:
        asyncio.run(server.run())
    except KeyboardInterrupt:
        server.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
