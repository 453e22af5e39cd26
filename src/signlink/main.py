"""
SignLink entry point.

Run:
    signlink                   # host: glove on serial, waits for a controller
    signlink --target 4821     # client: controller for host 4821
    signlink --no-device       # no serial input
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import replace
from typing import Optional, Sequence

import uvicorn

from signlink.core.config import SignLinkConfig
from signlink.core.logging import setup_logging
from signlink.http.app import create_app
from signlink.runtime import SignLinkRuntime

logger = logging.getLogger("signlink")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="signlink",
        description="Bridge a sign-translation glove and a remote controller into one message stream.",
    )
    parser.add_argument(
        "--target",
        metavar="ID",
        help="host identity to connect to (runs as client); omit to host",
    )
    parser.add_argument("--host", help="HTTP bind address (default: SIGNLINK_HOST)")
    parser.add_argument("--port", type=int, help="HTTP port (default: SIGNLINK_PORT)")
    parser.add_argument(
        "--no-device",
        action="store_true",
        help="do not open the serial device",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    setup_logging()

    config = SignLinkConfig.from_env()
    server = config.server
    if args.host:
        server = replace(server, host=args.host)
    if args.port:
        server = replace(server, port=args.port)
    config = replace(config, server=server)

    runtime = SignLinkRuntime(
        config,
        target=args.target,
        use_device=not args.no_device,
    )
    app = create_app(runtime)

    logger.info(f"Serving on http://{server.host}:{server.port}")
    uvicorn.run(app, host=server.host, port=server.port, log_config=None)


if __name__ == "__main__":
    main()
