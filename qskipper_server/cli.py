"""Command-line interface for QSkipper MCP Server."""

import argparse
import asyncio
import logging

logger = logging.getLogger(__name__)


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="QSkipper MCP Server - Manage a QSkipper restaurant's menu and orders"
    )
    parser.add_argument(
        "--mode",
        choices=["stdio", "http"],
        default="stdio",
        help="Server mode: stdio (for MCP clients) or http (REST API)",
    )
    parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="HTTP server host (only for http mode, default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="HTTP server port (only for http mode, default: 8000)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        default=None,
        help="Logging level (default: QSKIPPER_LOG_LEVEL or INFO)",
    )

    args = parser.parse_args()

    from .config import Settings

    log_level = args.log_level or Settings.from_env().log_level
    logging.basicConfig(level=getattr(logging, log_level, logging.INFO))

    if args.mode == "stdio":
        # Run MCP server via stdio
        from .server import main as server_main

        asyncio.run(server_main())
    elif args.mode == "http":
        # Run HTTP server
        from .http_server import run_http_server

        logger.info(f"Starting QSkipper HTTP Server on {args.host}:{args.port}")
        logger.info(f"API documentation available at http://{args.host}:{args.port}/docs")
        run_http_server(host=args.host, port=args.port, log_level=log_level.lower())


if __name__ == "__main__":
    main()
