"""Command-line entry point that starts the HTTP service.

WHY: Operators run the service as ``python -m audio_converter`` or via
the ``audio-converter-api`` console script, sometimes overriding the
address or storage directory without editing .env.

HOW: argparse reads the overrides, logging is configured, and uvicorn
serves an app built by create_app() from the resulting ServiceConfig.

RULES:
- Flags override environment values; environment overrides defaults
- Logging goes to stderr at INFO (DEBUG with --verbose)
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Optional

from audio_converter.config import HOST, PORT, ServiceConfig

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the service launcher."""
    parser = argparse.ArgumentParser(
        prog="audio-converter-api",
        description="Serve the audio conversion API (URL in, mp3/wav/aac out).",
    )
    parser.add_argument("--host", default=HOST, help="Interface to bind (default: %(default)s)")
    parser.add_argument("--port", type=int, default=PORT, help="Port to listen on (default: %(default)s)")
    parser.add_argument(
        "--upload-dir",
        type=Path,
        default=None,
        help="Directory for temporary input/output files (default: UPLOAD_DIR or the system temp dir)",
    )
    parser.add_argument(
        "--retention",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Delete files older than this many seconds",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    config = ServiceConfig.from_env()
    if args.upload_dir is not None:
        config.upload_dir = args.upload_dir
    if args.retention is not None:
        config.retention_seconds = args.retention

    from audio_converter.server.app import run_api

    logger.info("Audio conversion API running on port %d", args.port)
    run_api(host=args.host, port=args.port, config=config)
