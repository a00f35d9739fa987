"""Command-line interface for the pingcast application."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import pprint
from pathlib import Path
from typing import List, Optional

from .config import load_app_config
from .errors import ValidationError
from .runner import RunConfig, execute
from .server import serve
from .validation import validate_request

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Notify WebSub hubs and blog ping services about updated URLs."
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to the configuration XML file (default: configs/pingcast.xml if present).",
    )

    # Overrides for logging/debugging
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (e.g. DEBUG, INFO, WARNING). Overrides config.",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Optional path to a log file. Overrides config.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    ping = subparsers.add_parser("ping", help="Ping all services for up to five URLs.")
    ping.add_argument("urls", nargs="+", metavar="URL", help="URL that was updated.")
    ping.add_argument(
        "--service",
        action="append",
        dest="services",
        metavar="NAME",
        help="Only ping this service (repeatable).",
    )

    server = subparsers.add_parser("serve", help="Run the HTTP interface.")
    server.add_argument("--host", default=None, help="Interface to bind. Overrides config.")
    server.add_argument("--port", type=int, default=None, help="Port to bind. Overrides config.")

    return parser


def configure_logging(level_name: str, log_file: Optional[str] = None) -> None:
    """Initialise logging according to options."""
    log_level = getattr(logging, level_name.upper(), None)
    if not isinstance(log_level, int):
        raise ValueError(f"Unsupported log level: {level_name}")

    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    root_logger.setLevel(log_level)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    if log_file:
        log_path = Path(log_file)
        if log_path.parent and not log_path.parent.exists():
            log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
        logger.debug(
            "Logger initialised with level %s and file output to %s",
            level_name.upper(),
            log_path,
        )
    else:
        logger.debug(
            "Logger initialised with console output at level %s", level_name.upper()
        )


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        app_config = load_app_config(args.config)

        # CLI overrides config
        log_level = args.log_level or app_config.logging.level
        log_file = args.log_file or app_config.logging.file
        configure_logging(log_level, log_file)

        if args.command == "serve":
            serve(app_config, host=args.host, port=args.port)
            return 0

        config = RunConfig.from_app_config(app_config)
        logger.debug("Active Configuration:\n%s", pprint.pformat(dataclasses.asdict(config)))

        request = validate_request(
            {"urls": args.urls, "services": args.services},
            [s.name for s in config.services],
            max_urls=app_config.max_urls,
        )
        response = asyncio.run(execute(request, config))
    except ValidationError as exc:
        parser.error("; ".join(exc.reasons))
    except ValueError as exc:
        parser.error(str(exc))
    except (RuntimeError, FileNotFoundError) as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        logger.info("Stopped by user")
        return 0
    except Exception:  # noqa: BLE001
        logger.exception("Unexpected error during execution.")
        return 1

    print(json.dumps(response.to_dict(), indent=2, ensure_ascii=False))
    return 0 if response.success else 2
