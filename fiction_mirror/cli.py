"""
Command line entry point.

Usage:
    fiction-mirror <url>                         # Mirror a fiction
    fiction-mirror <url> -i                      # Only fetch what is new
    fiction-mirror <url> -p ./out -c 2 -t 1000   # Custom output and limits
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from fiction_mirror import __version__
from fiction_mirror.config import Settings, settings as default_settings
from fiction_mirror.exceptions import ConfigError, FictionMirrorError
from fiction_mirror.sync import FictionSync

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fiction-mirror",
        description=(
            "Incremental periodic downloader for serialized fiction. Useful on slow "
            "connections, going offline, or because online content has a tendency to disappear."
        ),
    )
    parser.add_argument(
        "url",
        help="The main page (table of contents) of the fiction to download",
    )
    parser.add_argument(
        "-p", "--path",
        type=Path,
        default=None,
        help="Output directory (default: derived from the fiction title)",
    )
    parser.add_argument(
        "-t", "--time-limit",
        type=int,
        default=settings.time_limit_ms,
        help=f"Minimum ms between requests, can't be zero (default: {settings.time_limit_ms})",
    )
    parser.add_argument(
        "-c", "--connections",
        type=int,
        default=settings.connections,
        help=f"Concurrent connections limit, zero means no limit (default: {settings.connections})",
    )
    parser.add_argument(
        "-i", "--incremental",
        action="store_true",
        help="Only download chapters not already in the archive",
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help=f"Logging verbosity (default: {settings.log_level})",
    )
    parser.add_argument(
        "-V", "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser(default_settings)
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    run_settings = default_settings.model_copy(update={
        'time_limit_ms': args.time_limit,
        'connections': args.connections,
        'log_level': args.log_level,
    })

    try:
        run_settings.validate_limits()
        sync = FictionSync(
            args.url,
            run_settings,
            output_dir=args.path,
            incremental=args.incremental,
        )
        report = asyncio.run(sync.run())
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_CONFIG
    except FictionMirrorError as e:
        logger.error(f"Run aborted: {e}")
        return EXIT_FAILURE
    except KeyboardInterrupt:
        logger.info("Interrupted, archive left at last committed chapter")
        return EXIT_INTERRUPTED

    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
