"""
FIX Terminal Client

This module implements the command line entry point: it loads the
configuration, reads the optional input script, opens the session and
hands control to the console.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from ..utils.logging import configure_debug_logging, setup_logger, silence_external_loggers
from .config import Settings, load_settings
from .console import TerminalClient
from .exceptions import ConfigurationError, ConnectionError


logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1


def read_script(filename: str) -> List[str]:
    """
    Read an input script, one command per line.

    Raises:
        FileNotFoundError: If the file does not exist
        UnicodeDecodeError: If the file is not valid UTF-8
    """
    return Path(filename).read_text(encoding="utf-8").splitlines()


def run(settings: Settings, lines: Sequence[str], record_dir: Optional[str] = None) -> None:
    """Open the session described by the settings and run the console."""
    address = settings.resolve_address()
    client = TerminalClient.open(address, settings.to_fix_config())
    try:
        client.run(lines)
    finally:
        if record_dir:
            transcript = client.messages.save_transcript(record_dir)
            logger.info(f"Transcript saved to: {transcript}")

            summary = client.messages.get_summary()
            logger.info(f"Session summary: {summary}")


def error(e: Exception) -> int:
    print(f"error: {e}", file=sys.stderr)
    return EXIT_FAILURE


def fatal(e: Exception) -> int:
    print(f"fatal: {e}", file=sys.stderr)
    logger.error("Unexpected I/O error", exc_info=e)
    return EXIT_FAILURE


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for the FIX terminal client."""
    parser = argparse.ArgumentParser(prog="fix-client", description="FIX Terminal Client")
    parser.add_argument("config", metavar="configuration-file", help="YAML configuration file")
    parser.add_argument("script", metavar="input-file", nargs="?", help="Commands to run before reading the terminal")
    parser.add_argument("--record", metavar="DIR", help="Save a JSON transcript of the session into DIR")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    args = parser.parse_args(argv)

    setup_logger("src", level=logging.WARNING)
    silence_external_loggers()
    if args.verbose:
        configure_debug_logging()

    try:
        settings = load_settings(args.config)

        lines: List[str] = []
        if args.script:
            lines = read_script(args.script)

        run(settings, lines, args.record)
        return EXIT_SUCCESS

    except (ConfigurationError, FileNotFoundError) as e:
        return error(e)
    except (ConnectionError, OSError, UnicodeDecodeError) as e:
        return fatal(e)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
