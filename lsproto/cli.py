"""Command line entry point: print information or serve over standard streams."""

from __future__ import annotations

import logging
import sys
from importlib.metadata import PackageNotFoundError, version
from typing import List, Optional

from .server import run_server

_HELP = """
    --version or -V to print the version and commit info
    --help or -h for this message
    No input starts the server as a language server
    """


def help_text() -> str:
    """The text describing the supported arguments."""
    return _HELP


def _version() -> str:
    try:
        return version("lsproto")
    except PackageNotFoundError:
        return "unknown"


def main(argv: Optional[List[str]] = None) -> int:
    """Parse arguments, then print information or run the server; return the exit code."""
    args = sys.argv[1:] if argv is None else list(argv)

    if args:
        first = args[0]
        if first in ("--version", "-V"):
            print(_version())
            return 0
        if first in ("--help", "-h"):
            print(help_text())
            return 0
        print(f"Unknown argument '{first}'. Supported arguments:\n{help_text()}")
        return 101

    logging.basicConfig(level=logging.WARNING, stream=sys.stderr)
    return run_server()


if __name__ == "__main__":
    sys.exit(main())