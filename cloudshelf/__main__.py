"""
`cloudshelf` console script. Runs the Typer app and turns whatever escapes it
into an error panel and a process exit code.
"""

import asyncio
import logging
import os
import sys

import typer
from rich.console import Console

from cloudshelf.cli.app import app
from cloudshelf.cli.formatters import format_error_with_suggestions
from cloudshelf.exceptions import CloudShelfError

log = logging.getLogger("cloudshelf")


def _use_utf8_streams() -> None:
    # Track titles and Rich glyphs break the default Windows code page
    for stream in (sys.stdout, sys.stderr):
        reconfigure = getattr(stream, "reconfigure", None)
        if reconfigure is not None:
            reconfigure(encoding="utf-8")


def _fail(console: Console, error: Exception, context: dict | None = None) -> None:
    console.print()
    console.print(format_error_with_suggestions(error, context))
    sys.exit(1)


def main() -> None:
    """Exit codes: 0 on success or interrupt, 1 on any failure."""
    if os.name == "nt":
        _use_utf8_streams()

    console = Console()
    try:
        app()
    except (typer.Exit, typer.Abort):
        pass
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("\n[yellow]Interrupted; in-flight downloads were abandoned.[/yellow]")
        sys.exit(0)
    except CloudShelfError as e:
        _fail(console, e)
    except Exception as e:
        log.debug("Unhandled error", exc_info=True)
        _fail(console, e, {"type": "Unexpected"})


if __name__ == "__main__":
    main()
