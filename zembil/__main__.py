"""
Console entry point for ``zembil`` and ``python -m zembil``.

Runs the typer app and turns anything that escapes a command into a short
message and an exit status: 1 for cache, queue or upstream errors, 130 when a
sync is interrupted. Queue state is persisted per item, so an interrupted sync
picks up where it stopped on the next run.
"""

import asyncio
import logging
import os
import sys

import typer
from rich.console import Console

from zembil.cli.app import app
from zembil.cli.formatters import format_error_with_suggestions
from zembil.exceptions import ZembilError

EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def _force_utf8_streams() -> None:
    # Package names and rich markup are not always representable in a Windows code page.
    for stream in (sys.stdout, sys.stderr):
        try:
            stream.reconfigure(encoding="utf-8")
        except (TypeError, AttributeError):
            pass


def main() -> None:
    if os.name == "nt":
        _force_utf8_streams()

    log = logging.getLogger("zembil")
    console = Console(stderr=True)

    try:
        app()
    except (typer.Exit, typer.Abort):
        pass
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print(
            "\n[yellow]Interrupted.[/yellow] Pending packages stay queued; "
            "run [bold]zembil sync[/bold] to resume."
        )
        sys.exit(EXIT_INTERRUPTED)
    except ZembilError as e:
        console.print()
        console.print(format_error_with_suggestions(e))
        sys.exit(EXIT_FAILURE)
    except Exception as e:
        console.print()
        console.print(format_error_with_suggestions(e, {"type": "Unexpected"}))
        log.debug("Unhandled error in zembil command", exc_info=True)
        sys.exit(EXIT_FAILURE)


if __name__ == "__main__":
    main()
