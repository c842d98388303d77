"""
Exit Codes and Error Reporting for cc2538-bsl
=============================================

Every command funnels failures through handle_cli_exception(), which
prints one line to stderr (plus a hint for the common bootloader
failures) and exits with a code from ExitCode.
"""

import sys
import traceback
from enum import IntEnum
from typing import NoReturn, Optional

import click

from cc2538_bsl.errors import (
    BslError,
    ChunkFlashFailure,
    NakError,
    TimeoutError,
)


class ExitCode(IntEnum):
    """Process exit codes."""
    SUCCESS = 0
    DEVICE_ERROR = 1     # Port, protocol or flashing failure
    INVALID_ARGS = 2     # Bad option value or unreadable input file
    INTERNAL_ERROR = 3   # Bug


# Extra line printed after the error message, first match wins
_HINTS: tuple[tuple[type, str], ...] = (
    (TimeoutError, "Is the chip in bootloader mode? Check the backdoor pin and reset it."),
    (NakError, "The bootloader rejected the command; check the address range."),
    (ChunkFlashFailure, "Erase the target range before writing (--erase)."),
)


def _hint_for(error: BslError) -> Optional[str]:
    for error_class, hint in _HINTS:
        if isinstance(error, error_class):
            return hint
    return None


def handle_cli_exception(
    error: Exception,
    verbose: bool = False,
    error_type: Optional[str] = None,
) -> NoReturn:
    """
    Report error and exit.

    Args:
        error: The exception a command caught.
        verbose: Print the traceback for unexpected errors.
        error_type: Operation name used as message prefix ("Flash").

    Raises:
        SystemExit: Always.
    """
    if isinstance(error, BslError):
        label = f"{error_type} failed" if error_type else "Error"
        click.echo(f"{label}: {error}", err=True)
        hint = _hint_for(error)
        if hint:
            click.echo(f"Hint: {hint}", err=True)
        sys.exit(ExitCode.DEVICE_ERROR)

    if isinstance(error, (click.BadParameter, ValueError, OSError)):
        click.echo(f"Invalid input: {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    click.echo(f"Internal error: {type(error).__name__}: {error}", err=True)
    if verbose:
        traceback.print_exc()
    sys.exit(ExitCode.INTERNAL_ERROR)
