"""Logging setup for vtebench.

Progress goes to stderr so that stdout carries only command output
(``vtebench workload`` and ``vtebench summarize`` are meant to be piped).
A ``--log-file`` additionally receives every DEBUG record, including the
exact command line of each git, meson, ninja and xvfb-run invocation.
"""

from __future__ import annotations

import logging
import shlex
import sys
from collections.abc import Sequence
from pathlib import Path

_LOGGER_NAME = "vtebench"
_FILE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
_CONSOLE_FORMAT = "%(asctime)s %(message)s"
_CONSOLE_DATEFMT = "%H:%M:%S"


def setup_logging(
    *,
    verbose: bool = False,
    quiet: bool = False,
    log_file: Path | None = None,
) -> logging.Logger:
    """Configure and return the root vtebench logger.

    Args:
        verbose: Console shows DEBUG records (command lines, skipped rows).
        quiet: Console shows warnings and errors only. Ignored if *verbose*.
        log_file: Append everything at DEBUG level to this file.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    if verbose:
        console.setLevel(logging.DEBUG)
    elif quiet:
        console.setLevel(logging.WARNING)
    else:
        console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter(_CONSOLE_FORMAT, datefmt=_CONSOLE_DATEFMT))
    logger.addHandler(console)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(_FILE_FORMAT))
        logger.addHandler(fh)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a named child logger under the vtebench namespace."""
    return logging.getLogger(f"{_LOGGER_NAME}.{name}")


def log_command(
    logger: logging.Logger, command: Sequence[str], cwd: Path | None = None
) -> None:
    """Log an external command line at DEBUG, shell-quoted so it can be re-run."""
    if not logger.isEnabledFor(logging.DEBUG):
        return
    line = shlex.join(str(part) for part in command)
    if cwd is not None:
        line = f"(cd {shlex.quote(str(cwd))} && {line})"
    logger.debug("Running: %s", line)
