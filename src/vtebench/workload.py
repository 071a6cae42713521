"""Synthetic rendering workload.

Every line mixes the cluster shapes the shaping code has to get right:
a family ZWJ sequence, a regional-indicator flag, a rainbow flag (emoji
presentation selector plus ZWJ), a skin-tone modified ZWJ sequence, a
decomposed Latin letter with a combining acute, Devanagari with vowel
signs, and precomposed Hangul.
"""

from __future__ import annotations

from pathlib import Path

_ZWJ = "\u200d"

_FAMILY = _ZWJ.join(["\U0001f468", "\U0001f469", "\U0001f467", "\U0001f466"])
_US_FLAG = "\U0001f1fa\U0001f1f8"
_RAINBOW_FLAG = "\U0001f3f3\ufe0f" + _ZWJ + "\U0001f308"
_TECHNOLOGIST = "\U0001f9d1\U0001f3fd" + _ZWJ + "\U0001f4bb"
_CAFE = "cafe\u0301"
_DEVANAGARI = "\u0926\u0947\u0935\u0928\u093e\u0917\u0930\u0940"
_HANGUL = "\ud55c\uae00"

WORKLOAD_LINE = (
    f"{_FAMILY} {_US_FLAG}{_RAINBOW_FLAG} {_TECHNOLOGIST} {_CAFE} {_DEVANAGARI} {_HANGUL}\n"
)


def workload_line() -> str:
    return WORKLOAD_LINE


def generate_workload(lines: int) -> str:
    """Return the workload text: ``lines`` copies of :data:`WORKLOAD_LINE`.

    Raises:
        ValueError: If *lines* is not a positive integer.
    """
    if isinstance(lines, bool) or not isinstance(lines, int) or lines < 1:
        raise ValueError(f"Workload line count must be a positive integer (got {lines!r}).")
    return workload_line() * lines


def write_workload(path: Path, lines: int) -> Path:
    """Write the workload to *path* as UTF-8 and return the path."""
    path.write_bytes(generate_workload(lines).encode("utf-8"))
    return path
