"""Aggregation of raw samples into per-label statistics.

Descriptive only: count, arithmetic mean and the
Bessel-corrected sample standard deviation.  Rows are re-validated here
so that a samples file can be summarized on its own, including files
that were cut short or written by older versions of the tool.
"""

from __future__ import annotations

import math
import re
import statistics
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

from vtebench.logging import get_logger
from vtebench.results import read_sample_rows
from vtebench.timing import is_elapsed

log = get_logger("stats")

_LABEL_RE = re.compile(r"^(old|new)-")


# ---------------------------------------------------------------------------
# LabelStats
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LabelStats:
    """Summary statistics for one label."""

    label: str
    count: int
    mean: float
    stdev: float

    def to_dict(self) -> dict[str, float | int | str]:
        """Serialize to a dict with rounded values."""
        return {
            "label": self.label,
            "count": self.count,
            "mean": round(self.mean, 6),
            "stdev": round(self.stdev, 6),
        }


def sample_stdev(values: Sequence[float]) -> float:
    """Unbiased (n-1) standard deviation; exactly 0.0 when n <= 1."""
    if len(values) <= 1:
        return 0.0
    sd = statistics.stdev(values)
    if math.isnan(sd) or sd <= 0:
        return 0.0
    return sd


def describe(label: str, values: Sequence[float]) -> LabelStats:
    """Compute :class:`LabelStats` for a non-empty list of values."""
    if not values:
        raise ValueError(f"No samples for label '{label}'.")
    return LabelStats(
        label=label,
        count=len(values),
        mean=statistics.fmean(values),
        stdev=sample_stdev(values),
    )


# ---------------------------------------------------------------------------
# Row validation and summarizing
# ---------------------------------------------------------------------------


def valid_row(row: Sequence[str]) -> bool:
    """True if *row* has a side-prefixed label and a numeric elapsed field."""
    if len(row) < 3:
        return False
    return bool(_LABEL_RE.match(row[0])) and is_elapsed(row[2])


def summarize(rows: Iterable[Sequence[str]]) -> dict[str, LabelStats]:
    """Reduce raw sample rows to per-label statistics.

    Malformed rows (too few fields, unexpected label, non-numeric
    elapsed such as ``NaN``) are skipped.  Labels are returned in
    sorted order.
    """
    grouped: dict[str, list[float]] = {}
    skipped = 0
    for row in rows:
        if not valid_row(row):
            skipped += 1
            log.debug("Skipping malformed sample row: %r", list(row))
            continue
        grouped.setdefault(row[0], []).append(float(row[2]))
    if skipped:
        log.debug("Skipped %d malformed row(s)", skipped)
    return {label: describe(label, grouped[label]) for label in sorted(grouped)}


# ---------------------------------------------------------------------------
# Summary rendering
# ---------------------------------------------------------------------------


def format_summary_line(stats: LabelStats) -> str:
    return f"{stats.label} runs={stats.count} mean={stats.mean:.4f}s sd={stats.stdev:.4f}s"


def format_summary(stats: dict[str, LabelStats]) -> str:
    """Render one line per label, sorted lexicographically by label."""
    lines = [format_summary_line(stats[label]) for label in sorted(stats)]
    return "".join(line + "\n" for line in lines)


def write_summary(path: Path, stats: dict[str, LabelStats]) -> Path:
    """Write the summary text to *path* and return it."""
    path.write_text(format_summary(stats), encoding="utf-8")
    return path


def summarize_file(csv_path: Path) -> dict[str, LabelStats]:
    """Summarize a persisted samples CSV."""
    return summarize(read_sample_rows(csv_path))
