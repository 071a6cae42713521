"""Benchmark sample records and their on-disk formats.

Files produced per invocation (``<stamp>`` is ``%Y%m%d-%H%M%S``)::

    zwj-ab-<stamp>.csv          - label,run,elapsed_s; one row per run
    zwj-ab-<stamp>.summary.txt  - one line per label (see stats.format_summary)
    zwj-ab-<stamp>.meta.json    - RunMeta (refs, config, system profile)

The CSV is appended to one row at a time so that every recorded sample
survives an abort later in the run.
"""

from __future__ import annotations

import csv
import json
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from vtebench.logging import get_logger
from vtebench.system import SystemProfile

log = get_logger("results")

CSV_HEADER = ("label", "run", "elapsed_s")
FILE_PREFIX = "zwj-ab"


# ---------------------------------------------------------------------------
# Run sample
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RunSample:
    """One measured run of one revision."""

    label: str
    run: int  # 1-based, in execution order
    elapsed_s: float

    def __post_init__(self) -> None:
        if self.run < 1:
            raise ValueError(f"Run index must be >= 1 (got {self.run}).")
        if not self.elapsed_s >= 0:
            raise ValueError(f"Elapsed time must be non-negative (got {self.elapsed_s!r}).")

    def to_row(self) -> list[str]:
        """Serialize to a CSV row."""
        return [self.label, str(self.run), _format_elapsed(self.elapsed_s)]


def _format_elapsed(value: float) -> str:
    # GNU time reports centiseconds; keep what was measured, no trailing noise.
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return text or "0"


# ---------------------------------------------------------------------------
# Output paths
# ---------------------------------------------------------------------------


@dataclass
class OutputPaths:
    """All files one invocation may write, derived from a timestamp."""

    out_dir: Path
    stamp: str

    @property
    def base(self) -> str:
        return f"{FILE_PREFIX}-{self.stamp}"

    @property
    def csv(self) -> Path:
        return self.out_dir / f"{self.base}.csv"

    @property
    def summary(self) -> Path:
        return self.out_dir / f"{self.base}.summary.txt"

    @property
    def meta(self) -> Path:
        return self.out_dir / f"{self.base}.meta.json"

    def frame_log(self, label: str, run: int) -> Path:
        """Per-run frame diagnostics log."""
        return self.out_dir / f"{self.base}.{label}.run{run}.frames.log"

    @property
    def frame_log_glob(self) -> str:
        return str(self.out_dir / f"{self.base}.*.frames.log")


# ---------------------------------------------------------------------------
# Sample set writer / reader
# ---------------------------------------------------------------------------


class SampleWriter:
    """Append-only writer for the raw samples CSV.

    The header is written on construction (truncating any previous file).
    Each :meth:`append` opens, writes and closes the file, so a sample is
    on disk before the next run starts.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self.count = 0
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", newline="", encoding="utf-8") as f:
            csv.writer(f, lineterminator="\n").writerow(CSV_HEADER)

    def append(self, sample: RunSample) -> None:
        """Persist one sample."""
        with open(self.path, "a", newline="", encoding="utf-8") as f:
            csv.writer(f, lineterminator="\n").writerow(sample.to_row())
        self.count += 1
        log.debug("Recorded %s run %d: %s s", sample.label, sample.run, sample.elapsed_s)


def read_sample_rows(path: Path) -> Iterator[list[str]]:
    """Yield the raw data rows of a samples CSV, header skipped.

    Rows are returned unvalidated; see :func:`vtebench.stats.summarize`.
    """
    with open(path, newline="", encoding="utf-8") as f:
        reader = csv.reader(f)
        for lineno, row in enumerate(reader, start=1):
            if lineno == 1:
                continue
            yield row


# ---------------------------------------------------------------------------
# Run-level metadata
# ---------------------------------------------------------------------------


@dataclass
class RunMeta:
    """Metadata for one A/B invocation."""

    stamp: str
    old_ref: str = ""
    new_ref: str = ""
    labels: dict[str, str] = field(default_factory=dict)  # side -> label
    commits: dict[str, str] = field(default_factory=dict)  # side -> full sha
    application: str = ""
    config: dict[str, Any] = field(default_factory=dict)
    system: SystemProfile = field(default_factory=SystemProfile)
    cli_args: list[str] = field(default_factory=list)
    start_time: str = ""
    end_time: str = ""
    samples_recorded: int = 0
    status: str = "running"  # running, complete, failed

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "stamp": self.stamp,
            "old_ref": self.old_ref,
            "new_ref": self.new_ref,
            "labels": self.labels,
            "commits": self.commits,
            "application": self.application,
            "config": self.config,
            "system": self.system.to_dict(),
            "cli_args": self.cli_args,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "samples_recorded": self.samples_recorded,
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunMeta:
        """Deserialize from a dict."""
        meta = cls(stamp=data["stamp"])
        meta.old_ref = data.get("old_ref", "")
        meta.new_ref = data.get("new_ref", "")
        meta.labels = data.get("labels", {})
        meta.commits = data.get("commits", {})
        meta.application = data.get("application", "")
        meta.config = data.get("config", {})
        meta.system = SystemProfile.from_dict(data.get("system", {}))
        meta.cli_args = data.get("cli_args", [])
        meta.start_time = data.get("start_time", "")
        meta.end_time = data.get("end_time", "")
        meta.samples_recorded = data.get("samples_recorded", 0)
        meta.status = data.get("status", "running")
        return meta


def save_meta(path: Path, meta: RunMeta) -> None:
    """Write run metadata as indented JSON."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(meta.to_dict(), indent=2) + "\n", encoding="utf-8")
    log.debug("Wrote %s", path)


def load_meta(path: Path) -> RunMeta:
    """Load run metadata written by :func:`save_meta`."""
    if not path.exists():
        raise FileNotFoundError(f"No metadata file at {path}")
    return RunMeta.from_dict(json.loads(path.read_text(encoding="utf-8")))
