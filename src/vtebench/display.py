"""Terminal display formatting for benchmark results.

Produces the aligned results table printed after a run and by
``vtebench summarize``, and the saved-run view of ``vtebench show``.
"""

from __future__ import annotations

import math

from vtebench.results import FILE_PREFIX, RunMeta
from vtebench.stats import LabelStats
from vtebench.system import format_system_profile


# ---------------------------------------------------------------------------
# Formatting utilities
# ---------------------------------------------------------------------------


def _format_pct(value: float, precision: int = 1) -> str:
    """Format a percentage with sign."""
    if math.isnan(value):
        return "N/A"
    sign = "+" if value >= 0 else ""
    return f"{sign}{value:.{precision}f}%"


def _side(label: str) -> str:
    return label.split("-", 1)[0]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


def format_results_table(stats: dict[str, LabelStats]) -> str:
    """Format per-label statistics as an aligned table, sorted by label."""
    header = f"{'Label':<24s} {'Runs':>5s} {'Mean (s)':>10s} {'SD (s)':>10s} {'CV':>7s}"
    lines = [header, "\u2500" * len(header)]
    for label in sorted(stats):
        s = stats[label]
        cv = s.stdev / s.mean if s.mean > 0 else float("nan")
        cv_str = "N/A" if math.isnan(cv) else f"{cv:.3f}"
        lines.append(f"{label:<24s} {s.count:>5d} {s.mean:>10.4f} {s.stdev:>10.4f} {cv_str:>7s}")
    return "\n".join(lines)


def mean_change_pct(old: LabelStats, new: LabelStats) -> float:
    """Relative change of the new mean against the old mean, in percent.

    Negative means the new revision is faster.  NaN when the old mean
    is zero.
    """
    if old.mean <= 0:
        return float("nan")
    return (new.mean - old.mean) / old.mean * 100


def format_comparison(stats: dict[str, LabelStats]) -> str:
    """One line comparing the new label's mean with the old label's.

    Returns an empty string unless exactly one ``old-`` and one ``new-``
    label are present.
    """
    olds = [s for label, s in stats.items() if _side(label) == "old"]
    news = [s for label, s in stats.items() if _side(label) == "new"]
    if len(olds) != 1 or len(news) != 1:
        return ""
    old, new = olds[0], news[0]
    pct = mean_change_pct(old, new)
    if math.isnan(pct):
        verdict = ""
    elif pct < 0:
        verdict = " (faster)"
    elif pct > 0:
        verdict = " (slower)"
    else:
        verdict = " (unchanged)"
    return (
        f"{new.label} vs {old.label}: {_format_pct(pct)}{verdict} "
        f"({old.mean:.4f}s \u2192 {new.mean:.4f}s)"
    )


def format_results(stats: dict[str, LabelStats]) -> str:
    """The table plus, when both sides are present, the comparison line."""
    if not stats:
        return "No valid samples."
    text = format_results_table(stats)
    comparison = format_comparison(stats)
    if comparison:
        text += "\n\n" + comparison
    return text


# ---------------------------------------------------------------------------
# Saved runs
# ---------------------------------------------------------------------------


def format_run_show(meta: RunMeta, stats: dict[str, LabelStats]) -> str:
    """Format a saved run: header, system profile, then the results.

    Args:
        meta: Metadata loaded from the run's ``.meta.json``.
        stats: Statistics recomputed from the run's samples CSV.
    """
    title = f"{FILE_PREFIX}-{meta.stamp} ({meta.status})"
    lines = [title, "\u2500" * len(title)]
    for side, ref in (("old", meta.old_ref), ("new", meta.new_ref)):
        commit = meta.commits.get(side, "")
        label = meta.labels.get(side, "")
        detail = f"{label} {commit}".strip() or "not provisioned"
        lines.append(f"{side.capitalize()}: {ref} \u2192 {detail}")
    if meta.application:
        lines.append(f"Application: {meta.application}")
    runs = meta.config.get("runs")
    lines.append(f"Samples: {meta.samples_recorded} recorded ({runs or '?'} runs per side)")
    if meta.start_time and meta.end_time:
        lines.append(f"Time: {meta.start_time} \u2192 {meta.end_time}")
    lines.append("")
    lines.append(format_system_profile(meta.system))
    lines.append("")
    lines.append(format_results(stats))
    return "\n".join(lines)
