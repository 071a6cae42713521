"""Command-line interface for vtebench.

Subcommands:
    vtebench run         Build two revisions and time them
    vtebench summarize   Recompute the summary of a samples CSV
    vtebench show        Display a saved run
    vtebench workload    Write the synthetic workload
    vtebench system      Print system characterization
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from vtebench import __version__
from vtebench.config import APPLICATIONS
from vtebench.errors import BenchError
from vtebench.logging import setup_logging


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """vtebench - A/B rendering benchmarks for VTE revisions."""


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


@main.command()
@click.argument("old_ref", required=False, default=None)
@click.argument("new_ref", required=False, default=None)
@click.option(
    "--profile",
    "profile_path",
    type=click.Path(exists=True, path_type=Path),
    help="YAML profile with default settings.",
)
@click.option(
    "--runs",
    type=int,
    default=None,
    envvar="RUNS",
    help="Timed runs per revision (default: 12).",
)
@click.option(
    "--app",
    type=click.Choice(sorted(APPLICATIONS)),
    default=None,
    envvar="APP",
    help="Test application to build and time (default: gtk3).",
)
@click.option(
    "--width", type=int, default=None, envvar="WIDTH", help="Terminal columns (default: 220)."
)
@click.option(
    "--height", type=int, default=None, envvar="HEIGHT", help="Terminal rows (default: 70)."
)
@click.option(
    "--lines",
    type=int,
    default=None,
    envvar="BENCH_LINES",
    help="Workload lines (default: 8000).",
)
@click.option(
    "--keep-worktrees/--no-keep-worktrees",
    default=None,
    envvar="KEEP_WORKTREES",
    help="Leave the temporary worktrees in place afterwards.",
)
@click.option(
    "--frame-debug/--no-frame-debug",
    default=None,
    envvar="FRAME_DEBUG",
    help="Capture GDK frame diagnostics into per-run logs.",
)
@click.option(
    "--local-subprojects/--no-local-subprojects",
    "use_local_subprojects",
    default=None,
    envvar="USE_LOCAL_SUBPROJECTS",
    help="Seed worktrees with this checkout's subprojects (default: on).",
)
@click.option(
    "--run-timeout",
    type=float,
    default=None,
    envvar="RUN_TIMEOUT",
    help="Per-run timeout in seconds (default: none).",
)
@click.option(
    "--out-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    envvar="BENCH_OUT_DIR",
    help="Output directory (default: <repo>/perf/out).",
)
@click.option(
    "--repo",
    "repo",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="VTE checkout (default: git toplevel of the current directory).",
)
@click.option("-v", "--verbose", is_flag=True, help="Show detailed output.")
@click.option("-q", "--quiet", is_flag=True, help="Only show errors.")
@click.option("--log-file", type=click.Path(dir_okay=False, path_type=Path), default=None)
def run(  # noqa: PLR0913
    old_ref: str | None,
    new_ref: str | None,
    profile_path: Path | None,
    runs: int | None,
    app: str | None,
    width: int | None,
    height: int | None,
    lines: int | None,
    keep_worktrees: bool | None,
    frame_debug: bool | None,
    use_local_subprojects: bool | None,
    run_timeout: float | None,
    out_dir: Path | None,
    repo: Path | None,
    verbose: bool,
    quiet: bool,
    log_file: Path | None,
) -> None:
    """Benchmark OLD_REF against NEW_REF.

    Both revisions are checked out as detached worktrees, built with
    meson/ninja and timed rendering the same workload under xvfb-run.
    OLD_REF defaults to 631e6cf86b05c61ca1792b1bba020f34f8d82dc2,
    NEW_REF to HEAD.

    \b
    Examples:
        vtebench run
        vtebench run 0.76.0 HEAD --runs 20 --app gtk4
        RUNS=5 FRAME_DEBUG=1 vtebench run main my-branch
    """
    from vtebench.config import config_from_profile, load_profile
    from vtebench.display import format_results
    from vtebench.provision import GitCheckout
    from vtebench.runner import BenchRunner

    setup_logging(verbose=verbose, quiet=quiet, log_file=log_file)

    try:
        repo_root = GitCheckout(repo or Path.cwd()).toplevel()
        profile_data = load_profile(profile_path) if profile_path else {}
        cli_overrides: dict[str, object] = {
            "old_ref": old_ref,
            "new_ref": new_ref,
            "runs": runs,
            "app": app,
            "width": width,
            "height": height,
            "lines": lines,
            "keep_worktrees": keep_worktrees,
            "frame_debug": frame_debug,
            "use_local_subprojects": use_local_subprojects,
            "run_timeout": run_timeout,
            "out_dir": out_dir,
            "repo_root": repo_root,
            "cli_args": sys.argv[1:],
        }
        config = config_from_profile(profile_data, cli_overrides=cli_overrides)
        outcome = BenchRunner(config).run()
    except (BenchError, ValueError, OSError) as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc
    except KeyboardInterrupt:
        click.echo("\nBenchmark interrupted.", err=True)
        raise SystemExit(130)  # noqa: B904

    click.echo()
    click.echo(format_results(outcome.stats))
    click.echo()
    click.echo(f"CSV:     {outcome.paths.csv}")
    click.echo(f"Summary: {outcome.paths.summary}")
    if config.frame_debug:
        click.echo(f"Frame logs: {outcome.paths.frame_log_glob}")


# ---------------------------------------------------------------------------
# summarize
# ---------------------------------------------------------------------------


@main.command()
@click.argument("csv_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also write the summary lines to this file.",
)
@click.option("--table", is_flag=True, help="Print the results table instead of summary lines.")
@click.option("--json", "as_json", is_flag=True, help="Print per-label statistics as JSON.")
def summarize(csv_path: Path, output: Path | None, table: bool, as_json: bool) -> None:
    """Summarize a samples CSV written by ``vtebench run``.

    Malformed rows are skipped.
    """
    from vtebench.display import format_results
    from vtebench.stats import format_summary, summarize_file, write_summary

    try:
        stats = summarize_file(csv_path)
    except (OSError, UnicodeDecodeError) as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    if as_json:
        click.echo(json.dumps([s.to_dict() for s in stats.values()], indent=2))
    elif table:
        click.echo(format_results(stats))
    else:
        click.echo(format_summary(stats), nl=False)
    if output is not None:
        write_summary(output, stats)


# ---------------------------------------------------------------------------
# show
# ---------------------------------------------------------------------------


@main.command()
@click.argument("meta_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def show(meta_path: Path) -> None:
    """Display a saved run from its ``zwj-ab-<stamp>.meta.json``.

    Statistics are recomputed from the samples CSV next to it; a run that
    failed before its first sample shows no results.
    """
    from vtebench.display import format_run_show
    from vtebench.results import OutputPaths, load_meta
    from vtebench.stats import summarize_file

    try:
        meta = load_meta(meta_path)
        csv_path = OutputPaths(out_dir=meta_path.parent, stamp=meta.stamp).csv
        stats = summarize_file(csv_path) if csv_path.exists() else {}
    except (OSError, ValueError, KeyError) as exc:
        # json.JSONDecodeError is a ValueError; a missing "stamp" a KeyError.
        click.echo(f"Error: cannot read {meta_path}: {exc}", err=True)
        raise SystemExit(1) from exc

    click.echo(format_run_show(meta, stats))


# ---------------------------------------------------------------------------
# workload
# ---------------------------------------------------------------------------


@main.command()
@click.option("--lines", type=int, default=8000, show_default=True, envvar="BENCH_LINES")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write to this file instead of stdout.",
)
def workload(lines: int, output: Path | None) -> None:
    """Write the synthetic grapheme workload."""
    from vtebench.workload import generate_workload, write_workload

    try:
        if output is not None:
            write_workload(output, lines)
            click.echo(f"Wrote {lines} lines to {output}")
        else:
            click.echo(generate_workload(lines), nl=False)
    except (ValueError, OSError) as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc


# ---------------------------------------------------------------------------
# system
# ---------------------------------------------------------------------------


@main.command("system")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def system_cmd(as_json: bool) -> None:
    """Print system characterization for benchmark documentation."""
    from vtebench.system import REQUIRED_TOOLS, capture_system_profile, format_system_profile

    profile = capture_system_profile(tools=list(REQUIRED_TOOLS))

    if as_json:
        click.echo(profile.to_json())
    else:
        click.echo(format_system_profile(profile))
