"""Benchmark execution engine.

Orchestrates:
1. Configuration validation and tool/working-tree preflight
2. Workload generation
3. Provisioning of the old tree, then the new tree
4. Timed runs, all of the old label then all of the new label
5. Incremental sample writing and the final summary

Everything is sequential and blocking: one build or one timed process
at a time, so the measurement never competes with other work started
by this tool.  Temporary trees are torn down in a single ``finally``
that covers every exit path, including Ctrl-C.
"""

from __future__ import annotations

import os
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from vtebench.config import BenchConfig, check_config
from vtebench.errors import MeasurementError
from vtebench.logging import get_logger
from vtebench.provision import (
    BuildPolicy,
    Environment,
    GitCheckout,
    MesonBuild,
    Provisioner,
)
from vtebench.results import (
    OutputPaths,
    RunMeta,
    RunSample,
    SampleWriter,
    save_meta,
)
from vtebench.stats import LabelStats, summarize_file, write_summary
from vtebench.system import REQUIRED_TOOLS, capture_system_profile, require_tools
from vtebench.timing import XvfbLauncher, parse_elapsed
from vtebench.workload import write_workload

log = get_logger("runner")


# ---------------------------------------------------------------------------
# Progress callback
# ---------------------------------------------------------------------------


@dataclass
class BenchProgress:
    """Progress info passed to the callback after each run."""

    label: str
    run: int  # 1-based
    total_runs: int
    elapsed_s: float
    exit_code: int


ProgressCallback = Callable[[BenchProgress], None]


def _default_progress(progress: BenchProgress) -> None:
    """Default progress callback: log one line per run."""
    line = (
        f"  {progress.label:20s} {progress.run:>3}/{progress.total_runs} "
        f"{progress.elapsed_s:8.2f}s"
    )
    if progress.exit_code != 0:
        line += f" [exit {progress.exit_code}]"
    log.info(line)


# ---------------------------------------------------------------------------
# Timed run executor
# ---------------------------------------------------------------------------


def run_all(
    label: str,
    binary: Path,
    runs: int,
    *,
    launcher: Any,
    workload: Path,
    geometry: tuple[int, int],
    writer: SampleWriter,
    frame_log_for: Callable[[str, int], Path] | None = None,
    timeout: float | None = None,
    progress: ProgressCallback | None = None,
) -> list[RunSample]:
    """Time *runs* launches of *binary* and append one sample per run.

    The application's own exit code is reported but does not decide
    success: an app that exits non-zero after consuming the workload
    still produced a valid measurement.  Only a missing or malformed
    elapsed value (or a timeout) is fatal.

    Args:
        label: Sample label, e.g. ``old-631e6cf``.
        binary: Application to launch.
        runs: Number of runs (>= 1).
        launcher: Object with ``run(binary, geometry, workload, *,
            frame_log, timeout)`` returning a :class:`~vtebench.timing.TimedRun`.
        workload: Workload file replayed into the terminal.
        geometry: (columns, rows).
        writer: Destination for samples; each is persisted immediately.
        frame_log_for: When given, ``(label, run) -> path`` for the
            per-run frame diagnostics log.
        timeout: Optional per-run timeout in seconds.
        progress: Called after every recorded sample.

    Returns:
        The samples recorded for this label, in run order.

    Raises:
        MeasurementError: On the first run without a valid elapsed time.
    """
    if runs < 1:
        raise ValueError(f"runs must be >= 1 (got {runs})")
    report = progress or _default_progress
    samples: list[RunSample] = []

    for run in range(1, runs + 1):
        frame_log = frame_log_for(label, run) if frame_log_for else None
        timed = launcher.run(binary, geometry, workload, frame_log=frame_log, timeout=timeout)

        if timed.timed_out:
            raise MeasurementError(
                label, run, f"Benchmark run exceeded {timeout}s timeout", log_path=frame_log
            )
        if not timed.has_timing:
            raise MeasurementError(
                label,
                run,
                f"Benchmark run failed to produce timing output (rc={timed.exit_code})",
                log_path=frame_log,
            )
        try:
            elapsed = parse_elapsed(timed.elapsed_text)
        except ValueError as exc:
            raise MeasurementError(
                label, run, f"{exc} (rc={timed.exit_code})", log_path=frame_log
            ) from exc

        if timed.exit_code != 0:
            log.debug("%s run %d: application exited %d", label, run, timed.exit_code)

        sample = RunSample(label=label, run=run, elapsed_s=elapsed)
        writer.append(sample)
        samples.append(sample)
        report(
            BenchProgress(
                label=label,
                run=run,
                total_runs=runs,
                elapsed_s=elapsed,
                exit_code=timed.exit_code,
            )
        )

    return samples


# ---------------------------------------------------------------------------
# BenchOutcome
# ---------------------------------------------------------------------------


@dataclass
class BenchOutcome:
    """What a completed invocation produced."""

    paths: OutputPaths
    stats: dict[str, LabelStats]
    samples: list[RunSample] = field(default_factory=list)
    environments: list[Environment] = field(default_factory=list)
    meta: RunMeta | None = None

    def label_for(self, side: str) -> str | None:
        for env in self.environments:
            if env.side == side:
                return env.label
        return None


# ---------------------------------------------------------------------------
# BenchRunner
# ---------------------------------------------------------------------------


class BenchRunner:
    """Executes one A/B benchmark according to a BenchConfig.

    Usage::

        config = BenchConfig(old_ref="v0.76.0", new_ref="HEAD", runs=12)
        outcome = BenchRunner(config).run()

    Collaborators default to the real tools and can be replaced, e.g.
    in tests.
    """

    def __init__(
        self,
        config: BenchConfig,
        *,
        checkout: GitCheckout | None = None,
        builder: MesonBuild | None = None,
        launcher: Any = None,
        progress_callback: ProgressCallback | None = None,
        check_tools: bool = True,
    ) -> None:
        self.config = config
        self.checkout = checkout or GitCheckout(config.repo_root)
        self.builder = builder or MesonBuild()
        self.launcher = launcher or XvfbLauncher()
        self.progress = progress_callback or _default_progress
        self.check_tools = check_tools

    def preflight(self) -> None:
        """Validate configuration and preconditions before creating anything.

        Raises:
            ValueError: Invalid configuration.
            PreconditionError: Missing tool or dirty working tree.
        """
        check_config(self.config)
        if self.check_tools:
            require_tools(time_binary=getattr(self.launcher, "time_binary", None))
        self.checkout.require_clean()

    def make_provisioner(self) -> Provisioner:
        seed_from = None
        if self.config.use_local_subprojects:
            seed_from = self.config.repo_root / "subprojects"
        return Provisioner(
            self.checkout,
            self.builder,
            BuildPolicy(
                app_target=self.config.app_target,
                prerequisite_targets=list(self.config.prerequisite_targets),
            ),
            build_dir_name=self.config.build_dir_name,
            seed_from=seed_from,
            seed_subprojects=list(self.config.seed_subprojects),
        )

    def run(self) -> BenchOutcome:
        """Execute the full benchmark.

        Raises:
            ValueError: If configuration is invalid.
            PreconditionError: Missing tool or dirty working tree.
            ProvisionError: Checkout, configure or build failed on either side.
            MeasurementError: A run produced no valid elapsed time.
        """
        config = self.config

        # Phase 1: Preflight.  Nothing is created if this fails.
        self.preflight()

        # Phase 2: Output files and metadata.
        paths = OutputPaths(out_dir=config.output_dir, stamp=config.stamp)
        paths.out_dir.mkdir(parents=True, exist_ok=True)
        meta = RunMeta(
            stamp=config.stamp,
            old_ref=config.old_ref,
            new_ref=config.new_ref,
            application=config.app,
            config=config.to_dict(),
            system=capture_system_profile(tools=list(REQUIRED_TOOLS)),
            cli_args=config.cli_args,
            start_time=time.strftime("%Y-%m-%dT%H:%M:%S%z"),
        )

        tmp_parent = config.tmp_parent or Path(os.environ.get("TMPDIR", tempfile.gettempdir()))
        tmp_base = Path(tempfile.mkdtemp(prefix="vte-bench-ab.", dir=str(tmp_parent)))
        provisioner = self.make_provisioner()
        environments: list[Environment] = []
        samples: list[RunSample] = []

        try:
            # Phase 3: Workload.
            workload = tmp_base / "workload.txt"
            log.info("Creating workload (%d lines)...", config.lines)
            write_workload(workload, config.lines)

            # Phase 4: Provision old fully, then new.
            for side, ref in (("old", config.old_ref), ("new", config.new_ref)):
                env = provisioner.provision(side, ref, tmp_base / side)
                environments.append(env)
                meta.labels[side] = env.label
                meta.commits[side] = env.commit

            # Phase 5: Timed runs.
            writer = SampleWriter(paths.csv)
            frame_log_for = paths.frame_log if config.frame_debug else None
            for env in environments:
                assert env.binary is not None
                log.info("Running %s (%s)...", env.side.upper(), env.short_commit)
                try:
                    samples.extend(
                        run_all(
                            env.label,
                            env.binary,
                            config.runs,
                            launcher=self.launcher,
                            workload=workload,
                            geometry=config.geometry,
                            writer=writer,
                            frame_log_for=frame_log_for,
                            timeout=config.run_timeout,
                            progress=self.progress,
                        )
                    )
                finally:
                    meta.samples_recorded = writer.count

            # Phase 6: Summary, recomputed from the persisted samples.
            stats = summarize_file(paths.csv)
            write_summary(paths.summary, stats)
            meta.status = "complete"
        except BaseException:
            meta.status = "failed"
            raise
        finally:
            meta.end_time = time.strftime("%Y-%m-%dT%H:%M:%S%z")
            try:
                save_meta(paths.meta, meta)
            except OSError as exc:
                log.warning("Could not write metadata to %s: %s", paths.meta, exc)
            finally:
                provisioner.teardown(
                    tmp_base,
                    [tmp_base / "old", tmp_base / "new"],
                    retain=config.keep_worktrees,
                )

        log.info("Benchmark complete: %s", paths.summary)
        return BenchOutcome(
            paths=paths,
            stats=stats,
            samples=samples,
            environments=environments,
            meta=meta,
        )


