"""Timing capture for benchmark runs.

Each run is wrapped in GNU ``/usr/bin/time -f %e`` so the elapsed time
comes from the same external clock for both revisions.  The raw text
that ``time`` writes is returned unparsed; :func:`parse_elapsed` is the
single place where it is validated.
"""

from __future__ import annotations

import os
import re
import shlex
import signal
import subprocess
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path

from vtebench.logging import get_logger, log_command

log = get_logger("timing")

GNU_TIME = Path("/usr/bin/time")
XVFB_SERVER_ARGS = "-screen 0 1920x1080x24"

_ELAPSED_RE = re.compile(r"^[0-9]+(\.[0-9]+)?$")


# ---------------------------------------------------------------------------
# TimedRun
# ---------------------------------------------------------------------------


@dataclass
class TimedRun:
    """Result of one timed process launch."""

    elapsed_text: str  # last non-empty line written by GNU time, "" if none
    wall_time_s: float  # our own monotonic measurement, for logging only
    exit_code: int
    timed_out: bool = False

    @property
    def has_timing(self) -> bool:
        """True if the timer produced any output at all."""
        return bool(self.elapsed_text)


def parse_elapsed(text: str) -> float:
    """Validate and parse an elapsed-seconds value.

    Accepts only plain non-negative decimals such as ``12`` or ``3.47``.

    Raises:
        ValueError: If *text* is empty or not a non-negative decimal.
    """
    value = text.strip()
    if not _ELAPSED_RE.match(value):
        raise ValueError(f"Invalid elapsed value: {text!r}")
    return float(value)


def is_elapsed(text: str) -> bool:
    """Return True if *text* is a valid elapsed-seconds value."""
    return bool(_ELAPSED_RE.match(text.strip()))


def read_time_output(path: Path) -> str:
    """Return the last non-empty line of a GNU time output file.

    Carriage returns are dropped.  A missing file yields ``""``.
    """
    try:
        content = path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return ""
    last = ""
    for line in content.replace("\r", "").splitlines():
        if line.strip():
            last = line.strip()
    return last


# ---------------------------------------------------------------------------
# Core timing implementation
# ---------------------------------------------------------------------------


def run_timed(
    command: list[str],
    *,
    env: dict[str, str] | None = None,
    stderr_path: Path | None = None,
    timeout: float | None = None,
    time_binary: Path = GNU_TIME,
) -> TimedRun:
    """Execute *command* under GNU time and capture its elapsed time.

    stdout is discarded.  stderr goes to *stderr_path* when given,
    otherwise it is discarded too.

    Args:
        command: Argument list of the process to time.
        env: Complete environment for the subprocess (inherits ours if None).
        stderr_path: File that receives the process's stderr.
        timeout: Seconds before the whole process group is killed.
        time_binary: Path to GNU time.

    Returns:
        TimedRun holding the raw elapsed text and the exit code.
    """
    fd, time_output = tempfile.mkstemp(prefix="vtebench-time-", suffix=".txt")
    os.close(fd)
    time_file = Path(time_output)
    # GNU time only writes the file once the child exits; start empty so
    # a crash of the wrapper itself is seen as "no timing".
    time_file.write_text("")

    wrapped = [str(time_binary), "-f", "%e", "-o", str(time_file), *command]
    log_command(log, wrapped)

    try:
        if stderr_path is not None:
            with open(stderr_path, "wb") as err:
                exit_code, timed_out, wall = _launch(wrapped, env, err, timeout)
        else:
            exit_code, timed_out, wall = _launch(wrapped, env, subprocess.DEVNULL, timeout)
        elapsed_text = "" if timed_out else read_time_output(time_file)
    finally:
        try:
            time_file.unlink()
        except OSError:
            pass

    return TimedRun(
        elapsed_text=elapsed_text,
        wall_time_s=round(wall, 6),
        exit_code=exit_code,
        timed_out=timed_out,
    )


def _launch(
    command: list[str],
    env: dict[str, str] | None,
    stderr: object,
    timeout: float | None,
) -> tuple[int, bool, float]:
    """Run *command* to completion; return (exit_code, timed_out, wall_s)."""
    wall_start = time.monotonic()
    proc = subprocess.Popen(
        command,
        env=env,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=stderr,  # type: ignore[arg-type]
        start_new_session=True,
    )
    timed_out = False
    try:
        exit_code = proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        timed_out = True
        _kill_process_group(proc.pid)
        try:
            proc.wait(timeout=5)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
        exit_code = -1
    except BaseException:
        # Interrupted (e.g. Ctrl-C): do not leave an Xvfb server behind.
        _kill_process_group(proc.pid)
        proc.wait()
        raise
    return exit_code, timed_out, time.monotonic() - wall_start


def _kill_process_group(pid: int) -> None:
    """Attempt to kill the entire process group."""
    try:
        os.killpg(os.getpgid(pid), signal.SIGKILL)
    except (ProcessLookupError, PermissionError, OSError):
        pass


# ---------------------------------------------------------------------------
# Virtual display launcher
# ---------------------------------------------------------------------------


@dataclass
class XvfbLauncher:
    """Runs a GUI binary headlessly under ``xvfb-run`` and times it.

    The binary gets ``--geometry=<cols>x<rows>`` and a child command that
    replays the workload file, the same way a user pasting it would.
    """

    xvfb_run: str = "xvfb-run"
    server_args: str = XVFB_SERVER_ARGS
    time_binary: Path = GNU_TIME

    def build_command(self, binary: Path, geometry: tuple[int, int], workload: Path) -> list[str]:
        """Return the argument list for one run (without the time wrapper)."""
        width, height = geometry
        return [
            self.xvfb_run,
            "-a",
            "-s",
            self.server_args,
            str(binary),
            f"--geometry={width}x{height}",
            "--",
            "bash",
            "-lc",
            f"cat {shlex.quote(str(workload))}",
        ]

    def build_env(self, *, frame_debug: bool) -> dict[str, str]:
        """Environment for the application under test."""
        env = dict(os.environ)
        env["GDK_BACKEND"] = "x11"
        if frame_debug:
            env["GDK_DEBUG"] = "frames"
        else:
            env.pop("GDK_DEBUG", None)
        return env

    def run(
        self,
        binary: Path,
        geometry: tuple[int, int],
        workload: Path,
        *,
        frame_log: Path | None = None,
        timeout: float | None = None,
    ) -> TimedRun:
        """Launch *binary* once and return the raw timing."""
        return run_timed(
            self.build_command(binary, geometry, workload),
            env=self.build_env(frame_debug=frame_log is not None),
            stderr_path=frame_log,
            timeout=timeout,
            time_binary=self.time_binary,
        )
