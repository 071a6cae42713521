"""Benchmark configuration and profile loading.

Handles:
- The resolved :class:`BenchConfig` value, built once by the CLI and passed
  to every component.
- Loading defaults from YAML profiles.
- Validating the final configuration before any work starts.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from vtebench.logging import get_logger

log = get_logger("config")

DEFAULT_OLD_REF = "631e6cf86b05c61ca1792b1bba020f34f8d82dc2"
DEFAULT_NEW_REF = "HEAD"

# Application name -> ninja target / path of the binary inside the build dir.
APPLICATIONS: dict[str, str] = {
    "gtk3": "src/app/vte-2.91",
    "gtk4": "src/app/vte-2.91-gtk4",
}

# Older revisions do not declare the dependency of vte.cc on the generated
# parser headers, so they are built as an explicit first step.
DEFAULT_PREREQUISITE_TARGETS: tuple[str, ...] = (
    "src/parser-c01.hh",
    "src/parser-cmd.hh",
    "src/parser-cmd-handlers.hh",
    "src/parser-csi.hh",
    "src/parser-dcs.hh",
    "src/parser-esc.hh",
    "src/parser-reply.hh",
    "src/parser-sci.hh",
)

DEFAULT_SEED_SUBPROJECTS: tuple[str, ...] = ("simdutf", "fmt", "fast_float")


# ---------------------------------------------------------------------------
# BenchConfig
# ---------------------------------------------------------------------------


@dataclass
class BenchConfig:
    """Resolved configuration for one A/B invocation."""

    # Revisions
    old_ref: str = DEFAULT_OLD_REF
    new_ref: str = DEFAULT_NEW_REF

    # Measurement
    runs: int = 12
    app: str = "gtk3"
    width: int = 220
    height: int = 70
    lines: int = 8000
    run_timeout: float | None = None  # None = wait forever

    # Environment lifecycle
    keep_worktrees: bool = False
    frame_debug: bool = False
    use_local_subprojects: bool = True
    seed_subprojects: list[str] = field(default_factory=lambda: list(DEFAULT_SEED_SUBPROJECTS))
    prerequisite_targets: list[str] = field(
        default_factory=lambda: list(DEFAULT_PREREQUISITE_TARGETS)
    )
    build_dir_name: str = "build-bench"

    # Paths
    repo_root: Path = field(default_factory=Path.cwd)
    out_dir: Path | None = None  # None = <repo_root>/perf/out
    tmp_parent: Path | None = None  # None = $TMPDIR or /tmp

    # Identity
    stamp: str = ""
    cli_args: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.stamp:
            self.stamp = time.strftime("%Y%m%d-%H%M%S")

    @property
    def app_target(self) -> str:
        """The ninja target (and relative binary path) for :attr:`app`."""
        return APPLICATIONS[self.app]

    @property
    def geometry(self) -> tuple[int, int]:
        return (self.width, self.height)

    @property
    def output_dir(self) -> Path:
        """Directory receiving the CSV, summary and metadata files."""
        if self.out_dir is not None:
            return self.out_dir
        return self.repo_root / "perf" / "out"

    def to_dict(self) -> dict[str, Any]:
        """The settings recorded in run metadata."""
        return {
            "runs": self.runs,
            "app": self.app,
            "app_target": APPLICATIONS.get(self.app, ""),
            "width": self.width,
            "height": self.height,
            "lines": self.lines,
            "run_timeout": self.run_timeout,
            "keep_worktrees": self.keep_worktrees,
            "frame_debug": self.frame_debug,
            "use_local_subprojects": self.use_local_subprojects,
            "seed_subprojects": list(self.seed_subprojects),
            "prerequisite_targets": list(self.prerequisite_targets),
        }


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@dataclass
class ValidationError:
    """A single configuration validation error."""

    field: str
    message: str
    severity: str = "error"  # "error" or "warning"


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_config(config: BenchConfig) -> list[ValidationError]:
    """Validate a benchmark configuration.

    Values read from a profile are not coerced, so types are checked here
    before any range check.

    Returns a list of validation errors.  Empty list means valid.
    """
    errors: list[ValidationError] = []

    for name in ("runs", "width", "height", "lines"):
        value = getattr(config, name)
        if not _is_int(value):
            errors.append(
                ValidationError(field=name, message=f"Expected an integer (got {value!r}).")
            )

    for name in ("keep_worktrees", "frame_debug", "use_local_subprojects"):
        value = getattr(config, name)
        if not isinstance(value, bool):
            errors.append(
                ValidationError(field=name, message=f"Expected true or false (got {value!r}).")
            )

    if _is_int(config.runs) and config.runs < 1:
        errors.append(
            ValidationError(
                field="runs",
                message=f"Need at least 1 run per revision (got {config.runs}).",
            )
        )
    elif _is_int(config.runs) and config.runs < 3:
        errors.append(
            ValidationError(
                field="runs",
                message=(
                    f"Only {config.runs} run(s) per revision; the standard deviation "
                    "will not mean much."
                ),
                severity="warning",
            )
        )

    if not isinstance(config.app, str) or config.app not in APPLICATIONS:
        errors.append(
            ValidationError(
                field="app",
                message=(
                    f"Unknown application '{config.app}'. "
                    f"Choose one of: {', '.join(sorted(APPLICATIONS))}."
                ),
            )
        )

    for name in ("width", "height", "lines"):
        value = getattr(config, name)
        if _is_int(value) and value < 1:
            errors.append(
                ValidationError(
                    field=name,
                    message=f"{name.capitalize()} must be a positive integer (got {value}).",
                )
            )

    timeout = config.run_timeout
    is_number = isinstance(timeout, (int, float)) and not isinstance(timeout, bool)
    if timeout is not None and not is_number:
        errors.append(
            ValidationError(
                field="run_timeout", message=f"Expected a number of seconds (got {timeout!r})."
            )
        )
    elif timeout is not None and timeout <= 0:
        errors.append(
            ValidationError(
                field="run_timeout",
                message=f"Run timeout must be positive (got {config.run_timeout}).",
            )
        )

    if not config.old_ref.strip() or not config.new_ref.strip():
        errors.append(
            ValidationError(
                field="refs",
                message="Old and new revisions must be non-empty.",
            )
        )

    if not config.build_dir_name or "/" in config.build_dir_name:
        errors.append(
            ValidationError(
                field="build_dir_name",
                message=(
                    "Build directory name must be a plain name "
                    f"(got '{config.build_dir_name}')."
                ),
            )
        )

    return errors


def check_config(config: BenchConfig) -> None:
    """Log warnings and raise ValueError if any fatal validation error exists."""
    errors = validate_config(config)
    for w in (e for e in errors if e.severity == "warning"):
        log.warning("Config warning: %s: %s", w.field, w.message)
    fatal = [e for e in errors if e.severity == "error"]
    if fatal:
        messages = [f"  {e.field}: {e.message}" for e in fatal]
        raise ValueError("Invalid benchmark configuration:\n" + "\n".join(messages))


# ---------------------------------------------------------------------------
# YAML profile loading
# ---------------------------------------------------------------------------

_PROFILE_KEYS = {
    "old_ref",
    "new_ref",
    "runs",
    "app",
    "width",
    "height",
    "lines",
    "run_timeout",
    "keep_worktrees",
    "frame_debug",
    "use_local_subprojects",
    "seed_subprojects",
    "prerequisite_targets",
    "build_dir_name",
    "out_dir",
}


def load_profile(profile_path: Path) -> dict[str, Any]:
    """Load benchmark defaults from a YAML file.

    Profile format::

        runs: 20
        app: gtk4
        width: 160
        height: 50
        lines: 4000
        run_timeout: 300
        seed_subprojects: [simdutf, fmt]
        prerequisite_targets: []   # the revision's build graph is complete

    Returns:
        The parsed YAML as a dict.
    """
    import yaml

    if not profile_path.exists():
        raise FileNotFoundError(f"Profile not found: {profile_path}")

    data = yaml.safe_load(profile_path.read_text())
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Profile must be a YAML mapping, got {type(data).__name__}")

    unknown = sorted(set(data) - _PROFILE_KEYS)
    if unknown:
        raise ValueError(f"Unknown profile key(s): {', '.join(unknown)}")
    return data


def config_from_profile(
    profile_data: dict[str, Any],
    *,
    cli_overrides: dict[str, Any] | None = None,
) -> BenchConfig:
    """Build a BenchConfig from profile values and CLI overrides.

    Keys whose CLI value is ``None`` fall back to the profile, then to
    the BenchConfig default.

    Args:
        profile_data: Parsed YAML profile dict (may be empty).
        cli_overrides: Dict of CLI option values keyed by BenchConfig
            field names.
    """
    cli = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    merged: dict[str, Any] = {**profile_data, **cli}

    for key in ("seed_subprojects", "prerequisite_targets"):
        if key in merged:
            value = merged[key]
            if value is None:
                merged[key] = []
            elif isinstance(value, str):
                merged[key] = [v.strip() for v in value.split(",") if v.strip()]
            else:
                merged[key] = [str(v) for v in value]

    # YAML reads an all-digit revision as an int.
    for key in ("old_ref", "new_ref", "build_dir_name"):
        if merged.get(key) is not None:
            merged[key] = str(merged[key])

    for key in ("repo_root", "out_dir", "tmp_parent"):
        if merged.get(key) is not None:
            merged[key] = Path(merged[key])

    known = {f.name for f in BenchConfig.__dataclass_fields__.values()}
    return BenchConfig(**{k: v for k, v in merged.items() if k in known})
