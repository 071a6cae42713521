"""Host characterization and tool preflight.

The profile is saved in the run metadata so that two sample files can be
told apart later (another machine, a busy machine, a powersave governor).
The preflight helpers make sure every external tool a benchmark shells
out to is installed before anything is created on disk.
"""

from __future__ import annotations

import json
import os
import platform
import shutil
import subprocess
import sys
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from vtebench.errors import PreconditionError
from vtebench.logging import get_logger

log = get_logger("system")

REQUIRED_TOOLS: dict[str, str] = {
    "git": "git is required",
    "meson": "meson is required",
    "ninja": "ninja is required",
    "xvfb-run": "xvfb-run is required (install xvfb)",
}

# Tools that do not understand --version.
_NO_VERSION_FLAG = {"xvfb-run"}

_GOVERNOR_PATH = Path("/sys/devices/system/cpu/cpu0/cpufreq/scaling_governor")


# ---------------------------------------------------------------------------
# SystemProfile
# ---------------------------------------------------------------------------


@dataclass
class SystemProfile:
    """The machine a benchmark ran on, as far as it affects timings."""

    cpu_model: str = "unknown"
    cpu_cores_physical: int = 0
    cpu_cores_logical: int = 0
    cpu_freq_mhz: float | None = None
    cpu_governor: str = ""
    cpu_architecture: str = ""

    ram_total_gb: float = 0.0
    ram_available_gb: float = 0.0

    os_name: str = ""
    os_kernel_version: str = ""
    os_distro: str = ""

    # 1, 5 and 15 minute load averages when the profile was taken.
    load_avg_1m: float = 0.0
    load_avg_5m: float = 0.0
    load_avg_15m: float = 0.0

    tools: dict[str, str] = field(default_factory=dict)  # name -> version line

    hostname: str = ""
    timestamp: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SystemProfile:
        """Build a profile from saved metadata; unknown keys are dropped."""
        names = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in data.items() if k in names})

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------


def _read_fields(path: Path, sep: str) -> list[tuple[str, str]]:
    """Parse ``key<sep>value`` lines of a /proc or /etc file, in file order.

    A missing or unreadable file yields an empty list.
    """
    try:
        text = path.read_text()
    except OSError:
        return []
    pairs = []
    for line in text.splitlines():
        if sep in line:
            key, value = line.split(sep, 1)
            pairs.append((key.strip(), value.strip()))
    return pairs


def capture_system_profile(*, tools: list[str] | None = None) -> SystemProfile:
    """Capture a best-effort profile of this host.

    Anything that cannot be read keeps its default.

    Args:
        tools: External tools whose version should be recorded.
    """
    profile = SystemProfile(
        cpu_cores_logical=os.cpu_count() or 0,
        cpu_architecture=platform.machine(),
        os_name=platform.system(),
        os_kernel_version=platform.release(),
        os_distro=f"{platform.system()} {platform.release()}",
        hostname=platform.node(),
        timestamp=time.strftime("%Y-%m-%dT%H:%M:%S%z"),
    )

    if sys.platform == "linux":
        _apply_cpuinfo(profile, _read_fields(Path("/proc/cpuinfo"), ":"))
        _apply_meminfo(profile, _read_fields(Path("/proc/meminfo"), ":"))
        for key, value in _read_fields(Path("/etc/os-release"), "="):
            if key == "PRETTY_NAME":
                profile.os_distro = value.strip('"')
                break
        try:
            profile.cpu_governor = _GOVERNOR_PATH.read_text().strip()
        except OSError:
            pass
    else:
        log.debug("Detailed system capture not supported on %s", sys.platform)

    try:
        one, five, fifteen = os.getloadavg()
    except OSError:
        pass
    else:
        profile.load_avg_1m = round(one, 2)
        profile.load_avg_5m = round(five, 2)
        profile.load_avg_15m = round(fifteen, 2)

    for tool in tools or []:
        version = tool_version(tool)
        if version:
            profile.tools[tool] = version

    return profile


def _apply_cpuinfo(profile: SystemProfile, fields: list[tuple[str, str]]) -> None:
    cores: set[tuple[str, str]] = set()
    package = None
    for key, value in fields:
        if key == "model name" and profile.cpu_model == "unknown":
            profile.cpu_model = value
        elif key == "cpu MHz" and profile.cpu_freq_mhz is None:
            try:
                profile.cpu_freq_mhz = float(value)
            except ValueError:
                pass
        elif key == "physical id":
            package = value
        elif key == "core id" and package is not None:
            cores.add((package, value))
            package = None
    # No topology information (VMs, some ARM kernels): count logical CPUs.
    profile.cpu_cores_physical = len(cores) or profile.cpu_cores_logical


def _apply_meminfo(profile: SystemProfile, fields: list[tuple[str, str]]) -> None:
    kib = {}
    for key, value in fields:
        number = value.split()[0] if value else ""
        if number.isdigit():
            kib[key] = int(number)
    profile.ram_total_gb = kib.get("MemTotal", 0) / (1024 * 1024)
    profile.ram_available_gb = kib.get("MemAvailable", 0) / (1024 * 1024)


def tool_version(tool: str) -> str:
    """Return the first line of ``<tool> --version``.

    Returns the resolved path for tools without a version flag, and ""
    if the tool is not installed or does not answer.
    """
    path = shutil.which(tool)
    if path is None:
        return ""
    if tool in _NO_VERSION_FLAG:
        return path
    try:
        proc = subprocess.run([path, "--version"], capture_output=True, text=True, timeout=10)
    except (subprocess.TimeoutExpired, OSError):
        return ""
    output = (proc.stdout or proc.stderr).strip()
    return output.splitlines()[0] if output else ""


# ---------------------------------------------------------------------------
# Preflight
# ---------------------------------------------------------------------------


def find_missing_tools(tools: dict[str, str] | None = None) -> list[str]:
    """Return the names of required tools that are not on ``PATH``."""
    required = REQUIRED_TOOLS if tools is None else tools
    return [name for name in required if shutil.which(name) is None]


def require_tools(
    tools: dict[str, str] | None = None,
    *,
    time_binary: Path | None = None,
) -> None:
    """Raise PreconditionError for the first missing tool.

    Args:
        tools: Mapping of tool name to the message reported when missing.
        time_binary: Path of GNU time, checked as a file rather than on PATH.
    """
    required = REQUIRED_TOOLS if tools is None else tools
    missing = find_missing_tools(required)
    if missing:
        raise PreconditionError(required[missing[0]])
    if time_binary is not None and not time_binary.is_file():
        raise PreconditionError(f"GNU time is required at {time_binary}")


# ---------------------------------------------------------------------------
# Display
# ---------------------------------------------------------------------------


def format_system_profile(profile: SystemProfile) -> str:
    """Render a profile as aligned ``Key: value`` lines."""
    if profile.cpu_cores_logical != profile.cpu_cores_physical:
        cores = f"{profile.cpu_cores_physical}C/{profile.cpu_cores_logical}T"
    else:
        cores = f"{profile.cpu_cores_physical} cores"
    cpu = f"{profile.cpu_model} ({cores}"
    if profile.cpu_freq_mhz:
        cpu += f", {profile.cpu_freq_mhz:.0f} MHz"
    if profile.cpu_governor:
        cpu += f", governor {profile.cpu_governor}"
    cpu += ")"

    rows = [
        ("CPU", cpu),
        ("RAM", f"{profile.ram_total_gb:.1f} GB ({profile.ram_available_gb:.1f} GB free)"),
        ("OS", f"{profile.os_distro}, kernel {profile.os_kernel_version}"),
        (
            "Load",
            f"{profile.load_avg_1m:.2f} {profile.load_avg_5m:.2f} {profile.load_avg_15m:.2f}",
        ),
    ]
    rows.extend((name, version) for name, version in sorted(profile.tools.items()))
    rows.append(("Host", f"{profile.hostname} at {profile.timestamp}"))

    width = max(len(key) for key, _ in rows) + 1
    lines = ["System Profile", "\u2500" * 14]
    lines.extend(f"{key + ':':<{width}} {value}" for key, value in rows)
    return "\n".join(lines)
