"""Provisioning of isolated, built source trees for each side.

Each side (old/new) gets its own detached git worktree under the
invocation's temporary directory and its own meson build directory
inside that worktree, so nothing built for one revision can leak into
the timing of the other.

The external tools are wrapped in small collaborator classes
(:class:`GitCheckout`, :class:`MesonBuild`) that the
:class:`Provisioner` drives; tests substitute fakes for them.
"""

from __future__ import annotations

import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from vtebench.errors import PreconditionError, ProvisionError
from vtebench.logging import get_logger, log_command

log = get_logger("provision")


def _run(
    command: list[str],
    *,
    cwd: Path | None = None,
    env: dict[str, str] | None = None,
    timeout: int | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run an external tool, capturing output, without raising on failure."""
    log_command(log, command, cwd)
    return subprocess.run(
        command,
        capture_output=True,
        text=True,
        cwd=str(cwd) if cwd else None,
        env=env,
        timeout=timeout,
    )


def _tail(proc: subprocess.CompletedProcess[str], lines: int = 20) -> str:
    output = (proc.stderr or "").strip() or (proc.stdout or "").strip()
    return "\n".join(output.splitlines()[-lines:])


# ---------------------------------------------------------------------------
# Source control
# ---------------------------------------------------------------------------


class CheckoutError(Exception):
    """A git operation on a worktree failed."""


@dataclass
class GitCheckout:
    """Materializes revisions as detached worktrees of one repository."""

    repo_root: Path
    git: str = "git"

    def _query(self, args: list[str], *, timeout: int) -> subprocess.CompletedProcess[str]:
        """Run a read-only git command in the repository before any setup.

        Raises:
            PreconditionError: If git does not answer within *timeout*.
        """
        command = [self.git, *args]
        try:
            return _run(command, cwd=self.repo_root, timeout=timeout)
        except subprocess.TimeoutExpired as exc:
            raise PreconditionError(
                f"{shlex.join(command)} did not finish within {timeout}s"
            ) from exc

    def toplevel(self) -> Path:
        """Return the repository's top-level directory."""
        proc = self._query(["rev-parse", "--show-toplevel"], timeout=30)
        if proc.returncode != 0:
            raise PreconditionError(f"Not a git repository: {self.repo_root}")
        return Path(proc.stdout.strip())

    def dirty_paths(self) -> list[str]:
        """Tracked files with staged or unstaged changes."""
        proc = self._query(["status", "--porcelain", "--untracked-files=no"], timeout=60)
        if proc.returncode != 0:
            raise PreconditionError(f"git status failed: {_tail(proc)}")
        return [line[3:] for line in proc.stdout.splitlines() if line.strip()]

    def require_clean(self) -> None:
        """Raise PreconditionError if tracked files have local changes."""
        dirty = self.dirty_paths()
        if dirty:
            shown = ", ".join(dirty[:5]) + (" ..." if len(dirty) > 5 else "")
            raise PreconditionError(
                "Refusing to run with staged/unstaged tracked changes "
                f"({shown}). Commit or stash first."
            )

    def resolve_and_checkout(self, ref: str, dest: Path) -> Path:
        """Create a detached worktree of *ref* at *dest*.

        A stale worktree already registered at *dest* is removed first.

        Raises:
            CheckoutError: If *ref* does not resolve or the worktree
                cannot be created.
        """
        if (dest / ".git").exists():
            self.remove(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        proc = _run(
            [self.git, "worktree", "add", "--detach", str(dest), ref],
            cwd=self.repo_root,
            timeout=600,
        )
        if proc.returncode != 0:
            raise CheckoutError(_tail(proc) or f"git worktree add exited {proc.returncode}")
        return dest

    def revision(self, tree: Path, *, short: bool = False) -> str:
        """Return the commit checked out in *tree*."""
        args = [self.git, "rev-parse"]
        if short:
            args.append("--short")
        proc = _run([*args, "HEAD"], cwd=tree, timeout=30)
        if proc.returncode != 0:
            raise CheckoutError(_tail(proc) or "git rev-parse failed")
        return proc.stdout.strip()

    def remove(self, tree: Path) -> bool:
        """Unregister and delete a worktree.  Returns True on success."""
        proc = _run(
            [self.git, "worktree", "remove", "-f", str(tree)],
            cwd=self.repo_root,
            timeout=120,
        )
        if proc.returncode != 0:
            log.debug("git worktree remove %s failed: %s", tree, _tail(proc))
            return False
        return True

    def prune(self) -> None:
        """Forget worktrees whose directories no longer exist."""
        proc = _run([self.git, "worktree", "prune"], cwd=self.repo_root, timeout=60)
        if proc.returncode != 0:
            log.debug("git worktree prune failed: %s", _tail(proc))


# ---------------------------------------------------------------------------
# Build system
# ---------------------------------------------------------------------------


class BuildError(Exception):
    """meson or ninja exited non-zero."""


@dataclass
class MesonBuild:
    """Configures and builds a tree with meson and ninja."""

    meson: str = "meson"
    ninja: str = "ninja"
    timeout: int | None = None

    def configure(self, tree: Path, build_dir: Path) -> bool:
        """Run ``meson setup`` unless *build_dir* is already configured.

        Returns True if meson was invoked.
        """
        if (build_dir / "build.ninja").is_file():
            log.debug("%s already configured, skipping meson setup", build_dir)
            return False
        proc = _run([self.meson, "setup", str(build_dir), str(tree)], timeout=self.timeout)
        if proc.returncode != 0:
            raise BuildError(_tail(proc) or f"meson setup exited {proc.returncode}")
        return True

    def build(self, build_dir: Path, targets: list[str]) -> None:
        """Build *targets* in one ninja invocation."""
        env = dict(os.environ)
        env["CCACHE_DISABLE"] = "1"
        proc = _run([self.ninja, "-C", str(build_dir), *targets], env=env, timeout=self.timeout)
        if proc.returncode != 0:
            raise BuildError(_tail(proc) or f"ninja exited {proc.returncode}")


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


@dataclass
class Environment:
    """One side's provisioned worktree and build."""

    side: str  # "old" or "new"
    ref: str
    tree: Path
    build_dir: Path
    commit: str = ""
    short_commit: str = ""
    binary: Path | None = None

    @property
    def label(self) -> str:
        """Grouping key for this side's samples, e.g. ``old-631e6cf``."""
        return f"{self.side}-{self.short_commit}"


@dataclass
class BuildPolicy:
    """Ordered build steps: prerequisite targets first, then the app.

    An empty prerequisite list builds the application in a single step.
    """

    app_target: str
    prerequisite_targets: list[str] = field(default_factory=list)

    def steps(self) -> list[list[str]]:
        steps = [list(self.prerequisite_targets)] if self.prerequisite_targets else []
        steps.append([self.app_target])
        return steps


# ---------------------------------------------------------------------------
# Provisioner
# ---------------------------------------------------------------------------


class Provisioner:
    """Creates, builds and tears down per-side environments."""

    def __init__(
        self,
        checkout: GitCheckout,
        builder: MesonBuild,
        policy: BuildPolicy,
        *,
        build_dir_name: str = "build-bench",
        seed_from: Path | None = None,
        seed_subprojects: list[str] | None = None,
    ) -> None:
        self.checkout = checkout
        self.builder = builder
        self.policy = policy
        self.build_dir_name = build_dir_name
        self.seed_from = seed_from
        self.seed_subprojects = list(seed_subprojects or [])

    def provision(self, side: str, ref: str, dest: Path) -> Environment:
        """Check out, seed, configure and build one side.

        Raises:
            ProvisionError: If any step fails.
        """
        log.info("Preparing %s worktree (%s)...", side, ref)
        try:
            self.checkout.resolve_and_checkout(ref, dest)
        except (CheckoutError, OSError, subprocess.TimeoutExpired) as exc:
            raise ProvisionError(side, ref, "checkout", str(exc)) from exc

        env = Environment(side=side, ref=ref, tree=dest, build_dir=dest / self.build_dir_name)
        try:
            env.commit = self.checkout.revision(dest)
            env.short_commit = self.checkout.revision(dest, short=True)
        except (CheckoutError, OSError, subprocess.TimeoutExpired) as exc:
            raise ProvisionError(side, ref, "resolve revision", str(exc)) from exc

        if self.seed_from is not None:
            try:
                self.seed(dest)
            except OSError as exc:
                raise ProvisionError(side, ref, "seed subprojects", str(exc)) from exc

        log.info("Configuring %s build...", side)
        try:
            self.builder.configure(dest, env.build_dir)
        except (BuildError, OSError, subprocess.TimeoutExpired) as exc:
            raise ProvisionError(side, ref, "configure", str(exc)) from exc

        for targets in self.policy.steps():
            log.info("  Building %s in %s ...", " ".join(targets), env.build_dir)
            try:
                self.builder.build(env.build_dir, targets)
            except (BuildError, OSError, subprocess.TimeoutExpired) as exc:
                raise ProvisionError(side, ref, f"build {' '.join(targets)}", str(exc)) from exc

        binary = env.build_dir / self.policy.app_target
        if not binary.is_file():
            raise ProvisionError(side, ref, "build", f"no binary at {binary}")
        env.binary = binary
        log.info("%s: %s at %s", side, env.label, binary)
        return env

    def seed(self, tree: Path) -> list[str]:
        """Copy cached subprojects into *tree*; returns the names copied.

        Entries missing from the cache, or already present in the tree,
        are skipped.
        """
        if self.seed_from is None:
            return []
        seeded: list[str] = []
        for name in self.seed_subprojects:
            src = self.seed_from / name
            dst = tree / "subprojects" / name
            if not src.is_dir() or dst.exists():
                continue
            log.info("  Seeding subproject %s from local checkout", name)
            dst.parent.mkdir(parents=True, exist_ok=True)
            shutil.copytree(src, dst, symlinks=True)
            seeded.append(name)
        return seeded

    def teardown(self, base: Path, trees: list[Path], *, retain: bool = False) -> None:
        """Remove the worktrees and the temporary base directory.

        With *retain*, everything is left in place and its location logged.
        Failures are logged, never raised, so the error that triggered the
        teardown (if any) is the one reported.
        """
        if retain:
            log.info("Keeping temp trees: %s", base)
            return
        for tree in trees:
            if not tree.exists():
                continue
            try:
                removed = self.checkout.remove(tree)
            except (OSError, subprocess.TimeoutExpired) as exc:
                log.warning("Could not remove worktree %s: %s", tree, exc)
                removed = False
            if not removed:
                log.debug("Worktree %s left for directory cleanup", tree)
        shutil.rmtree(base, ignore_errors=True)
        try:
            self.checkout.prune()
        except (OSError, subprocess.TimeoutExpired) as exc:
            log.debug("git worktree prune failed: %s", exc)
        if base.exists():
            log.warning("Could not fully remove %s", base)
