"""Tests for vtebench.provision - worktrees, builds and teardown."""

from __future__ import annotations

import shutil
import subprocess
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from vte_test_helpers import FakeBuilder, FakeCheckout

from vtebench.errors import PreconditionError, ProvisionError
from vtebench.provision import (
    BuildError,
    BuildPolicy,
    CheckoutError,
    Environment,
    GitCheckout,
    MesonBuild,
    Provisioner,
)

APP = "src/app/vte-2.91"
HEADERS = ["src/parser-c01.hh", "src/parser-csi.hh"]


def _completed(
    returncode: int = 0, stdout: str = "", stderr: str = ""
) -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(
        args=[], returncode=returncode, stdout=stdout, stderr=stderr
    )


# ---------------------------------------------------------------------------
# Build policy and environment
# ---------------------------------------------------------------------------


class TestBuildPolicy(unittest.TestCase):
    """Tests for BuildPolicy.steps()."""

    def test_prerequisites_first(self) -> None:
        policy = BuildPolicy(app_target=APP, prerequisite_targets=HEADERS)
        self.assertEqual(policy.steps(), [HEADERS, [APP]])

    def test_single_step_without_prerequisites(self) -> None:
        self.assertEqual(BuildPolicy(app_target=APP).steps(), [[APP]])


class TestEnvironment(unittest.TestCase):
    def test_label(self) -> None:
        env = Environment(
            side="old",
            ref="v1",
            tree=Path("/t/old"),
            build_dir=Path("/t/old/b"),
            short_commit="631e6cf",
        )
        self.assertEqual(env.label, "old-631e6cf")


# ---------------------------------------------------------------------------
# MesonBuild
# ---------------------------------------------------------------------------


class TestMesonBuild(unittest.TestCase):
    """Tests for MesonBuild command construction."""

    def test_configure_runs_meson_setup(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            tree = Path(tmpdir)
            with patch("vtebench.provision._run", return_value=_completed()) as mock_run:
                ran = MesonBuild().configure(tree, tree / "build-bench")
        self.assertTrue(ran)
        self.assertEqual(
            mock_run.call_args.args[0], ["meson", "setup", str(tree / "build-bench"), str(tree)]
        )

    def test_configure_skips_configured_dir(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            build_dir = Path(tmpdir) / "build-bench"
            build_dir.mkdir()
            (build_dir / "build.ninja").write_text("")
            with patch("vtebench.provision._run") as mock_run:
                ran = MesonBuild().configure(Path(tmpdir), build_dir)
        self.assertFalse(ran)
        mock_run.assert_not_called()

    def test_configure_failure(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            with patch(
                "vtebench.provision._run", return_value=_completed(1, stderr="no gtk")
            ):
                with self.assertRaises(BuildError) as ctx:
                    MesonBuild().configure(Path(tmpdir), Path(tmpdir) / "b")
        self.assertIn("no gtk", str(ctx.exception))

    def test_build_disables_ccache(self) -> None:
        with patch("vtebench.provision._run", return_value=_completed()) as mock_run:
            MesonBuild().build(Path("/t/b"), [APP])
        self.assertEqual(mock_run.call_args.args[0], ["ninja", "-C", "/t/b", APP])
        self.assertEqual(mock_run.call_args.kwargs["env"]["CCACHE_DISABLE"], "1")

    def test_build_failure(self) -> None:
        with patch("vtebench.provision._run", return_value=_completed(1, stdout="FAILED: x")):
            with self.assertRaises(BuildError):
                MesonBuild().build(Path("/t/b"), [APP])


# ---------------------------------------------------------------------------
# GitCheckout queries
# ---------------------------------------------------------------------------


class TestGitQueries(unittest.TestCase):
    """GitCheckout read-only queries with git mocked out."""

    def test_dirty_paths_parses_porcelain(self) -> None:
        output = " M src/vte.cc\nM  src/ring.cc\n"
        with patch("vtebench.provision._run", return_value=_completed(stdout=output)):
            self.assertEqual(
                GitCheckout(Path("/src/vte")).dirty_paths(), ["src/vte.cc", "src/ring.cc"]
            )

    def test_status_timeout(self) -> None:
        timeout = subprocess.TimeoutExpired(["git", "status"], 60)
        with patch("vtebench.provision.subprocess.run", side_effect=timeout):
            with self.assertRaises(PreconditionError) as ctx:
                GitCheckout(Path("/src/vte")).require_clean()
        self.assertIn("git status --porcelain --untracked-files=no", str(ctx.exception))
        self.assertIn("60s", str(ctx.exception))

    def test_toplevel_timeout(self) -> None:
        timeout = subprocess.TimeoutExpired(["git", "rev-parse"], 30)
        with patch("vtebench.provision.subprocess.run", side_effect=timeout):
            with self.assertRaises(PreconditionError) as ctx:
                GitCheckout(Path("/src/vte"), git="/usr/bin/git").toplevel()
        self.assertIn("/usr/bin/git rev-parse --show-toplevel", str(ctx.exception))


# ---------------------------------------------------------------------------
# Provisioner with fakes
# ---------------------------------------------------------------------------


class TestProvisioner(unittest.TestCase):
    """Tests for Provisioner.provision(), seed() and teardown()."""

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmpdir = Path(self._tmp.name)
        self.repo = self.tmpdir / "repo"
        self.repo.mkdir()
        self.base = self.tmpdir / "vte-bench-ab.x"
        self.base.mkdir()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _provisioner(
        self,
        checkout: FakeCheckout | None = None,
        builder: FakeBuilder | None = None,
        *,
        prerequisites: list[str] | None = None,
        seed_from: Path | None = None,
    ) -> Provisioner:
        return Provisioner(
            checkout or FakeCheckout(self.repo),
            builder or FakeBuilder(),
            BuildPolicy(
                app_target=APP,
                prerequisite_targets=HEADERS if prerequisites is None else prerequisites,
            ),
            seed_from=seed_from,
            seed_subprojects=["simdutf", "fmt", "fast_float"],
        )

    def test_provision_builds_in_order(self) -> None:
        builder = FakeBuilder()
        env = self._provisioner(builder=builder).provision("old", "v1", self.base / "old")
        self.assertEqual(env.side, "old")
        self.assertEqual(env.build_dir, self.base / "old" / "build-bench")
        self.assertEqual(env.binary, env.build_dir / APP)
        self.assertEqual(len(env.short_commit), 7)
        self.assertTrue(env.commit.startswith(env.short_commit))
        self.assertTrue(env.label.startswith("old-"))
        self.assertEqual([targets for _, targets in builder.builds], [HEADERS, [APP]])

    def test_empty_prerequisites_single_build(self) -> None:
        builder = FakeBuilder()
        self._provisioner(builder=builder, prerequisites=[]).provision(
            "new", "HEAD", self.base / "new"
        )
        self.assertEqual([targets for _, targets in builder.builds], [[APP]])

    def test_sides_are_isolated(self) -> None:
        provisioner = self._provisioner()
        old = provisioner.provision("old", "v1", self.base / "old")
        new = provisioner.provision("new", "v2", self.base / "new")
        self.assertNotEqual(old.tree, new.tree)
        self.assertNotEqual(old.build_dir, new.build_dir)
        self.assertNotEqual(old.binary, new.binary)
        self.assertNotEqual(old.label, new.label)

    def test_bad_ref(self) -> None:
        checkout = FakeCheckout(self.repo, bad_refs=("nope",))
        with self.assertRaises(ProvisionError) as ctx:
            self._provisioner(checkout).provision("new", "nope", self.base / "new")
        self.assertEqual(ctx.exception.step, "checkout")
        self.assertEqual(ctx.exception.side, "new")
        self.assertIn("nope", str(ctx.exception))

    def test_configure_failure(self) -> None:
        with self.assertRaises(ProvisionError) as ctx:
            self._provisioner(builder=FakeBuilder(fail_on="configure")).provision(
                "old", "v1", self.base / "old"
            )
        self.assertEqual(ctx.exception.step, "configure")

    def test_prerequisite_build_failure(self) -> None:
        builder = FakeBuilder(fail_on=HEADERS[0])
        with self.assertRaises(ProvisionError) as ctx:
            self._provisioner(builder=builder).provision("old", "v1", self.base / "old")
        self.assertTrue(ctx.exception.step.startswith("build "))
        self.assertEqual(len(builder.builds), 1)

    def test_missing_binary(self) -> None:
        with self.assertRaises(ProvisionError) as ctx:
            self._provisioner(builder=FakeBuilder(produce_binary=False)).provision(
                "old", "v1", self.base / "old"
            )
        self.assertIn("no binary", str(ctx.exception))

    def test_seed_copies_available_subprojects(self) -> None:
        cache = self.repo / "subprojects"
        (cache / "fmt").mkdir(parents=True)
        (cache / "fmt" / "meson.build").write_text("project('fmt')\n")
        (cache / "simdutf").mkdir()
        tree = self.base / "old"
        (tree / "subprojects" / "simdutf").mkdir(parents=True)

        seeded = self._provisioner(seed_from=cache).seed(tree)

        self.assertEqual(seeded, ["fmt"])
        self.assertTrue((tree / "subprojects" / "fmt" / "meson.build").is_file())
        self.assertFalse((tree / "subprojects" / "fast_float").exists())

    def test_seed_disabled(self) -> None:
        self.assertEqual(self._provisioner().seed(self.base / "old"), [])

    def test_teardown_removes_everything(self) -> None:
        checkout = FakeCheckout(self.repo)
        provisioner = self._provisioner(checkout)
        provisioner.provision("old", "v1", self.base / "old")
        provisioner.provision("new", "v2", self.base / "new")
        provisioner.teardown(self.base, [self.base / "old", self.base / "new"])
        self.assertEqual(checkout.removed, [self.base / "old", self.base / "new"])
        self.assertEqual(checkout.pruned, 1)
        self.assertFalse(self.base.exists())

    def test_teardown_skips_missing_trees(self) -> None:
        checkout = FakeCheckout(self.repo)
        self._provisioner(checkout).teardown(self.base, [self.base / "old", self.base / "new"])
        self.assertEqual(checkout.removed, [])
        self.assertFalse(self.base.exists())

    def test_teardown_retain(self) -> None:
        checkout = FakeCheckout(self.repo)
        provisioner = self._provisioner(checkout)
        provisioner.provision("old", "v1", self.base / "old")
        with self.assertLogs("vtebench.provision", level="INFO") as logs:
            provisioner.teardown(self.base, [self.base / "old"], retain=True)
        self.assertTrue((self.base / "old").exists())
        self.assertEqual(checkout.removed, [])
        self.assertTrue(any(str(self.base) in line for line in logs.output))

    def test_teardown_survives_remove_errors(self) -> None:
        checkout = FakeCheckout(self.repo)
        (self.base / "old").mkdir()
        with patch.object(checkout, "remove", side_effect=OSError("busy")):
            self._provisioner(checkout).teardown(self.base, [self.base / "old"])
        self.assertFalse(self.base.exists())


# ---------------------------------------------------------------------------
# GitCheckout against a real repository
# ---------------------------------------------------------------------------


def _git(repo: Path, *args: str) -> str:
    proc = subprocess.run(
        ["git", "-c", "user.name=Bench", "-c", "user.email=bench@example.com", *args],
        cwd=repo,
        capture_output=True,
        text=True,
        check=True,
    )
    return proc.stdout.strip()


@unittest.skipUnless(shutil.which("git"), "git not installed")
class TestGitCheckout(unittest.TestCase):
    """Tests for GitCheckout using a throwaway repository."""

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmpdir = Path(self._tmp.name).resolve()
        self.repo = self.tmpdir / "repo"
        self.repo.mkdir()
        _git(self.repo, "init", "-q")
        (self.repo / "vte.cc").write_text("// first\n")
        _git(self.repo, "add", "vte.cc")
        _git(self.repo, "commit", "-q", "-m", "first")
        self.first = _git(self.repo, "rev-parse", "HEAD")
        (self.repo / "vte.cc").write_text("// second\n")
        _git(self.repo, "commit", "-q", "-am", "second")
        self.second = _git(self.repo, "rev-parse", "HEAD")
        self.checkout = GitCheckout(self.repo)

    def tearDown(self) -> None:
        _git(self.repo, "worktree", "prune")
        self._tmp.cleanup()

    def test_toplevel(self) -> None:
        sub = self.repo / "src"
        sub.mkdir()
        self.assertEqual(GitCheckout(sub).toplevel(), self.repo)

    def test_toplevel_outside_repo(self) -> None:
        outside = self.tmpdir / "plain"
        outside.mkdir()
        with patch.dict("os.environ", {"GIT_CEILING_DIRECTORIES": str(self.tmpdir)}):
            with self.assertRaises(PreconditionError):
                GitCheckout(outside).toplevel()

    def test_clean_tree(self) -> None:
        (self.repo / "untracked.txt").write_text("ignored")
        self.assertEqual(self.checkout.dirty_paths(), [])
        self.checkout.require_clean()

    def test_dirty_tree_refused(self) -> None:
        (self.repo / "vte.cc").write_text("// local edit\n")
        with self.assertRaises(PreconditionError) as ctx:
            self.checkout.require_clean()
        self.assertIn("vte.cc", str(ctx.exception))
        self.assertIn("Commit or stash", str(ctx.exception))

    def test_two_revisions_are_independent(self) -> None:
        base = self.tmpdir / "vte-bench-ab.test"
        old = self.checkout.resolve_and_checkout(self.first, base / "old")
        new = self.checkout.resolve_and_checkout("HEAD", base / "new")

        self.assertEqual((old / "vte.cc").read_text(), "// first\n")
        self.assertEqual((new / "vte.cc").read_text(), "// second\n")
        self.assertEqual(self.checkout.revision(old), self.first)
        self.assertEqual(self.checkout.revision(new), self.second)
        self.assertTrue(self.first.startswith(self.checkout.revision(old, short=True)))

        (old / "build-bench").mkdir()
        self.assertFalse((new / "build-bench").exists())

        self.assertTrue(self.checkout.remove(old))
        self.assertFalse(old.exists())
        self.assertTrue(new.exists())
        self.assertTrue(self.checkout.remove(new))

    def test_unknown_ref(self) -> None:
        with self.assertRaises(CheckoutError):
            self.checkout.resolve_and_checkout("no-such-ref", self.tmpdir / "x" / "old")

    def test_stale_worktree_replaced(self) -> None:
        dest = self.tmpdir / "base" / "old"
        self.checkout.resolve_and_checkout(self.first, dest)
        self.checkout.resolve_and_checkout(self.second, dest)
        self.assertEqual(self.checkout.revision(dest), self.second)
        self.checkout.remove(dest)


if __name__ == "__main__":
    unittest.main()
