"""Tests for the fix catalog and executor."""

import os
import stat
import sys

import pytest

from autoremedy import fix_catalog
from autoremedy.error_patterns import get_registry
from autoremedy.exceptions import UnknownFixError
from autoremedy.fix_catalog import (
    MANUAL_FIXES,
    FixAction,
    FixCatalog,
    FixKind,
    normalize_package_name,
)
from autoremedy.heuristics import DEFAULT_RULES
from autoremedy.subprocess_streaming import CommandResult
from tests.conftest import RecordingRunner


class TestFixNames:
    """Closed set of fix kinds plus known manual fixes."""

    def test_every_registered_fix_is_known(self):
        FixCatalog.validate(get_registry().registered_fix_names())

    def test_every_heuristic_fix_is_known(self):
        FixCatalog.validate(rule.suggested_fix for rule in DEFAULT_RULES)

    def test_unknown_fix_raises(self):
        with pytest.raises(UnknownFixError) as exc_info:
            FixCatalog.kind_for("reticulate_splines")
        assert exc_info.value.fix_name == "reticulate_splines"

    def test_alias_maps_to_kind(self):
        assert FixCatalog.kind_for("run_npm_install_first") is FixKind.REGENERATE_LOCKFILE

    def test_manual_fix_is_not_automatable(self):
        assert "add_type_assertion" in MANUAL_FIXES
        assert not FixCatalog.is_automatable("add_type_assertion")
        assert FixCatalog.is_automatable("docker_prune")

    def test_destructive_fixes_are_manual(self):
        for name in ("delete_and_reinstall", "clear_next_cache", "kill_process"):
            assert FixCatalog.kind_for(name) is None


class TestPackageNames:
    """Module specifiers reduced to installable package names."""

    @pytest.mark.parametrize(
        "spec,expected",
        [
            ("lodash", "lodash"),
            ("lodash/fp", "lodash"),
            ("@scope/pkg", "@scope/pkg"),
            ("@scope/pkg/sub/path", "@scope/pkg"),
            ("./utils", None),
            ("../lib/x", None),
            ("/abs/path", None),
            ("node:fs", None),
            ("@/components/Button", None),
            ("Not A Package", None),
            ("", None),
        ],
    )
    def test_normalize(self, spec, expected):
        assert normalize_package_name(spec) == expected

    def test_action_rejects_invalid_package(self):
        with pytest.raises(ValueError):
            FixAction(kind=FixKind.INSTALL_PACKAGE, package="../evil")

    def test_action_rejects_stray_parameters(self, tmp_path):
        with pytest.raises(ValueError):
            FixAction(kind=FixKind.DOCKER_PRUNE, path=tmp_path)


class TestResolve:
    """Fix names plus captured groups to concrete actions."""

    def test_install_package_from_group(self, project_dir):
        catalog = FixCatalog(project_dir)
        action = catalog.resolve("install_package", ("lodash/fp",))
        assert action == FixAction(kind=FixKind.INSTALL_PACKAGE, package="lodash")

    def test_install_relative_module_is_not_automatable(self, project_dir):
        catalog = FixCatalog(project_dir)
        assert catalog.resolve("install_package", ("./missing",)) is None

    def test_dependency_fix_needs_package_json(self, tmp_path):
        catalog = FixCatalog(tmp_path)
        assert catalog.resolve("install_legacy_peer_deps") is None

    def test_manual_fix_resolves_to_none(self, project_dir):
        assert FixCatalog(project_dir).resolve("widen_to_any", ("a", "b")) is None

    def test_unknown_fix_raises(self, project_dir):
        with pytest.raises(UnknownFixError):
            FixCatalog(project_dir).resolve("reticulate_splines")

    def test_path_outside_project_is_refused(self, project_dir, tmp_path):
        catalog = FixCatalog(project_dir)
        assert catalog.resolve("create_directory", (str(tmp_path / "elsewhere"),)) is None
        assert catalog.resolve("fix_permissions", ("/etc",)) is None

    def test_relative_path_resolved_inside_project(self, project_dir):
        action = FixCatalog(project_dir).resolve("create_directory", ("data/uploads",))
        assert action.path == (project_dir / "data" / "uploads").resolve()


class TestPlan:
    """Commands each action would run."""

    def test_docker_prune_only_prunes(self, project_dir):
        catalog = FixCatalog(project_dir)
        steps = catalog.plan(catalog.resolve("docker_prune"))
        assert [s.argv for s in steps] == [
            ["docker", "system", "prune", "-f"],
            ["docker", "builder", "prune", "-f"],
        ]
        for step in steps:
            assert "rm" not in step.argv
            assert "-a" not in step.argv
            assert "--volumes" not in step.argv

    def test_dependency_fix_runs_in_every_package_dir(self, project_dir):
        (project_dir / "frontend").mkdir()
        (project_dir / "frontend" / "package.json").write_text("{}")
        catalog = FixCatalog(project_dir, package_dirs=[".", "frontend", "missing"])
        steps = catalog.plan(catalog.resolve("install_legacy_peer_deps"))
        assert [s.cwd for s in steps] == [project_dir.resolve(), (project_dir / "frontend").resolve()]
        assert all(s.argv == ["npm", "install", "--legacy-peer-deps"] for s in steps)

    def test_install_package_runs_once(self, project_dir):
        catalog = FixCatalog(project_dir)
        steps = catalog.plan(FixAction(kind=FixKind.INSTALL_PACKAGE, package="express"))
        assert len(steps) == 1
        assert steps[0].argv == ["npm", "install", "express"]


class TestExecute:
    """Execution through an injected runner."""

    def test_success(self, project_dir):
        runner = RecordingRunner()
        catalog = FixCatalog(project_dir, runner=runner)
        result = catalog.execute(catalog.resolve("docker_prune"))
        assert result.ok
        assert runner.commands() == [
            ["docker", "system", "prune", "-f"],
            ["docker", "builder", "prune", "-f"],
        ]

    def test_nonzero_exit_is_failure(self, project_dir):
        runner = RecordingRunner(
            {("npm",): CommandResult(returncode=1, output="npm ERR! boom", command=["npm"])}
        )
        catalog = FixCatalog(project_dir, runner=runner)
        result = catalog.execute(catalog.resolve("install_force"))
        assert not result.ok
        assert "Exit code 1" in result.error
        assert "npm ERR! boom" in result.output

    def test_timeout_is_failure(self, project_dir):
        runner = RecordingRunner(
            {
                ("docker", "system"): CommandResult(
                    returncode=-1, output="[TIMEOUT]", command=["docker"], timeout_occurred=True
                )
            }
        )
        catalog = FixCatalog(project_dir, runner=runner, timeout=5)
        result = catalog.execute(catalog.resolve("docker_prune"))
        assert not result.ok
        assert "Timed out" in result.error
        # Stops at the first failing step
        assert len(runner.calls) == 1

    def test_dry_run_runs_nothing(self, project_dir):
        runner = RecordingRunner()
        catalog = FixCatalog(project_dir, runner=runner, dry_run=True)
        result = catalog.execute(catalog.resolve("docker_prune"))
        assert result.ok
        assert runner.calls == []
        assert len(result.steps) == 2

    def test_real_command_with_timeout(self, project_dir, monkeypatch):
        """A hung fix command is killed after the catalog timeout."""
        catalog = FixCatalog(project_dir, timeout=1)
        monkeypatch.setitem(
            fix_catalog._CONTAINER_COMMANDS,
            FixKind.CLEAN_OLD_IMAGES,
            [[sys.executable, "-c", "import time; time.sleep(10)"]],
        )
        result = catalog.execute(FixAction(kind=FixKind.CLEAN_OLD_IMAGES))
        assert not result.ok
        assert "Timed out" in result.error

    def test_project_files_survive_prune(self, project_dir):
        before = sorted(p.relative_to(project_dir) for p in project_dir.rglob("*"))
        catalog = FixCatalog(project_dir, runner=RecordingRunner())
        catalog.execute(catalog.resolve("docker_prune"))
        after = sorted(p.relative_to(project_dir) for p in project_dir.rglob("*"))
        assert before == after


class TestInProcessFixes:
    """Directory creation and permission widening."""

    def test_create_directory(self, project_dir):
        catalog = FixCatalog(project_dir)
        result = catalog.execute(catalog.resolve("create_directory", ("data/uploads",)))
        assert result.ok
        assert (project_dir / "data" / "uploads").is_dir()

    def test_create_directory_for_file_path(self, project_dir):
        catalog = FixCatalog(project_dir)
        result = catalog.execute(catalog.resolve("create_directory", ("logs/app.log",)))
        assert result.ok
        assert (project_dir / "logs").is_dir()
        assert not (project_dir / "logs" / "app.log").exists()

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
    def test_fix_permissions(self, project_dir):
        target = project_dir / "data"
        target.mkdir()
        db = target / "app.db"
        db.write_text("x")
        db.chmod(0o400)

        catalog = FixCatalog(project_dir)
        result = catalog.execute(catalog.resolve("fix_permissions", ("data",)))
        assert result.ok
        assert db.stat().st_mode & stat.S_IWUSR
        assert not db.stat().st_mode & stat.S_IXUSR

    def test_fix_permissions_missing_target(self, project_dir):
        catalog = FixCatalog(project_dir)
        result = catalog.execute(catalog.resolve("fix_permissions", ("nope",)))
        assert not result.ok
        assert "does not exist" in result.error
