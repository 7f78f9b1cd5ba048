"""Tests for the PreFlight checks."""

import os
import time

from autoremedy.preflight import PreflightChecker, PreflightReport, Severity
from autoremedy.subprocess_streaming import CommandResult
from tests.conftest import RecordingRunner


def _fail(output="error"):
    return CommandResult(returncode=1, output=output, command=[])


def _make_stale_lockfile(root):
    lockfile = root / "package-lock.json"
    lockfile.write_text("{}")
    past = time.time() - 3600
    os.utime(lockfile, (past, past))
    return lockfile


class TestLockfiles:
    """Lockfile freshness."""

    def test_fresh_lockfile_untouched(self, project_dir, settings):
        (project_dir / "package-lock.json").write_text("{}")
        (project_dir / "node_modules").mkdir()
        runner = RecordingRunner()
        report = PreflightReport()
        PreflightChecker(project_dir, settings, runner=runner).check_lockfiles(report)
        assert runner.calls == []
        assert report.issues == []

    def test_missing_lockfile_regenerated(self, project_dir, settings):
        runner = RecordingRunner()
        report = PreflightReport()
        PreflightChecker(project_dir, settings, runner=runner).check_lockfiles(report)
        assert runner.commands() == [["npm", "install", "--package-lock-only"]]
        assert not report.blocked
        assert len(report.remediations) == 1

    def test_stale_lockfile_regenerated(self, project_dir, settings):
        _make_stale_lockfile(project_dir)
        runner = RecordingRunner()
        report = PreflightReport()
        PreflightChecker(project_dir, settings, runner=runner).check_lockfiles(report)
        assert runner.commands() == [["npm", "install", "--package-lock-only"]]
        assert "older than package.json" in report.issues[0].message

    def test_failed_regeneration_is_critical(self, project_dir, settings):
        runner = RecordingRunner({("npm",): _fail("npm ERR! registry down")})
        report = PreflightReport()
        PreflightChecker(project_dir, settings, runner=runner).check_lockfiles(report)
        assert report.blocked
        assert "registry down" in report.critical[0].message

    def test_skip_lockcheck(self, project_dir, settings):
        settings = settings.model_copy(update={"skip_lockcheck": True})
        (project_dir / "node_modules").mkdir()
        runner = RecordingRunner()
        PreflightChecker(project_dir, settings, runner=runner).run()
        assert ["npm", "install", "--package-lock-only"] not in runner.commands()


class TestOtherChecks:
    """Dependencies, syntax, types, compose file."""

    def test_missing_node_modules_installs(self, project_dir, settings):
        runner = RecordingRunner()
        report = PreflightReport()
        PreflightChecker(project_dir, settings, runner=runner).check_dependencies(report)
        assert runner.calls == [(["npm", "install"], project_dir)]

    def test_failed_install_is_warning(self, project_dir, settings):
        runner = RecordingRunner({("npm",): _fail()})
        report = PreflightReport()
        PreflightChecker(project_dir, settings, runner=runner).check_dependencies(report)
        assert not report.blocked
        assert report.warnings[0].check == "dependencies"

    def test_syntax_error_is_critical(self, project_dir, settings):
        settings = settings.model_copy(update={"syntax_check_files": ["src/index.js"]})
        runner = RecordingRunner({("node", "--check"): _fail("SyntaxError: Unexpected token")})
        report = PreflightReport()
        PreflightChecker(project_dir, settings, runner=runner).check_syntax(report)
        assert report.blocked
        assert report.critical[0].check == "syntax"

    def test_missing_entry_file_is_critical(self, project_dir, settings):
        settings = settings.model_copy(update={"syntax_check_files": ["server.js"]})
        report = PreflightReport()
        PreflightChecker(project_dir, settings, runner=RecordingRunner()).check_syntax(report)
        assert report.blocked

    def test_type_errors_only_warn(self, project_dir, settings):
        (project_dir / "tsconfig.json").write_text("{}")
        runner = RecordingRunner({("npx", "tsc"): _fail()})
        report = PreflightReport()
        PreflightChecker(project_dir, settings, runner=runner).check_types(report)
        assert not report.blocked
        assert report.warnings[0].check == "typescript"

    def test_no_tsconfig_skips_type_check(self, project_dir, settings):
        runner = RecordingRunner()
        PreflightChecker(project_dir, settings, runner=runner).check_types(PreflightReport())
        assert runner.calls == []

    def test_invalid_compose_file_is_critical(self, project_dir, settings):
        (project_dir / "docker-compose.yml").write_text("services: [")
        runner = RecordingRunner({("docker-compose",): _fail("yaml: line 1")})
        report = PreflightReport()
        PreflightChecker(project_dir, settings, runner=runner).check_compose_config(report)
        assert report.blocked
        argv = runner.commands()[0]
        assert argv[-2:] == ["config", "--quiet"]

    def test_missing_compose_file_warns(self, project_dir, settings):
        report = PreflightReport()
        PreflightChecker(project_dir, settings, runner=RecordingRunner()).check_compose_config(report)
        assert not report.blocked
        assert report.warnings[0].check == "compose"


class TestRun:
    """Full PreFlight run."""

    def test_clean_project_passes(self, project_dir, settings):
        (project_dir / "package-lock.json").write_text("{}")
        (project_dir / "node_modules").mkdir()
        (project_dir / "docker-compose.yml").write_text("services: {}\n")
        report = PreflightChecker(project_dir, settings, runner=RecordingRunner()).run()
        assert not report.blocked
        assert report.warnings == []
        assert report.duration_ms >= 0

    def test_severity_values(self):
        assert Severity("critical") is Severity.CRITICAL
