"""PreFlight: static checks run before any build attempt.

These problems are deterministic and will not resolve by retrying a build,
so a critical finding escalates immediately without spending retry budget.

Checks, in order:
1. Lockfile freshness: package-lock.json missing or older than package.json
   is regenerated with ``npm install --package-lock-only``
2. Dependencies installed: missing node_modules triggers ``npm install``
3. Syntax of configured entry files (``node --check``)
4. Type check (``npx tsc --noEmit``), warning only
5. Compose file validation (``docker-compose config --quiet``)

PreFlight remediations are logged but never recorded in repair memory.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from .config import Settings
from .subprocess_streaming import CommandRunner, default_runner, split_command

logger = logging.getLogger(__name__)

PREFLIGHT_TIMEOUT_SECONDS = 120


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


@dataclass
class PreflightIssue:
    check: str
    severity: Severity
    message: str


@dataclass
class PreflightReport:
    """Result of the PreFlight phase."""

    issues: List[PreflightIssue] = field(default_factory=list)
    remediations: List[str] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def blocked(self) -> bool:
        return any(i.severity is Severity.CRITICAL for i in self.issues)

    @property
    def critical(self) -> List[PreflightIssue]:
        return [i for i in self.issues if i.severity is Severity.CRITICAL]

    @property
    def warnings(self) -> List[PreflightIssue]:
        return [i for i in self.issues if i.severity is Severity.WARNING]

    def add(self, check: str, severity: Severity, message: str) -> None:
        self.issues.append(PreflightIssue(check=check, severity=severity, message=message))
        if severity is Severity.CRITICAL:
            logger.error(f"[PreFlight] {check}: {message}")
        elif severity is Severity.WARNING:
            logger.warning(f"[PreFlight] {check}: {message}")
        else:
            logger.info(f"[PreFlight] {check}: {message}")


class PreflightChecker:
    """Runs the PreFlight checks for one project."""

    def __init__(
        self,
        project_root: Path,
        settings: Settings,
        runner: Optional[CommandRunner] = None,
        timeout: float = PREFLIGHT_TIMEOUT_SECONDS,
    ):
        """
        Initialize PreFlight checker.

        Args:
            project_root: Root of the project being deployed
            settings: Pipeline settings (package dirs, compose file, switches)
            runner: Command runner, replaceable in tests
            timeout: Hard timeout per command, in seconds
        """
        self.project_root = Path(project_root)
        self.settings = settings
        self.runner = runner or default_runner
        self.timeout = timeout

    def package_roots(self) -> List[Path]:
        roots = []
        for rel in self.settings.package_dirs:
            root = self.project_root / rel
            if (root / "package.json").exists():
                roots.append(root)
        return roots

    def run(self) -> PreflightReport:
        report = PreflightReport()
        start = time.time()

        logger.info("[PreFlight] Running static checks")
        if self.settings.skip_lockcheck:
            logger.info("[PreFlight] Lockfile check skipped")
        else:
            self.check_lockfiles(report)
        self.check_dependencies(report)
        self.check_syntax(report)
        self.check_types(report)
        self.check_compose_config(report)

        report.duration_ms = int((time.time() - start) * 1000)
        status = "BLOCKED" if report.blocked else "passed"
        logger.info(
            f"[PreFlight] {status}: {len(report.critical)} critical, "
            f"{len(report.warnings)} warnings, {len(report.remediations)} remediations"
        )
        return report

    def check_lockfiles(self, report: PreflightReport) -> None:
        for root in self.package_roots():
            lockfile = root / "package-lock.json"
            manifest = root / "package.json"
            if lockfile.exists() and lockfile.stat().st_mtime >= manifest.stat().st_mtime:
                continue

            reason = "missing" if not lockfile.exists() else "older than package.json"
            logger.info(f"[PreFlight] {lockfile} is {reason}, regenerating")
            result = self.runner(["npm", "install", "--package-lock-only"], root, self.timeout)
            if result.ok:
                report.remediations.append(f"Regenerated {lockfile}")
                report.add("lockfile", Severity.INFO, f"Regenerated {reason} lockfile in {root}")
            else:
                report.add(
                    "lockfile",
                    Severity.CRITICAL,
                    f"Lockfile in {root} is {reason} and regeneration failed: "
                    f"{result.output.strip()[-500:]}",
                )

    def check_dependencies(self, report: PreflightReport) -> None:
        for root in self.package_roots():
            if (root / "node_modules").exists():
                continue
            logger.info(f"[PreFlight] node_modules missing in {root}, installing")
            result = self.runner(["npm", "install"], root, self.timeout)
            if result.ok:
                report.remediations.append(f"Installed dependencies in {root}")
            else:
                report.add("dependencies", Severity.WARNING, f"npm install failed in {root}")

    def check_syntax(self, report: PreflightReport) -> None:
        for rel in self.settings.syntax_check_files:
            path = self.project_root / rel
            if not path.exists():
                report.add("syntax", Severity.CRITICAL, f"Entry file not found: {rel}")
                continue
            result = self.runner(["node", "--check", str(path)], self.project_root, self.timeout)
            if not result.ok:
                report.add(
                    "syntax",
                    Severity.CRITICAL,
                    f"Syntax error in {rel}: {result.output.strip()[-500:]}",
                )

    def check_types(self, report: PreflightReport) -> None:
        for root in self.package_roots():
            if not (root / "tsconfig.json").exists():
                continue
            result = self.runner(["npx", "tsc", "--noEmit"], root, self.timeout)
            if not result.ok:
                report.add("typescript", Severity.WARNING, f"Type check reported errors in {root}")

    def check_compose_config(self, report: PreflightReport) -> None:
        compose_file = self.project_root / self.settings.compose_file
        if not compose_file.exists():
            report.add("compose", Severity.WARNING, f"{self.settings.compose_file} not found")
            return

        argv = split_command(self.settings.compose_command) + [
            "-f",
            str(compose_file),
            "config",
            "--quiet",
        ]
        result = self.runner(argv, self.project_root, self.timeout)
        if not result.ok:
            report.add(
                "compose",
                Severity.CRITICAL,
                f"Invalid compose configuration: {result.output.strip()[-500:]}",
            )
