"""Post-launch health verification.

After a settle delay, polls a small fixed battery of readiness signals:
- running vs declared compose services
- HTTP health probes (2xx, or statuses the probe explicitly accepts)
- containers stuck in a restart loop

Failures are reported as a degraded status. Nothing here rolls back.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

import requests

from .config import HealthProbeConfig, Settings
from .subprocess_streaming import CommandRunner, default_runner, split_command

logger = logging.getLogger(__name__)

COMMAND_TIMEOUT_SECONDS = 30


@dataclass
class HealthCheckResult:
    """Result of a single health check."""

    check_name: str
    passed: bool
    message: str
    duration_ms: int


@dataclass
class HealthReport:
    """Outcome of the HealthVerify battery."""

    results: List[HealthCheckResult] = field(default_factory=list)

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def degraded(self) -> bool:
        return self.passed < self.total

    @property
    def failures(self) -> List[HealthCheckResult]:
        return [r for r in self.results if not r.passed]


class HealthChecker:
    """Runs the HealthVerify battery against a launched service set."""

    def __init__(
        self,
        project_root: Path,
        settings: Settings,
        runner: Optional[CommandRunner] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize health checker.

        Args:
            project_root: Directory the compose commands run in
            settings: Probe list, compose command, settle delay
            runner: Command runner, replaceable in tests
            sleep: Sleep function used for the settle delay
        """
        self.project_root = Path(project_root)
        self.settings = settings
        self.runner = runner or default_runner
        self.sleep = sleep

    def _time_check(self, check_func) -> HealthCheckResult:
        """
        Execute a check function and time it.

        Args:
            check_func: Function that returns (check_name, passed, message)

        Returns:
            HealthCheckResult with timing information
        """
        start_time = time.time()
        check_name, passed, message = check_func()
        duration_ms = int((time.time() - start_time) * 1000)
        return HealthCheckResult(
            check_name=check_name,
            passed=passed,
            message=message,
            duration_ms=duration_ms,
        )

    def _compose(self, *args: str) -> List[str]:
        return split_command(self.settings.compose_command) + list(args)

    def check_services_running(self) -> tuple[str, bool, str]:
        """
        Compare running compose services against declared ones.

        Returns:
            Tuple of (check_name, passed, message)
        """
        declared = self.runner(
            self._compose("ps", "--services"), self.project_root, COMMAND_TIMEOUT_SECONDS
        )
        running = self.runner(
            self._compose("ps", "--services", "--filter", "status=running"),
            self.project_root,
            COMMAND_TIMEOUT_SECONDS,
        )
        if not declared.ok or not running.ok:
            return ("Services", False, "Could not query compose service status")

        total = len([s for s in declared.output.splitlines() if s.strip()])
        up = len([s for s in running.output.splitlines() if s.strip()])
        if total == 0:
            return ("Services", False, "No services declared")
        if up < total:
            return ("Services", False, f"{up}/{total} services running")
        return ("Services", True, f"{up}/{total} services running")

    def check_http_probe(self, probe: HealthProbeConfig) -> tuple[str, bool, str]:
        """
        GET a readiness endpoint.

        Returns:
            Tuple of (check_name, passed, message)
        """
        name = f"HTTP {probe.name}"
        try:
            response = requests.get(probe.url, timeout=probe.timeout_seconds)
        except requests.RequestException as e:
            return (name, False, f"{probe.url} unreachable: {e}")

        status = response.status_code
        if probe.accept_any or 200 <= status < 300 or status in probe.accept_statuses:
            return (name, True, f"{probe.url} responded {status}")
        return (name, False, f"{probe.url} responded {status}")

    def check_restart_loops(self) -> tuple[str, bool, str]:
        """
        Detect containers stuck restarting.

        Returns:
            Tuple of (check_name, passed, message)
        """
        result = self.runner(
            ["docker", "ps", "--filter", "status=restarting", "--format", "{{.Names}}"],
            self.project_root,
            COMMAND_TIMEOUT_SECONDS,
        )
        if not result.ok:
            return ("Restart Loop", False, "Could not query container status")

        name_filter = self.settings.container_name_filter
        restarting = [
            n.strip() for n in result.output.splitlines()
            if n.strip() and name_filter in n
        ]
        if restarting:
            return ("Restart Loop", False, f"Restarting: {', '.join(restarting)}")
        return ("Restart Loop", True, "No containers restarting")

    def run(self) -> HealthReport:
        """Wait for the settle delay, then run every check."""
        delay = self.settings.settle_delay_seconds
        if delay > 0:
            logger.info(f"[HealthVerify] Waiting {delay}s for services to settle")
            self.sleep(delay)

        report = HealthReport()
        report.results.append(self._time_check(self.check_services_running))
        for probe in self.settings.health_probes:
            report.results.append(self._time_check(lambda p=probe: self.check_http_probe(p)))
        report.results.append(self._time_check(self.check_restart_loops))

        for result in report.results:
            status = "PASS" if result.passed else "FAIL"
            logger.info(f"[HealthVerify] {status} {result.check_name}: {result.message}")
        logger.info(f"[HealthVerify] {report.passed}/{report.total} checks passed")
        return report
