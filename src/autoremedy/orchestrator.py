"""Phase orchestrator for self-healing deploys.

State machine::

    PreFlight -> BuildRetry -> Launch -> HealthVerify -> Success
        |            |  ^         |            |
        |            +--+         |            |
        +------------+------------+------------+--> Escalated

- PreFlight: static checks. A critical finding escalates without spending
  any retry budget.
- BuildRetry: the build runs once; every failed build then consumes one
  attempt of diagnose -> fix -> rebuild. The attempt count never exceeds
  ``max_retries``. Unclassifiable output, errors with no automatable fix and
  a signature that keeps coming back all escalate.
- Launch: starts the service set. Failure is logged, HealthVerify reports it.
- HealthVerify: readiness battery. Failures mark the result degraded, they
  do not roll back and never send the pipeline back to BuildRetry.

Repair memory is updated once per attempt, after the rebuild has shown
whether the remediated signature went away. An aborted attempt is never
recorded.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from .config import Settings
from .diagnosis import ClassificationResult, ClassifiedError, classify_output
from .error_patterns import PatternRegistry, get_registry
from .exceptions import AutoremedyError, InvalidTransitionError, RepairMemoryError
from .fix_catalog import FixCatalog
from .health_checks import HealthChecker, HealthReport
from .preflight import PreflightChecker, PreflightReport
from .remediation import AppliedFix, RemediationStatus, Remediator
from .repair_memory import RepairMemoryStore
from .subprocess_streaming import (
    CommandRunner,
    default_runner,
    run_with_streaming,
    split_command,
)

logger = logging.getLogger(__name__)


class PipelinePhase(str, Enum):
    PREFLIGHT = "preflight"
    BUILD_RETRY = "build_retry"
    LAUNCH = "launch"
    HEALTH_VERIFY = "health_verify"
    SUCCESS = "success"
    ESCALATED = "escalated"


ALLOWED_TRANSITIONS: Dict[PipelinePhase, frozenset] = {
    PipelinePhase.PREFLIGHT: frozenset({PipelinePhase.BUILD_RETRY, PipelinePhase.ESCALATED}),
    PipelinePhase.BUILD_RETRY: frozenset(
        {PipelinePhase.BUILD_RETRY, PipelinePhase.LAUNCH, PipelinePhase.ESCALATED}
    ),
    PipelinePhase.LAUNCH: frozenset({PipelinePhase.HEALTH_VERIFY, PipelinePhase.ESCALATED}),
    PipelinePhase.HEALTH_VERIFY: frozenset({PipelinePhase.SUCCESS, PipelinePhase.ESCALATED}),
    PipelinePhase.SUCCESS: frozenset(),
    PipelinePhase.ESCALATED: frozenset(),
}

TERMINAL_PHASES = frozenset({PipelinePhase.SUCCESS, PipelinePhase.ESCALATED})


class EscalationReason(str, Enum):
    PREFLIGHT_FAILED = "preflight_failed"
    UNCLASSIFIED = "unclassified"
    NOT_AUTOMATABLE = "not_automatable"
    REPEATED_SIGNATURE = "repeated_signature"
    RETRY_BUDGET_EXHAUSTED = "retry_budget_exhausted"
    ABORTED = "aborted"


class AttemptOutcome(str, Enum):
    REBUILD_SUCCEEDED = "rebuild_succeeded"
    REBUILD_FAILED = "rebuild_failed"
    UNCLASSIFIED = "unclassified"
    NOT_AUTOMATABLE = "not_automatable"
    ABORTED = "aborted"


@dataclass
class BuildResult:
    """Opaque build tool result: exit status plus combined output."""

    ok: bool
    output: str
    returncode: int = 0
    log_path: Optional[Path] = None


class BuildTool(Protocol):
    def run(self, label: str) -> BuildResult:
        ...


class ExternalBuildTool:
    """Runs the configured build command, streaming output to a log file."""

    def __init__(self, project_root: Path, command: List[str], log_dir: Path, timeout: float):
        self.project_root = Path(project_root)
        self.command = command
        self.log_dir = Path(log_dir)
        self.timeout = timeout

    def run(self, label: str) -> BuildResult:
        result = run_with_streaming(
            command=self.command,
            log_path=self.log_dir / f"build-{label}.log",
            cwd=self.project_root,
            timeout=self.timeout,
        )
        return BuildResult(
            ok=result.ok,
            output=result.read_output(),
            returncode=result.returncode,
            log_path=result.log_path,
        )


@dataclass
class BuildAttempt:
    """One diagnose -> fix -> rebuild cycle. Kept in logs, never persisted."""

    attempt_number: int
    raw_output: str
    classified_errors: List[ClassifiedError] = field(default_factory=list)
    fixes_applied: List[str] = field(default_factory=list)
    outcome: Optional[AttemptOutcome] = None
    signature_resolved: Optional[bool] = None


@dataclass
class PipelineResult:
    """Final state of one pipeline invocation."""

    phase: PipelinePhase
    attempts: List[BuildAttempt] = field(default_factory=list)
    phase_history: List[PipelinePhase] = field(default_factory=list)
    escalation_reason: Optional[EscalationReason] = None
    message: str = ""
    preflight: Optional[PreflightReport] = None
    health: Optional[HealthReport] = None
    launch_ok: Optional[bool] = None

    @property
    def succeeded(self) -> bool:
        return self.phase is PipelinePhase.SUCCESS

    @property
    def degraded(self) -> bool:
        return self.health is not None and self.health.degraded

    @property
    def exit_code(self) -> int:
        """0 on success (degraded or not), 1 when a human has to step in."""
        return 0 if self.succeeded else 1


class DeployOrchestrator:
    """Drives one project through the deploy phases.

    Every collaborator is injectable; defaults are built from ``settings``.
    One instance runs one pipeline invocation. Invocations for different
    targets use separate instances and only share the repair memory store.

    Args:
        project_root: Project being deployed
        settings: Pipeline settings
        memory: Repair memory store
        catalog: Fix catalog (default: built from settings)
        build_tool: External build tool (default: configured build command)
        preflight: PreFlight checker
        health_checker: HealthVerify battery
        registry: Error pattern registry (default: built-in patterns)
        runner: Command runner shared by the default catalog, PreFlight,
            HealthVerify and the launch command
    """

    def __init__(
        self,
        project_root: Path,
        settings: Settings,
        memory: RepairMemoryStore,
        catalog: Optional[FixCatalog] = None,
        build_tool: Optional[BuildTool] = None,
        preflight: Optional[PreflightChecker] = None,
        health_checker: Optional[HealthChecker] = None,
        registry: Optional[PatternRegistry] = None,
        runner: Optional[CommandRunner] = None,
    ):
        self.project_root = Path(project_root)
        self.settings = settings
        self.memory = memory
        self.registry = registry or get_registry()
        self.runner = runner or default_runner
        self.catalog = catalog or FixCatalog(
            self.project_root,
            package_dirs=settings.package_dirs,
            timeout=settings.fix_timeout_seconds,
            runner=self.runner,
        )
        # Every fix a pattern can suggest must be known before anything runs
        FixCatalog.validate(self.registry.registered_fix_names())

        self.build_tool = build_tool or ExternalBuildTool(
            self.project_root,
            split_command(settings.build_command),
            settings.log_directory(self.project_root),
            settings.build_timeout_seconds,
        )
        self.preflight = preflight or PreflightChecker(self.project_root, settings, runner=self.runner)
        self.health_checker = health_checker or HealthChecker(
            self.project_root, settings, runner=self.runner
        )

        self._abort = threading.Event()
        self.remediator = Remediator(
            self.catalog,
            memory,
            success_threshold=settings.memory_success_threshold,
            abort_event=self._abort,
        )
        self.phase = PipelinePhase.PREFLIGHT
        self._started = False
        self._result = PipelineResult(phase=self.phase, phase_history=[self.phase])

    # State machine

    def abort(self) -> None:
        """Request cancellation. Safe to call from another thread."""
        logger.warning("[Pipeline] Abort requested")
        self._abort.set()

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    @property
    def finished(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def _transition(self, target: PipelinePhase) -> None:
        if target not in ALLOWED_TRANSITIONS[self.phase]:
            raise InvalidTransitionError(self.phase.value, target.value)
        logger.info(f"[Pipeline] {self.phase.value} -> {target.value}")
        self.phase = target
        self._result.phase = target
        self._result.phase_history.append(target)

    def _escalate(self, reason: EscalationReason, message: str) -> PipelineResult:
        self._result.escalation_reason = reason
        self._result.message = message
        self._transition(PipelinePhase.ESCALATED)
        logger.error(f"[Pipeline] ESCALATED ({reason.value}): {message}")
        return self._result

    # Phases

    def run(self) -> PipelineResult:
        """Run the pipeline to a terminal phase."""
        if self._started:
            raise AutoremedyError("A DeployOrchestrator runs a single pipeline invocation")
        self._started = True

        logger.info(f"[Pipeline] Starting deploy of {self.project_root}")

        if not self._run_preflight():
            return self._result
        self._transition(PipelinePhase.BUILD_RETRY)

        if not self._run_build_retry():
            return self._result
        if self.aborted:
            return self._escalate(EscalationReason.ABORTED, "Aborted after a successful build")
        self._transition(PipelinePhase.LAUNCH)

        self._run_launch()
        self._transition(PipelinePhase.HEALTH_VERIFY)

        health = self.health_checker.run()
        self._result.health = health
        self._result.message = (
            f"Deployed with degraded health ({health.passed}/{health.total} checks passed)"
            if health.degraded
            else "Deployed, all health checks passed"
        )
        self._transition(PipelinePhase.SUCCESS)
        log = logger.warning if health.degraded else logger.info
        log(f"[Pipeline] {self._result.message}")
        return self._result

    def _run_preflight(self) -> bool:
        if self.settings.skip_preflight:
            logger.info("[PreFlight] Skipped")
            return True

        report = self.preflight.run()
        self._result.preflight = report
        if report.blocked:
            details = "; ".join(f"{i.check}: {i.message}" for i in report.critical)
            self._escalate(EscalationReason.PREFLIGHT_FAILED, details)
            return False
        return True

    def _run_build_retry(self) -> bool:
        """Returns True once a build succeeds; False after escalating."""
        max_retries = self.settings.max_retries
        same_signature_failures: Counter = Counter()

        logger.info("[BuildRetry] Initial build")
        build = self.build_tool.run("initial")
        if build.ok:
            logger.info("[BuildRetry] Build succeeded")
            return True

        for attempt_number in range(1, max_retries + 1):
            attempt = BuildAttempt(attempt_number=attempt_number, raw_output=build.output)
            self._result.attempts.append(attempt)
            logger.info(f"[BuildRetry] Attempt {attempt_number}/{max_retries}: diagnosing build failure")

            if self.aborted:
                attempt.outcome = AttemptOutcome.ABORTED
                self._escalate(EscalationReason.ABORTED, "Aborted before remediation")
                return False

            classification = classify_output(build.output, self.registry)
            attempt.classified_errors = list(classification.errors)
            self._log_classification(classification)

            if not classification.classified:
                attempt.outcome = AttemptOutcome.UNCLASSIFIED
                self._escalate(
                    EscalationReason.UNCLASSIFIED,
                    "Build failed with output that matches no known pattern or heuristic",
                )
                return False

            outcome = self.remediator.remediate(classification.errors)
            if outcome.status is RemediationStatus.ABORTED:
                attempt.outcome = AttemptOutcome.ABORTED
                self._escalate(EscalationReason.ABORTED, "Aborted before applying a fix")
                return False
            if not outcome.ok:
                attempt.outcome = AttemptOutcome.NOT_AUTOMATABLE
                keys = ", ".join(e.key for e in classification.errors)
                if outcome.status is RemediationStatus.ALL_FAILED:
                    detail = "every automated fix failed"
                else:
                    detail = "recognized but not automatable"
                self._escalate(EscalationReason.NOT_AUTOMATABLE, f"{keys}: {detail}")
                return False

            applied = outcome.applied
            attempt.fixes_applied.append(applied.fix.name)

            if self.aborted:
                # The fix ran but was never verified; leave repair memory untouched
                attempt.outcome = AttemptOutcome.ABORTED
                self._escalate(EscalationReason.ABORTED, "Aborted before verifying the applied fix")
                return False

            logger.info(f"[BuildRetry] Attempt {attempt_number}/{max_retries}: rebuilding")
            build = self.build_tool.run(f"attempt-{attempt_number}")

            if build.ok:
                resolved = True
            else:
                resolved = applied.signature not in classify_output(build.output, self.registry).signatures()
            attempt.signature_resolved = resolved

            self._record_outcome(applied, resolved)

            if build.ok:
                attempt.outcome = AttemptOutcome.REBUILD_SUCCEEDED
                logger.info(f"[BuildRetry] Build succeeded after attempt {attempt_number}")
                return True

            attempt.outcome = AttemptOutcome.REBUILD_FAILED
            if not resolved:
                same_signature_failures[applied.signature] += 1
                count = same_signature_failures[applied.signature]
                logger.warning(
                    f"[BuildRetry] {applied.error.key} persists after {applied.fix.name} "
                    f"({count} time(s))"
                )
                if count >= self.settings.max_same_signature_failures:
                    self._escalate(
                        EscalationReason.REPEATED_SIGNATURE,
                        f"{applied.error.key} still failing after {count} remediation attempts",
                    )
                    return False

            if attempt_number < max_retries:
                self._transition(PipelinePhase.BUILD_RETRY)

        self._escalate(
            EscalationReason.RETRY_BUDGET_EXHAUSTED,
            f"Build still failing after {max_retries} attempts",
        )
        return False

    def _record_outcome(self, applied: AppliedFix, resolved: bool) -> None:
        try:
            self.memory.record(
                applied.signature,
                applied.fix.name,
                applied.fix.static_confidence,
                applied.error.category,
                applied.fix.description,
                success=resolved,
            )
        except RepairMemoryError as e:
            logger.warning(f"[RepairMemory] Outcome for {applied.signature} not recorded: {e}")

    def _log_classification(self, classification: ClassificationResult) -> None:
        if classification.used_heuristic:
            error = classification.errors[0]
            logger.info(f"[BuildRetry] Heuristic diagnosis: {error.category}: {error.message}")
            return
        for error in classification.errors:
            location = f" ({error.file}:{error.line_number})" if error.file else ""
            logger.info(f"[BuildRetry] [{error.category}] {error.key}{location}: {error.line[:200]}")
        counts = ", ".join(f"{k}={v}" for k, v in classification.category_counts().items())
        logger.info(f"[BuildRetry] {len(classification.errors)} error(s) classified: {counts}")

    def _run_launch(self) -> None:
        argv = split_command(self.settings.up_command)
        logger.info(f"[Launch] {' '.join(argv)}")
        result = self.runner(argv, self.project_root, self.settings.launch_timeout_seconds)
        self._result.launch_ok = result.ok
        if result.ok:
            logger.info("[Launch] Services started")
        else:
            logger.error(
                f"[Launch] Start command failed (exit {result.returncode}); "
                f"continuing to health verification: {result.output.strip()[-500:]}"
            )
