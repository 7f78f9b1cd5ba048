"""Remediation: pick and execute one fix for a set of classified errors.

Shared by the deploy orchestrator and the one-shot surgeon command. For each
classified error (in output order) the ranked candidates are resolved and
executed in turn; a candidate with no automated action or whose command
fails simply hands over to the next one. The first fix that executes
successfully ends the search.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .diagnosis import SOURCE_MEMORY, ClassifiedError, RankedFix, rank_candidates
from .exceptions import RepairMemoryError, UnknownFixError
from .fix_catalog import FixAction, FixCatalog, FixExecutionResult
from .repair_memory import RepairMemoryStore

logger = logging.getLogger(__name__)


class RemediationStatus(str, Enum):
    APPLIED = "applied"
    NOT_AUTOMATABLE = "not_automatable"
    ALL_FAILED = "all_failed"
    NO_ERRORS = "no_errors"
    ABORTED = "aborted"


@dataclass
class AppliedFix:
    """A fix that executed successfully, with what it was applied to."""

    error: ClassifiedError
    fix: RankedFix
    action: FixAction
    result: FixExecutionResult

    @property
    def signature(self) -> str:
        return self.error.signature


@dataclass
class RemediationOutcome:
    status: RemediationStatus
    applied: Optional[AppliedFix] = None
    failed: List[FixExecutionResult] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status is RemediationStatus.APPLIED


class Remediator:
    """Walks ranked candidates and executes the first one that works.

    Args:
        catalog: Resolves and executes fixes
        memory: Repair memory consulted for empirically preferred fixes
        success_threshold: Success rate a memory entry must exceed to go first
        abort_event: When set, no further fix is started
    """

    def __init__(
        self,
        catalog: FixCatalog,
        memory: RepairMemoryStore,
        success_threshold: float = 0.5,
        abort_event: Optional[threading.Event] = None,
    ):
        self.catalog = catalog
        self.memory = memory
        self.success_threshold = success_threshold
        self.abort_event = abort_event or threading.Event()

    def candidates_for(self, error: ClassifiedError) -> List[RankedFix]:
        try:
            entry = self.memory.lookup(error.signature)
        except RepairMemoryError as e:
            logger.warning(
                f"[RepairMemory] Lookup failed for {error.signature}, using static ranking: {e}"
            )
            entry = None
        ranked = rank_candidates(error, entry, self.success_threshold)
        if ranked and ranked[0].source == SOURCE_MEMORY:
            logger.info(
                f"[Remediation] {error.key}: repair memory prefers {ranked[0].name} "
                f"(success rate {ranked[0].confidence:.2f})"
            )
        return ranked

    def remediate(self, errors: List[ClassifiedError]) -> RemediationOutcome:
        if not errors:
            return RemediationOutcome(status=RemediationStatus.NO_ERRORS)

        failed: List[FixExecutionResult] = []
        skipped: List[str] = []

        for error in errors:
            for candidate in self.candidates_for(error):
                if self.abort_event.is_set():
                    logger.warning("[Remediation] Abort requested, not starting further fixes")
                    return RemediationOutcome(
                        status=RemediationStatus.ABORTED, failed=failed, skipped=skipped
                    )

                try:
                    action = self.catalog.resolve(candidate.name, error.groups)
                except UnknownFixError as e:
                    logger.warning(f"[Remediation] Skipping {candidate.name}: {e}")
                    skipped.append(candidate.name)
                    continue

                if action is None:
                    logger.info(
                        f"[Remediation] {error.key}: {candidate.name} has no automated action "
                        f"({candidate.description})"
                    )
                    skipped.append(candidate.name)
                    continue

                logger.info(
                    f"[Remediation] {error.key}: applying {action.describe()} "
                    f"[{candidate.source}, confidence {candidate.confidence:.2f}]"
                )
                result = self.catalog.execute(action)
                if result.ok:
                    return RemediationOutcome(
                        status=RemediationStatus.APPLIED,
                        applied=AppliedFix(error=error, fix=candidate, action=action, result=result),
                        failed=failed,
                        skipped=skipped,
                    )
                failed.append(result)

        status = RemediationStatus.ALL_FAILED if failed else RemediationStatus.NOT_AUTOMATABLE
        return RemediationOutcome(status=status, failed=failed, skipped=skipped)
