"""Heuristic fallback diagnoser.

Used only when no registered pattern matches any line of the build output.
Scans the whole text for broad keyword signals and returns a coarse,
lower-confidence diagnosis so that an unrecognized failure does not have to
escalate immediately.

Rules are an ordered list of (predicate, diagnosis) pairs evaluated in
priority order; the first rule whose predicate holds wins.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

_TS_ERROR_CODE = re.compile(r"error TS\d+", re.IGNORECASE)


@dataclass(frozen=True)
class HeuristicDiagnosis:
    """Coarse diagnosis of otherwise unclassified output."""

    key: str
    category: str
    message: str
    suggested_fix: str
    confidence: float


@dataclass(frozen=True)
class HeuristicRule:
    """One keyword rule.

    ``predicate`` receives the lowercased full output. ``message`` is either a
    string or a callable receiving the original output.
    """

    key: str
    category: str
    predicate: Callable[[str], bool]
    message: object
    suggested_fix: str
    confidence: float

    def applies(self, lowered: str) -> bool:
        return self.predicate(lowered)

    def diagnose(self, output: str) -> HeuristicDiagnosis:
        message = self.message(output) if callable(self.message) else self.message
        return HeuristicDiagnosis(
            key=self.key,
            category=self.category,
            message=message,
            suggested_fix=self.suggested_fix,
            confidence=self.confidence,
        )


def _any(*needles: str) -> Callable[[str], bool]:
    return lambda text: any(n in text for n in needles)


def _all(*checks: Callable[[str], bool]) -> Callable[[str], bool]:
    return lambda text: all(check(text) for check in checks)


def _typescript_message(output: str) -> str:
    count = len(_TS_ERROR_CODE.findall(output))
    return f"TypeScript compilation failed with {count or 'unknown'} error(s)"


DEFAULT_RULES: List[HeuristicRule] = [
    HeuristicRule(
        key="npm_ci_lockfile_generic",
        category="lockfile",
        predicate=_all(_any("npm ci"), _any("lockfile", "package-lock")),
        message="npm ci failed due to lockfile issue",
        suggested_fix="regenerate_lockfile",
        confidence=0.9,
    ),
    HeuristicRule(
        key="eresolve_generic",
        category="lockfile",
        predicate=_any("eresolve"),
        message="npm dependency resolution failed (ERESOLVE)",
        suggested_fix="install_legacy_peer_deps",
        confidence=0.85,
    ),
    HeuristicRule(
        key="typescript_generic",
        category="typescript",
        predicate=_any("error ts", "type error"),
        message=_typescript_message,
        suggested_fix="fix_typescript_errors",
        confidence=0.7,
    ),
    HeuristicRule(
        key="nextjs_build_generic",
        category="nextjs",
        predicate=_all(_any("next build"), _any("failed")),
        message="Next.js build failed",
        suggested_fix="check_next_build_output",
        confidence=0.6,
    ),
    HeuristicRule(
        key="eslint_generic",
        category="eslint",
        predicate=_all(_any("eslint"), _any("error", "problems")),
        message="ESLint found errors that block the build",
        suggested_fix="fix_eslint_errors",
        confidence=0.7,
    ),
    HeuristicRule(
        key="no_space_generic",
        category="container",
        predicate=_any("no space left"),
        message="No disk space left on device",
        suggested_fix="docker_prune",
        confidence=0.95,
    ),
    HeuristicRule(
        key="native_module_generic",
        category="native",
        predicate=_any("gyp err", "node-pre-gyp", "prebuild-install"),
        message="Native module compilation failed",
        suggested_fix="install_build_tools",
        confidence=0.8,
    ),
    HeuristicRule(
        key="permission_generic",
        category="runtime",
        predicate=_any("eacces", "permission denied"),
        message="Permission denied during build",
        suggested_fix="fix_permissions",
        confidence=0.8,
    ),
    HeuristicRule(
        key="network_generic",
        category="network",
        predicate=_any("etimedout", "econnrefused", "fetch failed"),
        message="Network error during build (timeout or connection refused)",
        suggested_fix="check_network_retry",
        confidence=0.7,
    ),
]


def diagnose(output: str, rules: Optional[List[HeuristicRule]] = None) -> Optional[HeuristicDiagnosis]:
    """Return the first matching coarse diagnosis for ``output``, or None."""
    if not output or not output.strip():
        return None

    lowered = output.lower()
    for rule in rules if rules is not None else DEFAULT_RULES:
        if rule.applies(lowered):
            diagnosis = rule.diagnose(output)
            logger.info(
                f"[Heuristics] {diagnosis.category}: {diagnosis.message} "
                f"(suggest {diagnosis.suggested_fix}, confidence {diagnosis.confidence})"
            )
            return diagnosis
    return None
