"""Pure classification and ranking of build output.

No I/O and no process spawning: everything here is a function of the build
output, the pattern registry and a repair memory entry, so it can be unit
tested exhaustively. Execution lives in ``remediation``.
"""

from __future__ import annotations

import hashlib
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .error_patterns import CandidateFix, PatternRegistry, get_registry
from .heuristics import HeuristicRule, diagnose
from .repair_memory import RepairMemoryEntry

SOURCE_PATTERN = "pattern"
SOURCE_HEURISTIC = "heuristic"
SOURCE_MEMORY = "memory"
SOURCE_STATIC = "static"

# Stripped before hashing so the same logical error keeps one signature
_NORMALIZE_PATTERNS = [
    re.compile(r"\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}[.\d]*Z?"),  # timestamps
    re.compile(r"0x[0-9a-fA-F]+"),  # memory addresses
    re.compile(r":\d+"),  # line/column numbers
    re.compile(r"\b\d{5,}\b"),  # large numbers (PIDs, etc.)
]

_FILE_REFERENCE = re.compile(
    r"((?:[\w@.-]+/)*[\w@.-]+\.(?:tsx?|jsx?|mjs|cjs|css|scss|sass|json|vue))[:(](\d+)"
)


def normalize_text(text: str) -> str:
    for pattern in _NORMALIZE_PATTERNS:
        text = pattern.sub("", text)
    return " ".join(text.split())


def make_signature(key: str, matched_text: str = "") -> str:
    """Canonical, stable error signature: ``<pattern key>:<hash of normalized match>``."""
    normalized = normalize_text(matched_text)
    if not normalized:
        return key
    digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:16]
    return f"{key}:{digest}"


def extract_location(line: str) -> Tuple[Optional[str], Optional[int]]:
    """Source file and line number named by an output line, if any."""
    m = _FILE_REFERENCE.search(line)
    if not m:
        return None, None
    return m.group(1), int(m.group(2))


@dataclass(frozen=True)
class ClassifiedError:
    """One recognized (or heuristically diagnosed) failure in build output."""

    signature: str
    key: str
    category: str
    fixes: Tuple[CandidateFix, ...]
    source: str = SOURCE_PATTERN
    match: str = ""
    groups: Tuple[Optional[str], ...] = ()
    line: str = ""
    file: Optional[str] = None
    line_number: Optional[int] = None
    message: str = ""

    @property
    def confidence(self) -> float:
        return self.fixes[0].confidence if self.fixes else 0.0

    def describe(self, fix: CandidateFix) -> str:
        if self.source == SOURCE_HEURISTIC:
            return fix.description_template or self.message
        return fix.describe(self.match, self.groups)


@dataclass(frozen=True)
class RankedFix:
    """A candidate fix in the order it should be tried."""

    name: str
    confidence: float
    description: str
    source: str = SOURCE_STATIC
    # Registry confidence of the fix; differs from ``confidence`` for memory picks
    prior_confidence: Optional[float] = None

    @property
    def static_confidence(self) -> float:
        return self.confidence if self.prior_confidence is None else self.prior_confidence


@dataclass
class ClassificationResult:
    errors: List[ClassifiedError] = field(default_factory=list)
    used_heuristic: bool = False

    @property
    def classified(self) -> bool:
        return bool(self.errors)

    def category_counts(self) -> dict:
        return dict(Counter(e.category for e in self.errors))

    def signatures(self) -> List[str]:
        return [e.signature for e in self.errors]


def classify_output(
    output: str,
    registry: Optional[PatternRegistry] = None,
    heuristic_rules: Optional[List[HeuristicRule]] = None,
) -> ClassificationResult:
    """Classify the combined output of one build.

    Every line goes through the pattern registry; one error is kept per
    pattern key (first occurrence wins). Only when no line matches at all is
    the heuristic diagnoser consulted, once, on the full text.
    """
    registry = registry or get_registry()
    errors: List[ClassifiedError] = []
    seen_keys = set()

    for line in (output or "").splitlines():
        match = registry.match_line(line)
        if match is None or match.key in seen_keys:
            continue
        seen_keys.add(match.key)
        file, line_number = extract_location(line)
        errors.append(
            ClassifiedError(
                signature=make_signature(match.key, match.match),
                key=match.key,
                category=match.category,
                fixes=match.fixes,
                source=SOURCE_PATTERN,
                match=match.match,
                groups=match.groups,
                line=match.line,
                file=file,
                line_number=line_number,
                message=match.describe(match.fixes[0]),
            )
        )

    if errors:
        return ClassificationResult(errors=errors)

    diagnosis = diagnose(output, heuristic_rules)
    if diagnosis is None:
        return ClassificationResult()

    fix = CandidateFix(
        name=diagnosis.suggested_fix,
        confidence=diagnosis.confidence,
        description_template=diagnosis.message,
    )
    heuristic_error = ClassifiedError(
        signature=make_signature(diagnosis.key),
        key=diagnosis.key,
        category=diagnosis.category,
        fixes=(fix,),
        source=SOURCE_HEURISTIC,
        message=diagnosis.message,
    )
    return ClassificationResult(errors=[heuristic_error], used_heuristic=True)


def rank_candidates(
    error: ClassifiedError,
    memory_entry: Optional[RepairMemoryEntry] = None,
    threshold: float = 0.5,
) -> List[RankedFix]:
    """Order the fixes to try for ``error``.

    A repair memory entry whose success rate is above ``threshold`` (and that
    is not deprecated) goes first; the static candidates follow by descending
    confidence. Each fix name appears once.
    """
    ranked: List[RankedFix] = []

    if (
        memory_entry is not None
        and not memory_entry.deprecated
        and memory_entry.success_rate > threshold
    ):
        prior = next(
            (f.confidence for f in error.fixes if f.name == memory_entry.fix_name),
            memory_entry.confidence,
        )
        ranked.append(
            RankedFix(
                name=memory_entry.fix_name,
                confidence=memory_entry.success_rate,
                description=memory_entry.description,
                source=SOURCE_MEMORY,
                prior_confidence=prior,
            )
        )

    static: Sequence[CandidateFix] = sorted(error.fixes, key=lambda f: f.confidence, reverse=True)
    for fix in static:
        if any(r.name == fix.name for r in ranked):
            continue
        ranked.append(
            RankedFix(
                name=fix.name,
                confidence=fix.confidence,
                description=error.describe(fix),
                source=SOURCE_STATIC,
            )
        )
    return ranked
