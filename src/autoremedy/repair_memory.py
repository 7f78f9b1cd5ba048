"""Repair memory: which fixes actually worked for which error signatures.

One entry per error signature records the fix applied most recently, how
often it was applied and how often it helped. Empirical evidence outranks the
static confidence of the pattern registry: an entry whose success rate clears
a threshold is tried before the static ranking.

Two stores are provided:
- InMemoryRepairMemory: process-local, for tests and dry runs
- JsonRepairMemory: persisted to a JSON file, shared between concurrent
  pipeline invocations (concurrent readers, serialized writers)

Example:
    >>> memory = JsonRepairMemory(Path("data/repair-memory.json"))
    >>> memory.record("npm_eresolve:...", "install_legacy_peer_deps", 0.9,
    ...               "lockfile", "Run npm install --legacy-peer-deps", success=True)
    >>> memory.lookup("npm_eresolve:...").success_rate
    1.0
"""

from __future__ import annotations

import copy
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from .exceptions import RepairMemoryError
from .file_lock import FileLock

logger = logging.getLogger(__name__)

MEMORY_VERSION = "1.0.0"

# An entry with at least this many outcomes and a success rate below the
# floor is deprecated: kept for the record but never preferred
DEPRECATION_MIN_OUTCOMES = 4
DEPRECATION_RATE_FLOOR = 0.3

DEFAULT_MEMORY_STRUCTURE: dict[str, Any] = {
    "version": MEMORY_VERSION,
    "entries": [],
    "last_updated": None,
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class RepairMemoryEntry:
    """Empirical record for one error signature."""

    signature: str
    fix_name: str
    confidence: float
    category: str
    description: str
    success_count: int = 0
    failure_count: int = 0
    times_applied: int = 0
    first_seen_at: Optional[str] = None
    last_used_at: Optional[str] = None

    @property
    def outcomes(self) -> int:
        return self.success_count + self.failure_count

    @property
    def success_rate(self) -> float:
        """successCount / (successCount + failureCount), 0.0 before any outcome."""
        if self.outcomes == 0:
            return 0.0
        return self.success_count / self.outcomes

    @property
    def deprecated(self) -> bool:
        return (
            self.outcomes >= DEPRECATION_MIN_OUTCOMES
            and self.success_rate < DEPRECATION_RATE_FLOOR
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RepairMemoryEntry":
        return cls(
            signature=data["signature"],
            fix_name=data["fix_name"],
            confidence=float(data.get("confidence", 0.0)),
            category=data.get("category", ""),
            description=data.get("description", ""),
            success_count=int(data.get("success_count", 0)),
            failure_count=int(data.get("failure_count", 0)),
            times_applied=int(data.get("times_applied", 0)),
            first_seen_at=data.get("first_seen_at"),
            last_used_at=data.get("last_used_at"),
        )


def apply_record(
    entries: dict[str, RepairMemoryEntry],
    signature: str,
    fix_name: str,
    confidence: float,
    category: str,
    description: str,
    success: Optional[bool] = None,
) -> RepairMemoryEntry:
    """Create or update the single entry for ``signature`` in ``entries``.

    When a different fix is recorded for a known signature the entry switches
    to it and its counters restart, since the old evidence described another fix.
    """
    now = _now()
    entry = entries.get(signature)

    if entry is None:
        entry = RepairMemoryEntry(
            signature=signature,
            fix_name=fix_name,
            confidence=confidence,
            category=category,
            description=description,
            first_seen_at=now,
        )
        entries[signature] = entry
    elif entry.fix_name != fix_name:
        logger.info(
            f"[RepairMemory] {signature}: switching fix {entry.fix_name} -> {fix_name}"
        )
        entry.fix_name = fix_name
        entry.success_count = 0
        entry.failure_count = 0
        entry.times_applied = 0

    entry.confidence = confidence
    entry.category = category
    entry.description = description
    entry.times_applied += 1
    entry.last_used_at = now
    if success is True:
        entry.success_count += 1
    elif success is False:
        entry.failure_count += 1

    return entry


def apply_outcome(
    entries: dict[str, RepairMemoryEntry],
    signature: str,
    fix_name: str,
    success: bool,
) -> Optional[RepairMemoryEntry]:
    """Count a verified outcome for an application that was already recorded.

    Returns None (and changes nothing) when the entry is gone or has since
    switched to another fix.
    """
    entry = entries.get(signature)
    if entry is None or entry.fix_name != fix_name:
        return None
    if success:
        entry.success_count += 1
    else:
        entry.failure_count += 1
    entry.last_used_at = _now()
    return entry


class RepairMemoryStore(ABC):
    """Storage interface injected into the orchestrator."""

    @abstractmethod
    def lookup(self, signature: str) -> Optional[RepairMemoryEntry]:
        """Return a copy of the entry for ``signature``, or None."""

    @abstractmethod
    def record(
        self,
        signature: str,
        fix_name: str,
        confidence: float,
        category: str,
        description: str,
        success: Optional[bool] = None,
    ) -> RepairMemoryEntry:
        """Create or update the entry for ``signature``; returns a copy."""

    @abstractmethod
    def record_outcome(
        self, signature: str, fix_name: str, success: bool
    ) -> Optional[RepairMemoryEntry]:
        """Count the verified outcome of an earlier ``record`` without a new application."""

    @abstractmethod
    def entries(self) -> list[RepairMemoryEntry]:
        """Copies of all entries."""

    def preferred(self, signature: str, threshold: float = 0.5) -> Optional[RepairMemoryEntry]:
        """The entry for ``signature`` if its evidence beats the static ranking."""
        entry = self.lookup(signature)
        if entry is None or entry.deprecated:
            return None
        if entry.success_rate > threshold:
            return entry
        return None

    def stats(self) -> dict[str, Any]:
        """Summary statistics across all entries."""
        entries = self.entries()
        rated = [e for e in entries if e.outcomes > 0]
        top = sorted(entries, key=lambda e: e.times_applied, reverse=True)[:5]
        return {
            "total_patterns": len(entries),
            "total_repairs": sum(e.success_count for e in entries),
            "avg_success_rate": (
                round(sum(e.success_rate for e in rated) / len(rated), 3) if rated else 0.0
            ),
            "top_patterns": [
                {
                    "signature": e.signature,
                    "fix_name": e.fix_name,
                    "times_applied": e.times_applied,
                    "success_rate": round(e.success_rate, 3),
                }
                for e in top
            ],
            "deprecated_fixes": sum(1 for e in entries if e.deprecated),
        }


class InMemoryRepairMemory(RepairMemoryStore):
    """Process-local store."""

    def __init__(self, entries: Optional[list[RepairMemoryEntry]] = None):
        self._lock = threading.RLock()
        self._entries: dict[str, RepairMemoryEntry] = {}
        for entry in entries or []:
            self._entries[entry.signature] = copy.deepcopy(entry)

    def lookup(self, signature: str) -> Optional[RepairMemoryEntry]:
        with self._lock:
            entry = self._entries.get(signature)
            return copy.deepcopy(entry) if entry else None

    def record(self, signature, fix_name, confidence, category, description, success=None):
        with self._lock:
            entry = apply_record(
                self._entries, signature, fix_name, confidence, category, description, success
            )
            return copy.deepcopy(entry)

    def record_outcome(self, signature, fix_name, success):
        with self._lock:
            entry = apply_outcome(self._entries, signature, fix_name, success)
            return copy.deepcopy(entry) if entry else None

    def entries(self) -> list[RepairMemoryEntry]:
        with self._lock:
            return [copy.deepcopy(e) for e in self._entries.values()]


class JsonRepairMemory(RepairMemoryStore):
    """Repair memory persisted to a JSON file.

    File format::

        {"version": "1.0.0", "last_updated": "...", "entries": [{...}, ...]}

    Writes are read-modify-write under a cross-process file lock and land via
    an atomic rename, so concurrent invocations never lose each other's
    updates and readers never see a half-written file. A corrupt file is
    logged and treated as empty.
    """

    def __init__(self, memory_path: Path, lock_timeout: float = 30.0):
        """Initialize with memory file path.

        Args:
            memory_path: Path to the repair memory JSON file
            lock_timeout: Seconds to wait for the write lock
        """
        self.memory_path = Path(memory_path)
        self._lock = threading.RLock()
        self._file_lock = FileLock(f"{self.memory_path}.lock", timeout=lock_timeout)
        self._entries: dict[str, RepairMemoryEntry] = {}
        self._loaded_stamp: Optional[tuple] = None
        self._reload()

    def _current_stamp(self) -> Optional[tuple]:
        # Every write lands via os.replace, so the inode changes even when two
        # writes fall within one timestamp tick
        try:
            st = self.memory_path.stat()
        except OSError:
            return None
        return (st.st_mtime_ns, st.st_ino, st.st_size)

    def _reload(self) -> None:
        self._entries = self._read_file()
        self._loaded_stamp = self._current_stamp()

    def _refresh_if_stale(self) -> None:
        if self._current_stamp() != self._loaded_stamp:
            self._reload()

    def _read_file(self) -> dict[str, RepairMemoryEntry]:
        if not self.memory_path.exists():
            return {}
        try:
            data = json.loads(self.memory_path.read_text(encoding="utf-8"))
            entries = {}
            for raw in data.get("entries", []):
                entry = RepairMemoryEntry.from_dict(raw)
                entries[entry.signature] = entry
            logger.debug(f"[RepairMemory] Loaded {len(entries)} entries from {self.memory_path}")
            return entries
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(
                f"[RepairMemory] Failed to parse {self.memory_path}: {e}\n"
                f"  Starting with empty memory."
            )
            return {}

    def _write_file(self) -> None:
        payload = copy.deepcopy(DEFAULT_MEMORY_STRUCTURE)
        payload["entries"] = [e.to_dict() for e in self._entries.values()]
        payload["last_updated"] = _now()

        tmp_path = self.memory_path.with_name(f"{self.memory_path.name}.{os.getpid()}.tmp")
        try:
            self.memory_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, self.memory_path)
        except OSError as e:
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError:
                pass  # Parent directory is unusable, nothing was written
            raise RepairMemoryError(f"Cannot write repair memory {self.memory_path}: {e}") from e
        self._loaded_stamp = self._current_stamp()

    def lookup(self, signature: str) -> Optional[RepairMemoryEntry]:
        with self._lock:
            self._refresh_if_stale()
            entry = self._entries.get(signature)
            return copy.deepcopy(entry) if entry else None

    def _locked_update(self, update):
        """Reload, apply ``update`` to the entries and write back, all under the file lock.

        Raises:
            RepairMemoryError: If the lock cannot be taken or the file cannot be written
        """
        try:
            self._file_lock.acquire()
        except (TimeoutError, RuntimeError, OSError) as e:
            raise RepairMemoryError(f"Cannot lock repair memory {self.memory_path}: {e}") from e
        try:
            # Pick up writes from other processes before mutating
            self._reload()
            entry = update(self._entries)
            if entry is not None:
                self._write_file()
            return entry
        finally:
            self._file_lock.release()

    def _log_entry(self, entry: RepairMemoryEntry) -> None:
        logger.info(
            f"[RepairMemory] {entry.signature} -> {entry.fix_name}: "
            f"{entry.success_count} ok / {entry.failure_count} failed "
            f"(rate {entry.success_rate:.2f})"
        )

    def record(self, signature, fix_name, confidence, category, description, success=None):
        with self._lock:
            entry = self._locked_update(
                lambda entries: apply_record(
                    entries, signature, fix_name, confidence, category, description, success
                )
            )
            self._log_entry(entry)
            return copy.deepcopy(entry)

    def record_outcome(self, signature, fix_name, success):
        with self._lock:
            entry = self._locked_update(
                lambda entries: apply_outcome(entries, signature, fix_name, success)
            )
            if entry is None:
                logger.info(
                    f"[RepairMemory] {signature}: no entry for {fix_name}, outcome dropped"
                )
                return None
            self._log_entry(entry)
            return copy.deepcopy(entry)

    def entries(self) -> list[RepairMemoryEntry]:
        with self._lock:
            self._refresh_if_stale()
            return [copy.deepcopy(e) for e in self._entries.values()]
