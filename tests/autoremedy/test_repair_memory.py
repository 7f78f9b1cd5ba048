"""Tests for repair memory stores."""

import json
import shutil
import threading

import pytest

from autoremedy.exceptions import RepairMemoryError
from autoremedy.file_lock import FileLock
from autoremedy.repair_memory import (
    MEMORY_VERSION,
    InMemoryRepairMemory,
    JsonRepairMemory,
    RepairMemoryEntry,
)

SIG = "npm_eresolve:0123456789abcdef"


def _record(store, success, fix="install_legacy_peer_deps", signature=SIG):
    return store.record(
        signature, fix, 0.9, "lockfile", "Run npm install --legacy-peer-deps", success=success
    )


@pytest.fixture(params=["memory", "json"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryRepairMemory()
    return JsonRepairMemory(tmp_path / "data" / "repair-memory.json")


class TestEntry:
    """RepairMemoryEntry derived values."""

    def test_success_rate_without_outcomes(self):
        entry = RepairMemoryEntry(SIG, "docker_prune", 0.95, "container", "")
        assert entry.success_rate == 0.0
        assert not entry.deprecated

    def test_success_rate(self):
        entry = RepairMemoryEntry(
            SIG, "docker_prune", 0.95, "container", "", success_count=3, failure_count=1
        )
        assert entry.success_rate == 0.75

    def test_deprecated_needs_enough_outcomes(self):
        few = RepairMemoryEntry(SIG, "x", 0.5, "c", "", success_count=0, failure_count=3)
        many = RepairMemoryEntry(SIG, "x", 0.5, "c", "", success_count=1, failure_count=4)
        assert not few.deprecated
        assert many.deprecated

    def test_dict_round_trip(self):
        entry = RepairMemoryEntry(SIG, "x", 0.5, "c", "d", 2, 1, 3, "t0", "t1")
        assert RepairMemoryEntry.from_dict(entry.to_dict()) == entry


class TestRecord:
    """Behaviour shared by every store."""

    def test_lookup_unknown(self, store):
        assert store.lookup("nope") is None

    def test_record_creates_single_entry(self, store):
        _record(store, True)
        _record(store, False)
        _record(store, None)
        entries = store.entries()
        assert len(entries) == 1
        entry = entries[0]
        assert entry.success_count == 1
        assert entry.failure_count == 1
        assert entry.times_applied == 3
        assert entry.success_rate == 0.5

    def test_returned_entry_is_a_copy(self, store):
        entry = _record(store, True)
        entry.success_count = 99
        assert store.lookup(SIG).success_count == 1

    def test_switching_fix_resets_counters(self, store):
        _record(store, False)
        _record(store, False)
        entry = _record(store, True, fix="install_force")
        assert entry.fix_name == "install_force"
        assert entry.success_count == 1
        assert entry.failure_count == 0
        assert entry.times_applied == 1

    def test_preferred_requires_rate_above_threshold(self, store):
        _record(store, True)
        _record(store, False)
        assert store.preferred(SIG, threshold=0.5) is None
        _record(store, True)
        assert store.preferred(SIG, threshold=0.5).fix_name == "install_legacy_peer_deps"

    def test_record_outcome_counts_without_new_application(self, store):
        _record(store, None)
        entry = store.record_outcome(SIG, "install_legacy_peer_deps", True)
        assert entry.times_applied == 1
        assert entry.success_count == 1
        store.record_outcome(SIG, "install_legacy_peer_deps", False)
        assert store.lookup(SIG).failure_count == 1

    def test_record_outcome_for_switched_fix_is_dropped(self, store):
        _record(store, None)
        assert store.record_outcome(SIG, "install_force", True) is None
        assert store.record_outcome("unknown:sig", "docker_prune", True) is None
        assert store.lookup(SIG).outcomes == 0

    def test_stats(self, store):
        _record(store, True)
        _record(store, True, fix="docker_prune", signature="docker_no_space")
        _record(store, False, fix="docker_prune", signature="docker_no_space")
        for _ in range(4):
            _record(store, False, fix="check_logs", signature="exit_code_nonzero:abc")

        stats = store.stats()
        assert stats["total_patterns"] == 3
        assert stats["total_repairs"] == 2
        assert stats["avg_success_rate"] == 0.5
        assert stats["deprecated_fixes"] == 1
        assert stats["top_patterns"][0]["signature"] == "exit_code_nonzero:abc"


class TestJsonPersistence:
    """JsonRepairMemory on disk."""

    def test_persist_and_reload(self, tmp_path):
        path = tmp_path / "repair-memory.json"
        store = JsonRepairMemory(path)
        _record(store, True)
        _record(store, False)

        reloaded = JsonRepairMemory(path).lookup(SIG)
        assert reloaded.signature == SIG
        assert reloaded.fix_name == "install_legacy_peer_deps"
        assert reloaded.success_count == 1
        assert reloaded.failure_count == 1

    def test_file_format(self, tmp_path):
        path = tmp_path / "repair-memory.json"
        _record(JsonRepairMemory(path), True)
        data = json.loads(path.read_text())
        assert data["version"] == MEMORY_VERSION
        assert data["last_updated"]
        assert data["entries"][0]["signature"] == SIG

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / "repair-memory.json"
        path.write_text("{not json")
        store = JsonRepairMemory(path)
        assert store.entries() == []
        _record(store, True)
        assert JsonRepairMemory(path).lookup(SIG).success_count == 1

    def test_two_stores_share_the_file(self, tmp_path):
        path = tmp_path / "repair-memory.json"
        first = JsonRepairMemory(path)
        second = JsonRepairMemory(path)
        _record(first, True)
        _record(second, True)
        assert first.lookup(SIG).success_count == 2

    def test_concurrent_records_are_not_lost(self, tmp_path):
        path = tmp_path / "repair-memory.json"
        stores = [JsonRepairMemory(path) for _ in range(4)]

        def worker(store):
            for _ in range(5):
                _record(store, True)

        threads = [threading.Thread(target=worker, args=(s,)) for s in stores]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        entry = JsonRepairMemory(path).lookup(SIG)
        assert entry.times_applied == 20
        assert entry.success_count == 20

    def test_unusable_directory_reads_empty_and_fails_writes(self, tmp_path):
        blocker = tmp_path / "blocker"
        store = JsonRepairMemory(blocker / "repair-memory.json")
        _record(store, True)
        shutil.rmtree(blocker)
        blocker.write_text("not a directory")

        assert store.lookup(SIG) is None
        assert store.entries() == []
        with pytest.raises(RepairMemoryError):
            _record(store, True)

    def test_lock_timeout_raises_repair_memory_error(self, tmp_path):
        path = tmp_path / "repair-memory.json"
        store = JsonRepairMemory(path, lock_timeout=0.2)
        with FileLock(f"{path}.lock"):
            with pytest.raises(RepairMemoryError, match="lock"):
                _record(store, True)
        assert not path.exists()
