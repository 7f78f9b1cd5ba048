"""Tests for classification and ranking."""

from autoremedy.diagnosis import (
    SOURCE_HEURISTIC,
    SOURCE_MEMORY,
    SOURCE_PATTERN,
    SOURCE_STATIC,
    classify_output,
    extract_location,
    make_signature,
    rank_candidates,
)
from autoremedy.repair_memory import RepairMemoryEntry

BUILD_OUTPUT = """\
#12 [frontend 5/8] RUN npm run build
#12 4.1 src/app/page.tsx(12,7): error TS2322: Type 'string' is not assignable to type 'number'.
#12 4.2 Error: Cannot find module 'lodash/fp'
#12 4.3 src/lib/api.ts(40,3): error TS2322: Type 'Foo' is not assignable to type 'Bar'.
#12 ERROR: process "/bin/sh -c npm run build" did not complete successfully
"""


class TestSignatures:
    """Stable error signatures."""

    def test_signature_ignores_line_numbers_and_timestamps(self):
        a = make_signature("enoent", "2024-01-02T03:04:05Z ENOENT at file.js:10:4")
        b = make_signature("enoent", "2025-06-07T08:09:10Z ENOENT at file.js:99:1")
        assert a == b
        assert a.startswith("enoent:")

    def test_signature_without_text_is_key(self):
        assert make_signature("eresolve_generic") == "eresolve_generic"

    def test_different_text_different_signature(self):
        assert make_signature("missing_import", "lodash") != make_signature("missing_import", "react")

    def test_extract_location(self):
        assert extract_location("src/app/page.tsx(12,7): error TS2322") == ("src/app/page.tsx", 12)
        assert extract_location("./components/Nav.jsx:8:3 Module not found") == ("./components/Nav.jsx", 8)
        assert extract_location("no location here") == (None, None)


class TestClassifyOutput:
    """Whole-output classification."""

    def test_one_error_per_pattern_key(self):
        result = classify_output(BUILD_OUTPUT)
        assert not result.used_heuristic
        assert [e.key for e in result.errors] == ["type_mismatch", "missing_import"]
        assert result.category_counts() == {"typescript": 1, "import": 1}

    def test_classified_error_fields(self):
        error = classify_output(BUILD_OUTPUT).errors[0]
        assert error.source == SOURCE_PATTERN
        assert error.file == "src/app/page.tsx"
        assert error.line_number == 12
        assert error.groups == ("string", "number")
        assert error.confidence == 0.8
        assert error.signature == make_signature("type_mismatch", error.match)

    def test_heuristic_used_only_without_matches(self):
        # "ERESOLVE" alone matches no registered pattern
        result = classify_output("npm ERR! code ERESOLVE\nnpm ERR! While resolving: demo@1.0.0")
        assert result.used_heuristic
        error = result.errors[0]
        assert error.source == SOURCE_HEURISTIC
        assert error.category == "lockfile"
        assert error.fixes[0].name == "install_legacy_peer_deps"
        assert error.confidence == 0.85
        assert error.signature == "eresolve_generic"

    def test_heuristic_not_consulted_when_a_pattern_matched(self):
        output = "Error: Cannot find module 'express'\nsomething eresolve something"
        result = classify_output(output)
        assert not result.used_heuristic
        assert [e.key for e in result.errors] == ["missing_import"]

    def test_no_space_left_is_container_prune(self):
        result = classify_output("#5 ERROR: write /var/lib/docker/x: no space left on device")
        error = result.errors[0]
        assert error.category == "container"
        assert error.fixes[0].name == "docker_prune"
        assert error.fixes[0].confidence == 0.95

    def test_unclassifiable(self):
        result = classify_output("Step 1/3 : FROM node:20\nall good")
        assert not result.classified
        assert result.errors == []

    def test_empty_output(self):
        assert not classify_output("").classified


class TestRankCandidates:
    """Memory-backed fixes outrank static confidence."""

    def _error(self):
        return classify_output("npm ERR! ERESOLVE unable to resolve dependency tree").errors[0]

    def test_static_order_without_memory(self):
        ranked = rank_candidates(self._error())
        assert [r.name for r in ranked] == ["install_legacy_peer_deps", "fix_version_range"]
        assert all(r.source == SOURCE_STATIC for r in ranked)

    def test_memory_fix_goes_first(self):
        error = self._error()
        entry = RepairMemoryEntry(
            signature=error.signature,
            fix_name="fix_version_range",
            confidence=0.7,
            category="lockfile",
            description="Adjust version ranges",
            success_count=9,
            failure_count=1,
        )
        ranked = rank_candidates(error, entry, threshold=0.5)
        assert ranked[0].name == "fix_version_range"
        assert ranked[0].source == SOURCE_MEMORY
        assert ranked[0].confidence == 0.9
        # Not repeated further down
        assert [r.name for r in ranked] == ["fix_version_range", "install_legacy_peer_deps"]

    def test_memory_below_threshold_is_ignored(self):
        error = self._error()
        entry = RepairMemoryEntry(
            error.signature, "fix_version_range", 0.7, "lockfile", "", success_count=1, failure_count=1
        )
        assert rank_candidates(error, entry, threshold=0.5)[0].name == "install_legacy_peer_deps"

    def test_memory_fix_outside_static_list_still_first(self):
        error = self._error()
        entry = RepairMemoryEntry(
            error.signature, "install_force", 0.8, "lockfile", "", success_count=5, failure_count=0
        )
        ranked = rank_candidates(error, entry)
        assert [r.name for r in ranked] == ["install_force", "install_legacy_peer_deps", "fix_version_range"]

    def test_static_descriptions_use_groups(self):
        error = classify_output("Error: Cannot find module 'lodash/fp'").errors[0]
        assert rank_candidates(error)[0].description == "Install missing package: lodash/fp"
