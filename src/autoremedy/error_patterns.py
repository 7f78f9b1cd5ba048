"""Error pattern matcher for build tool output.

Classifies one line of combined build output against a registry of known
failure signatures. Each pattern carries a ranked list of candidate fixes.

Key principles:
- Deterministic: pure regex/literal matching, no side effects
- Explicit tie-breaking: every pattern has a priority (lower wins), equal
  priorities resolve by registration order
- Extensible: extra patterns load from YAML without touching orchestration
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Pattern, Sequence, Tuple, Union

import yaml

from .exceptions import RegistryError

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 100
# Broad catch-all patterns that should only win when nothing specific matched
GENERIC_PRIORITY = 200
# Symptoms that are usually the root cause when they share a line with a generic one
SPECIFIC_PRIORITY = 50

Matcher = Union[str, Pattern[str]]


@dataclass(frozen=True)
class CandidateFix:
    """A named remediation with an a-priori confidence."""

    name: str
    confidence: float
    description_template: str = ""

    def __post_init__(self):
        if not self.name:
            raise RegistryError("Candidate fix name must not be empty")
        if not 0.0 <= self.confidence <= 1.0:
            raise RegistryError(
                f"Confidence for fix {self.name!r} must lie in [0, 1], got {self.confidence}"
            )

    def describe(self, match_text: str, groups: Sequence[Optional[str]]) -> str:
        """Render the description, substituting ``{1}``, ``{2}``... with captured groups.

        ``{0}`` is the whole matched text. Groups that did not participate in
        the match render as ``unknown``.
        """
        if not self.description_template:
            return self.name
        values = [match_text] + [g if g is not None else "unknown" for g in groups]
        try:
            return self.description_template.format(*values)
        except (IndexError, KeyError, ValueError):
            return self.description_template


@dataclass
class ErrorPattern:
    """A known failure signature and its ranked fixes.

    ``matcher`` is either a literal substring or a compiled regular expression.
    Fixes are stored sorted by confidence, highest first.
    """

    key: str
    category: str
    matcher: Matcher
    fixes: List[CandidateFix]
    priority: int = DEFAULT_PRIORITY

    def __post_init__(self):
        if not isinstance(self.key, str) or not self.key:
            raise RegistryError(f"Pattern key must be a non-empty string, got {self.key!r}")
        if not isinstance(self.category, str) or not self.category:
            raise RegistryError(f"Pattern {self.key!r} needs a non-empty string category")
        if not isinstance(self.matcher, (str, re.Pattern)):
            raise RegistryError(
                f"Pattern {self.key!r} matcher must be a string or compiled regex, "
                f"got {type(self.matcher).__name__}"
            )
        if not self.fixes:
            raise RegistryError(f"Pattern {self.key!r} must declare at least one fix")
        if isinstance(self.matcher, str) and not self.matcher:
            raise RegistryError(f"Pattern {self.key!r} has an empty literal matcher")
        # Stable sort keeps declaration order among equal confidences
        self.fixes = sorted(self.fixes, key=lambda f: f.confidence, reverse=True)

    def search(self, line: str) -> Optional[Tuple[str, Tuple[Optional[str], ...]]]:
        """Return ``(matched_text, groups)`` when this pattern matches ``line``."""
        if isinstance(self.matcher, str):
            if self.matcher in line:
                return self.matcher, ()
            return None
        m = self.matcher.search(line)
        if m is None:
            return None
        return m.group(0), m.groups()


@dataclass(frozen=True)
class PatternMatch:
    """Result of classifying one line."""

    key: str
    category: str
    match: str
    groups: Tuple[Optional[str], ...]
    fixes: Tuple[CandidateFix, ...]
    line: str = ""

    def describe(self, fix: CandidateFix) -> str:
        return fix.describe(self.match, self.groups)


class PatternRegistry:
    """Ordered registry of error patterns.

    Patterns are evaluated by ascending priority, then registration order.
    The first pattern that matches a line wins.
    """

    def __init__(self, patterns: Optional[Iterable[ErrorPattern]] = None):
        self._patterns: List[ErrorPattern] = []
        self._ordered: List[ErrorPattern] = []
        for pattern in patterns or ():
            self.register(pattern)

    def register(self, pattern: ErrorPattern) -> None:
        """Register a pattern.

        Raises:
            RegistryError: If a pattern with the same key is already registered
        """
        if any(p.key == pattern.key for p in self._patterns):
            raise RegistryError(f"Duplicate pattern key: {pattern.key!r}")
        self._patterns.append(pattern)
        # sorted() is stable, so registration order breaks priority ties
        self._ordered = sorted(self._patterns, key=lambda p: p.priority)

    def __len__(self) -> int:
        return len(self._patterns)

    def __iter__(self):
        return iter(self._ordered)

    def get(self, key: str) -> Optional[ErrorPattern]:
        for pattern in self._patterns:
            if pattern.key == key:
                return pattern
        return None

    def match_line(self, line: str) -> Optional[PatternMatch]:
        """Classify a single line of build output.

        Args:
            line: One line of combined stdout/stderr

        Returns:
            PatternMatch for the first matching pattern, or None. Empty and
            whitespace-only lines never match.
        """
        if not line or not line.strip():
            return None

        for pattern in self._ordered:
            found = pattern.search(line)
            if found is None:
                continue
            match_text, groups = found
            return PatternMatch(
                key=pattern.key,
                category=pattern.category,
                match=match_text,
                groups=groups,
                fixes=tuple(pattern.fixes),
                line=line.strip(),
            )
        return None

    def registered_fix_names(self) -> List[str]:
        """Every distinct fix name referenced by a registered pattern."""
        names: List[str] = []
        for pattern in self._patterns:
            for fix in pattern.fixes:
                if fix.name not in names:
                    names.append(fix.name)
        return names

    def load_yaml(self, path: Path) -> int:
        """Register extra patterns from a YAML file.

        Expected format::

            patterns:
              - key: prisma_client_missing
                category: database
                regex: "@prisma/client did not initialize"
                ignore_case: false
                priority: 50
                fixes:
                  - name: reinstall_deps
                    confidence: 0.8
                    description: "Reinstall dependencies to regenerate the client"

        A ``literal`` entry may be given instead of ``regex``.

        Returns:
            Number of patterns registered

        Raises:
            RegistryError: If the file or any entry is invalid
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise RegistryError(f"Cannot read pattern file {path}: {e}") from e

        entries = data.get("patterns", []) if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise RegistryError(f"Pattern file {path} must contain a 'patterns' list")

        for entry in entries:
            self.register(_pattern_from_dict(entry))

        logger.info(f"[PatternRegistry] Loaded {len(entries)} patterns from {path}")
        return len(entries)


def _pattern_from_dict(entry: dict) -> ErrorPattern:
    try:
        if "regex" in entry:
            flags = re.IGNORECASE if entry.get("ignore_case") else 0
            matcher: Matcher = re.compile(entry["regex"], flags)
        else:
            matcher = entry["literal"]
        fixes = [
            CandidateFix(
                name=fix["name"],
                confidence=float(fix["confidence"]),
                description_template=fix.get("description", ""),
            )
            for fix in entry["fixes"]
        ]
        return ErrorPattern(
            key=entry["key"],
            category=entry["category"],
            matcher=matcher,
            fixes=fixes,
            priority=int(entry.get("priority", DEFAULT_PRIORITY)),
        )
    except (KeyError, TypeError, ValueError, re.error) as e:
        raise RegistryError(f"Invalid pattern entry {entry!r}: {e}") from e


def _fix(name: str, confidence: float, description: str = "") -> CandidateFix:
    return CandidateFix(name=name, confidence=confidence, description_template=description)


def _p(key, category, regex, fixes, priority=DEFAULT_PRIORITY, ignore_case=False):
    flags = re.IGNORECASE if ignore_case else 0
    return ErrorPattern(
        key=key,
        category=category,
        matcher=re.compile(regex, flags),
        fixes=fixes,
        priority=priority,
    )


def builtin_patterns() -> List[ErrorPattern]:
    """The built-in failure signatures, in registration order."""
    return [
        # TypeScript
        _p("type_mismatch", "typescript", r"Type '(.+)' is not assignable to type '(.+)'", [
            _fix("add_index_signature", 0.8, "Add index signature for {2}"),
            _fix("widen_to_any", 0.7, "Widen {1} to any"),
            _fix("add_type_assertion", 0.6, "Assert as {2}"),
        ]),
        _p("ts_property_missing", "typescript", r"Property '(.+)' does not exist on type '(.+)'", [
            _fix("add_to_interface", 0.85, "Add property '{1}' to interface {2}"),
            _fix("optional_chain", 0.8, "Use optional chaining for {1}"),
            _fix("cast_to_any", 0.5, "Cast {2} to any"),
        ]),
        _p("ts_argument_count", "typescript", r"Expected (\d+) arguments?, but got (\d+)", [
            _fix("fix_arg_count", 0.9, "Fix argument count: expected {1}, got {2}"),
            _fix("add_optional_params", 0.7, "Make extra params optional"),
        ]),
        _p("ts_no_overload", "typescript", r"No overload matches this call", [
            _fix("fix_overload_args", 0.8, "Fix call to match an overload signature"),
            _fix("add_type_assertion", 0.6, "Add type assertion to satisfy overload"),
        ]),
        _p("ts_implicit_any", "typescript",
           r"(?:Parameter|Variable|Element) '(.+)' implicitly has an? '(.+)' type", [
               _fix("add_explicit_type", 0.9, "Add explicit type annotation to {1}"),
               _fix("disable_no_implicit_any", 0.5, "Disable noImplicitAny in tsconfig"),
           ]),
        _p("ts_jsx_element", "typescript",
           r"(?:JSX element|'(.+)') (?:type|class) does not have any construct or call signatures", [
               _fix("fix_component_type", 0.8, "Fix React component type signature"),
               _fix("add_react_fc_type", 0.7, "Type component as React.FC"),
           ]),
        _p("ts_cannot_use_jsx", "typescript", r"Cannot use JSX unless the '(.+)' flag is provided", [
            _fix("set_jsx_flag", 0.95, 'Set jsx: "{1}" in tsconfig.json'),
        ]),
        _p("ts_duplicate_identifier", "typescript", r"Duplicate identifier '(.+)'", [
            _fix("rename_duplicate", 0.8, "Rename duplicate identifier {1}"),
            _fix("merge_declarations", 0.6, "Merge duplicate declarations of {1}"),
        ]),
        _p("ts_missing_return", "typescript", r"Not all code paths return a value", [
            _fix("add_return_statement", 0.9, "Add missing return statement"),
            _fix("add_void_return_type", 0.6, "Change return type to include void"),
        ]),
        _p("ts_object_possibly_null", "typescript", r"Object is possibly '(null|undefined)'", [
            _fix("add_null_check", 0.9, "Add null check (object possibly {1})"),
            _fix("add_non_null_assertion", 0.7, "Add non-null assertion operator"),
            _fix("add_optional_chain", 0.85, "Use optional chaining operator"),
        ]),
        # Import / module resolution
        _p("missing_import", "import", r"Cannot find module '(.+?)'", [
            _fix("install_package", 0.9, "Install missing package: {1}"),
            _fix("fix_relative_path", 0.8, "Fix relative path for {1}"),
        ]),
        _p("module_not_found", "module", r"Module not found: Can't resolve '(.+?)'", [
            _fix("install_missing", 0.9, "Install missing module: {1}"),
            _fix("fix_alias_config", 0.7, "Fix path alias for {1} in tsconfig/webpack"),
        ]),
        _p("err_module_not_found", "import", r"ERR_MODULE_NOT_FOUND.*'(.+?)'", [
            _fix("fix_esm_extension", 0.9, "Add .js extension for ESM import {1}"),
            _fix("install_package", 0.8, "Install {1}"),
        ]),
        _p("err_require_esm", "import", r"ERR_REQUIRE_ESM.*require\(\) of ES Module (.+)", [
            _fix("convert_to_dynamic_import", 0.9, "Convert require() to dynamic import() for {1}"),
            _fix("add_type_module", 0.7, 'Add "type": "module" to package.json'),
        ]),
        _p("esm_named_export", "import", r"does not provide an export named '(.+)'", [
            _fix("use_default_import", 0.85, "Use default import instead of named export {1}"),
            _fix("check_export_name", 0.7, "Verify export name {1} exists in source"),
        ]),
        # References
        _p("undefined_reference", "reference", r"(?:Cannot find name|is not defined) '(.+)'", [
            _fix("add_import", 0.8, "Add import for {1}"),
            _fix("declare_variable", 0.5, "Declare {1}"),
        ]),
        _p("reference_error_runtime", "reference", r"ReferenceError: (.+) is not defined", [
            _fix("add_import_or_require", 0.85, "Add import/require for {1}"),
            _fix("add_polyfill", 0.6, "Add polyfill for {1}"),
        ]),
        # Lint
        _p("unused_variable", "lint",
           r"'(.+)' is (?:defined|assigned|declared) but (?:never used|its value is never read)", [
               _fix("prefix_underscore", 0.95, "Prefix {1} with underscore"),
               _fix("remove_import", 0.9, "Remove unused import {1}"),
           ]),
        _p("eslint_parsing_error", "eslint", r"Parsing error: (.+)", [
            _fix("fix_syntax", 0.8, "Fix syntax error: {1}"),
            _fix("update_parser_config", 0.6, "Update ESLint parser configuration"),
        ]),
        _p("eslint_rule_violation", "eslint", r"eslint\((.+)\): (.+)", [
            _fix("fix_violation", 0.7, "Fix ESLint rule {1}: {2}"),
            _fix("eslint_disable_line", 0.5, "Disable eslint rule {1} for this line"),
        ]),
        _p("no_undef_eslint", "eslint", r"'(.+)' is not defined\s*no-undef", [
            _fix("add_global_declaration", 0.8, "Declare {1} as global in ESLint config"),
            _fix("add_import", 0.85, "Import {1}"),
        ], priority=SPECIFIC_PRIORITY),
        # React
        _p("react_hook_deps", "react", r"React Hook (.+) has (?:a missing|missing) dependenc", [
            _fix("add_deps", 0.85, "Add missing dependencies to {1}"),
            _fix("add_eslint_disable", 0.7, "Add eslint-disable for {1}"),
        ]),
        _p("react_hook_rules", "react", r'React Hook "(.+)" (?:is called conditionally|cannot be called)', [
            _fix("move_hook_to_top", 0.9, "Move {1} to top level of component"),
            _fix("extract_component", 0.7, "Extract conditional logic to sub-component"),
        ]),
        _p("react_invalid_hook_call", "react", r"Invalid hook call.*Hooks can only be called inside", [
            _fix("move_to_component", 0.9, "Move hook call inside a React function component"),
            _fix("check_react_versions", 0.7, "Check for mismatched React versions"),
        ]),
        _p("react_hydration_mismatch", "react",
           r"(?:Hydration failed|Text content does not match|There was an error while hydrating)", [
               _fix("add_use_client", 0.8, "Add 'use client' directive for client-only content"),
               _fix("wrap_in_suspense", 0.7, "Wrap dynamic content in Suspense boundary"),
               _fix("suppress_hydration_warning", 0.5, "Add suppressHydrationWarning prop"),
           ]),
        _p("react_server_component_error", "react",
           r'(?:You\'re importing a component that needs|"use client"|createContext|useState|useEffect)'
           r".*(?:server component|Server Component)", [
               _fix("add_use_client_directive", 0.95, "Add 'use client' directive to component file"),
               _fix("extract_client_component", 0.8, "Extract client-side logic to separate component"),
           ]),
        _p("react_key_missing", "react", r'Each child in a (?:list|array) should have a unique "key" prop', [
            _fix("add_key_prop", 0.95, "Add unique key prop to list items"),
        ]),
        _p("react_cannot_update_unmounted", "react",
           r"Can't perform a React state update on (?:an unmounted|a component that)", [
               _fix("add_cleanup_effect", 0.9, "Add cleanup function to useEffect"),
               _fix("add_mounted_ref", 0.7, "Add isMounted ref guard"),
           ]),
        # Next.js
        _p("nextjs_image_error", "nextjs", r"Invalid src prop.*on.*next/image", [
            _fix("add_image_domain", 0.9, "Add domain to images config in next.config.js"),
            _fix("use_unoptimized", 0.6, "Set unoptimized: true for external images"),
        ]),
        _p("nextjs_prerender_error", "nextjs", r'Error occurred prerendering page "(.+)"', [
            _fix("add_dynamic_export", 0.85, "Mark {1} as dynamic with export const dynamic = 'force-dynamic'"),
            _fix("add_error_boundary", 0.7, "Add error boundary to page {1}"),
        ]),
        _p("nextjs_metadata_error", "nextjs",
           r'You are attempting to export "metadata" from a component marked with "use client"', [
               _fix("move_metadata_to_server", 0.95, "Move metadata export to a server component"),
               _fix("use_generate_metadata", 0.8, "Use generateMetadata function instead"),
           ], priority=SPECIFIC_PRIORITY),
        _p("nextjs_dynamic_server_usage", "nextjs", r"Dynamic server usage: (.+)", [
            _fix("add_dynamic_export", 0.9, "Add dynamic = 'force-dynamic' for: {1}"),
            _fix("wrap_in_suspense", 0.7, "Wrap server-side data fetch in Suspense"),
        ]),
        _p("nextjs_route_conflict", "nextjs", r'Conflicting app and page files? (?:were|was) found.*"(.+)"', [
            _fix("remove_pages_route", 0.9, "Remove pages/ route conflicting with app/ route {1}"),
        ]),
        _p("nextjs_build_standalone_missing", "nextjs", r"Could not find a production build.*\.next", [
            _fix("run_next_build", 0.95, "Run 'next build' before 'next start'"),
            _fix("check_output_standalone", 0.7, "Verify output: 'standalone' in next.config.js"),
        ]),
        _p("ssr_window_not_defined", "nextjs",
           r"(?:window|document|navigator|localStorage|sessionStorage) is not defined", [
               _fix("add_use_client", 0.9, "Add 'use client' directive"),
               _fix("add_typeof_guard", 0.85, "Add typeof window !== 'undefined' guard"),
               _fix("use_dynamic_import", 0.8, "Use next/dynamic with ssr: false"),
           ], priority=SPECIFIC_PRIORITY),
        # CSS
        _p("tailwind_class_not_found", "tailwind", r"The `(.+)` class does not exist", [
            _fix("add_to_safelist", 0.8, "Add {1} to Tailwind safelist"),
            _fix("fix_class_name", 0.9, "Fix Tailwind class name {1}"),
        ]),
        _p("postcss_error", "css", r"(?:PostCSS|postcss).*(?:Error|error):?\s*(.+)", [
            _fix("fix_postcss_syntax", 0.8, "Fix PostCSS error: {1}"),
            _fix("update_postcss_config", 0.6, "Update postcss.config.js"),
        ]),
        _p("css_module_error", "css",
           r"(?:CSS Modules|css module).*(?:not found|undefined|can't resolve) '(.+)'", [
               _fix("create_css_module", 0.9, "Create missing CSS module {1}"),
               _fix("fix_import_path", 0.8, "Fix CSS module import path {1}"),
           ]),
        _p("sass_error", "css", r"SassError: (.+)", [
            _fix("fix_sass_syntax", 0.8, "Fix SASS error: {1}"),
            _fix("install_sass", 0.7, "Install sass package"),
        ]),
        # Bundlers
        _p("webpack_compilation_error", "webpack", r"webpack.*(?:error|Error).*in (.+)", [
            _fix("check_webpack_config", 0.7, "Check webpack config for {1}"),
            _fix("clear_webpack_cache", 0.8, "Clear .next/cache and node_modules/.cache"),
        ]),
        _p("turbopack_error", "webpack", r"(?:Turbopack|turbopack).*(?:error|Error):?\s*(.+)", [
            _fix("fall_back_to_webpack", 0.7, "Disable Turbopack and use webpack"),
            _fix("fix_turbopack_compat", 0.8, "Fix Turbopack error: {1}"),
        ]),
        _p("chunk_load_failed", "webpack", r"ChunkLoadError: Loading chunk (.+) failed", [
            _fix("clear_next_cache", 0.9, "Clear .next cache and rebuild"),
            _fix("fix_public_path", 0.7, "Fix publicPath/assetPrefix in next.config.js"),
        ]),
        # Dependency manager / lockfile
        _p("npm_ci_lockfile_mismatch", "lockfile",
           r"npm (?:ci|ERR!).*(?:lockfile|package-lock\.json).*"
           r"(?:out of sync|mismatch|missing|not compatible|could not read)", [
               _fix("regenerate_lockfile", 0.95, "Regenerate package-lock.json with npm install --package-lock-only"),
               _fix("delete_and_reinstall", 0.85, "Delete node_modules + lockfile and reinstall"),
           ], priority=SPECIFIC_PRIORITY, ignore_case=True),
        _p("npm_ci_missing_lockfile", "lockfile",
           r"npm ci.*can only install.*package-lock\.json.*present", [
               _fix("run_npm_install_first", 0.95, "Generate package-lock.json before npm ci"),
           ], priority=SPECIFIC_PRIORITY, ignore_case=True),
        _p("npm_peer_dep_conflict", "lockfile",
           r"npm ERR!.*(?:peer dep|peer dependency|ERESOLVE|Could not resolve dependency)"
           r".*(?:conflict|unable to resolve)", [
               _fix("install_legacy_peer_deps", 0.9, "Run npm install --legacy-peer-deps"),
               _fix("fix_version_range", 0.7, "Adjust version ranges to resolve peer dep conflict"),
           ], priority=SPECIFIC_PRIORITY, ignore_case=True),
        _p("npm_eresolve", "lockfile",
           r"ERESOLVE (?:unable to resolve dependency tree|overriding peer dependency)", [
               _fix("install_force", 0.8, "Run npm install --force"),
               _fix("install_legacy_peer_deps", 0.9, "Run npm install --legacy-peer-deps"),
           ], priority=SPECIFIC_PRIORITY),
        _p("npm_audit_critical", "lockfile", r"(\d+) critical.*vulnerabilit", [
            _fix("npm_audit_fix", 0.85, "Run npm audit fix ({1} critical vulnerabilities)"),
        ]),
        _p("npm_enoent", "lockfile", r"npm ERR!.*ENOENT.*'(.+)'", [
            _fix("create_missing_file", 0.7, "Create missing file: {1}"),
            _fix("reinstall_deps", 0.8, "Run npm install to restore missing files"),
        ], priority=SPECIFIC_PRIORITY),
        _p("npm_engine_mismatch", "lockfile",
           r'npm ERR!.*engine.*(?:not compatible|wanted).*node[:\s]*"(.+)"', [
               _fix("update_node_version", 0.8, "Update Node.js to match required version: {1}"),
               _fix("relax_engines", 0.6, "Relax engines field in package.json"),
           ], ignore_case=True),
        # Native modules
        _p("native_module_rebuild", "native",
           r"(?:gyp ERR!|node-pre-gyp|prebuild-install).*(?:build error|failed|not found)", [
               _fix("rebuild_native", 0.9, "Run npm rebuild to recompile native modules"),
               _fix("install_build_tools", 0.8, "Install build tools (python3, make, g++)"),
           ], ignore_case=True),
        _p("better_sqlite3_error", "native",
           r"better-sqlite3.*(?:was compiled against|NODE_MODULE_VERSION|cannot open)", [
               _fix("rebuild_sqlite", 0.95, "npm rebuild better-sqlite3"),
               _fix("reinstall_sqlite", 0.8, "Remove and reinstall better-sqlite3"),
           ], priority=SPECIFIC_PRIORITY),
        _p("node_module_version_mismatch", "native",
           r"was compiled against a different Node\.js version.*NODE_MODULE_VERSION (\d+)", [
               _fix("rebuild_all_native", 0.95, "npm rebuild to recompile all native modules"),
           ]),
        _p("sharp_error", "native", r"(?:sharp|libvips).*(?:error|not found|failed to load)", [
            _fix("reinstall_sharp", 0.9, "npm install --platform=linux --arch=x64 sharp"),
            _fix("skip_sharp_optimization", 0.6, "Set images.unoptimized: true in next.config.js"),
        ], ignore_case=True),
        # Node runtime
        _p("port_in_use", "runtime", r"EADDRINUSE.*:(\d+)", [
            _fix("kill_process", 0.9, "Stop the process holding port {1}"),
        ]),
        _p("heap_overflow", "resource", r"JavaScript heap out of memory", [
            _fix("increase_heap", 0.9, "Increase NODE_OPTIONS max-old-space-size"),
        ], priority=SPECIFIC_PRIORITY),
        _p("enoent", "runtime", r"ENOENT:? no such file or directory.*'(.+)'", [
            _fix("create_directory", 0.8, "Create missing path: {1}"),
            _fix("fix_file_path", 0.7, "Fix file path: {1}"),
        ]),
        _p("eacces", "runtime", r"EACCES:? permission denied.*'(.+)'", [
            _fix("fix_permissions", 0.9, "Fix permissions on {1}"),
            _fix("run_as_correct_user", 0.7, "Ensure process runs as correct user"),
        ]),
        _p("econnrefused", "network", r"ECONNREFUSED(?:.*:(\d+))?", [
            _fix("start_target_service", 0.9, "Start service on port {1}"),
            _fix("check_hostname", 0.7, "Verify hostname and port configuration"),
        ]),
        _p("etimedout", "network", r"ETIMEDOUT|ESOCKETTIMEDOUT|request timed? ?out", [
            _fix("increase_timeout", 0.8, "Increase request timeout"),
            _fix("check_network", 0.7, "Check network connectivity to target host"),
        ], ignore_case=True),
        _p("emfile", "resource", r"EMFILE:? too many open files", [
            _fix("increase_ulimit", 0.9, "Increase file descriptor limit (ulimit -n)"),
            _fix("fix_fd_leak", 0.7, "Check for file descriptor leaks"),
        ]),
        _p("enomem", "resource", r"ENOMEM|Cannot allocate memory", [
            _fix("increase_memory_limit", 0.8, "Increase container memory limit"),
            _fix("reduce_concurrency", 0.7, "Reduce concurrent operations"),
        ]),
        _p("unhandled_rejection", "runtime", r"Unhandled(?:Promise)?Rejection.*: (.+)", [
            _fix("add_catch_handler", 0.85, "Add .catch() handler for: {1}"),
            _fix("add_global_handler", 0.6, "Add global unhandledRejection handler"),
        ]),
        _p("uncaught_exception", "runtime", r"UncaughtException.*: (.+)", [
            _fix("add_try_catch", 0.85, "Wrap in try/catch: {1}"),
            _fix("add_error_boundary", 0.7, "Add error boundary for graceful handling"),
        ], ignore_case=True),
        _p("json_parse_error", "runtime", r"(?:SyntaxError: Unexpected token|JSON\.parse|JSON at position)(.*)", [
            _fix("fix_json_syntax", 0.85, "Fix JSON syntax error"),
            _fix("validate_json_input", 0.7, "Validate JSON input before parsing"),
        ]),
        _p("syntax_error", "runtime", r"SyntaxError: (.+)", [
            _fix("fix_syntax", 0.85, "Fix syntax error: {1}"),
        ], priority=GENERIC_PRIORITY),
        # Container
        _p("docker_no_space", "container", r"no space left on device", [
            _fix("docker_prune", 0.95, "Run docker system prune to reclaim space"),
            _fix("clean_old_images", 0.8, "Remove dangling Docker images"),
        ], priority=SPECIFIC_PRIORITY),
        _p("docker_build_failed", "container", r"(?:executor failed|failed to solve).*: (.+)", [
            _fix("fix_dockerfile", 0.7, "Fix Dockerfile issue: {1}"),
            _fix("clear_docker_cache", 0.8, "Clear Docker build cache (docker builder prune)"),
        ], priority=GENERIC_PRIORITY),
        _p("docker_network_error", "container", r"[Nn]etwork.*(?:not found|already exists|failed)", [
            _fix("recreate_network", 0.85, "Prune unused Docker networks so compose recreates them"),
        ]),
        _p("docker_image_pull_failed", "container",
           r"[Pp]ull.*(?:error|failed|not found|manifest unknown).*['\"](.+)['\"]", [
               _fix("check_image_tag", 0.9, "Verify image tag exists: {1}"),
               _fix("check_registry_auth", 0.7, "Check Docker registry authentication"),
           ]),
        _p("docker_compose_version", "container", r"version.*(?:obsolete|unsupported|invalid).*compose", [
            _fix("update_compose_syntax", 0.9, "Update docker-compose.yml to v2+ syntax"),
        ], ignore_case=True),
        _p("docker_healthcheck_unhealthy", "container",
           r"(?:health check|healthcheck).*(?:failed|unhealthy|timed? ?out)", [
               _fix("increase_start_period", 0.8, "Increase healthcheck start_period"),
               _fix("fix_health_endpoint", 0.7, "Fix health check endpoint or command"),
           ], ignore_case=True),
        # Database
        _p("sqlite_corrupt", "database", r"SQLITE_CORRUPT|database disk image is malformed", [
            _fix("restore_from_backup", 0.9, "Restore database from latest backup"),
            _fix("run_integrity_check", 0.8, "Run PRAGMA integrity_check and attempt repair"),
        ]),
        _p("sqlite_busy", "database", r"SQLITE_BUSY|database is locked", [
            _fix("enable_wal_mode", 0.9, "Enable WAL mode: PRAGMA journal_mode=WAL"),
            _fix("increase_busy_timeout", 0.8, "Increase busy_timeout PRAGMA"),
        ]),
        _p("sqlite_readonly", "database", r"SQLITE_READONLY|attempt to write a readonly database", [
            _fix("fix_db_permissions", 0.9, "Fix database file permissions"),
            _fix("check_volume_mount", 0.8, "Ensure Docker volume is mounted read-write"),
        ]),
        _p("pg_connection_refused", "database",
           r"(?:PostgreSQL|pg|FATAL).*(?:connection refused|could not connect)", [
               _fix("start_postgres", 0.9, "Start PostgreSQL service"),
               _fix("check_pg_config", 0.7, "Check PostgreSQL host/port/credentials"),
           ], priority=SPECIFIC_PRIORITY, ignore_case=True),
        _p("redis_connection_error", "database",
           r"redis.*(?:ECONNREFUSED|connection.*(?:refused|failed|timed? ?out))", [
               _fix("start_redis", 0.9, "Start Redis service"),
               _fix("check_redis_url", 0.7, "Verify REDIS_URL environment variable"),
           ], priority=SPECIFIC_PRIORITY, ignore_case=True),
        # Auth
        _p("jwt_error", "auth", r"(?:JsonWebTokenError|jwt).*(?:malformed|invalid|expired|signature)", [
            _fix("check_jwt_secret", 0.9, "Verify JWT_SECRET matches between services"),
            _fix("regenerate_tokens", 0.7, "Clear expired tokens and force re-auth"),
        ], ignore_case=True),
        _p("cors_error", "auth", r"(?:CORS|Access-Control).*(?:blocked|not allowed|origin)", [
            _fix("update_allowed_origins", 0.9, "Add origin to ALLOWED_ORIGINS environment variable"),
            _fix("check_cors_middleware", 0.7, "Verify CORS middleware configuration"),
        ], ignore_case=True),
        # TLS
        _p("ssl_cert_expired", "ssl", r"(?:certificate|cert).*(?:expired|CERT_HAS_EXPIRED)", [
            _fix("renew_certificate", 0.95, "Run certbot renew to refresh SSL certificate"),
        ], ignore_case=True),
        _p("ssl_self_signed", "ssl", r"SELF_SIGNED_CERT|self.signed|DEPTH_ZERO_SELF_SIGNED", [
            _fix("install_ca_cert", 0.8, "Install proper CA certificate"),
            _fix("set_reject_unauthorized", 0.6, "Set NODE_TLS_REJECT_UNAUTHORIZED=0 (dev only)"),
        ]),
        # Sockets
        _p("websocket_error", "network", r"(?:WebSocket|socket\.io).*(?:error|failed|ECONNRESET|hang up)", [
            _fix("check_ws_proxy", 0.8, "Verify WebSocket proxy configuration in nginx"),
            _fix("increase_ws_timeout", 0.7, "Increase WebSocket timeout/ping interval"),
        ], ignore_case=True),
        _p("socket_hangup", "network", r"socket hang up|ECONNRESET", [
            _fix("add_keep_alive", 0.8, "Enable HTTP keep-alive"),
            _fix("increase_timeout", 0.7, "Increase connection timeout"),
        ]),
        # Reverse proxy
        _p("nginx_config_error", "nginx", r"nginx.*(?:test failed|emerg|error).*(?:directive|unknown|invalid)", [
            _fix("nginx_test", 0.9, "Run nginx -t to validate config"),
            _fix("fix_nginx_config", 0.8, "Fix nginx configuration syntax"),
        ], ignore_case=True),
        _p("nginx_upstream_timeout", "nginx", r"upstream timed? ?out.*(?:reading|connecting)", [
            _fix("increase_proxy_timeout", 0.9, "Increase proxy_read_timeout in nginx"),
            _fix("check_upstream_health", 0.8, "Check backend/frontend service health"),
        ], priority=SPECIFIC_PRIORITY, ignore_case=True),
        # Generic process failures
        _p("command_not_found", "runtime", r"(?:command not found|not recognized as.*command):? (.+)", [
            _fix("install_command", 0.85, "Install missing command: {1}"),
            _fix("check_path", 0.7, "Check PATH environment variable"),
        ], ignore_case=True),
        _p("exit_code_nonzero", "runtime", r"(?:exited with|exit code|returned) (?:error )?(?:code )?(\d+)", [
            _fix("check_logs", 0.6, "Check logs for process exit code {1}"),
        ], priority=GENERIC_PRIORITY),
        _p("process_killed", "resource", r"\b(?:SIGKILL|SIGTERM|OOMKilled|killed)\b", [
            _fix("increase_memory", 0.9, "Increase container/process memory limit"),
            _fix("add_graceful_shutdown", 0.7, "Add graceful shutdown handler"),
        ], priority=GENERIC_PRIORITY, ignore_case=True),
    ]


_default_registry: Optional[PatternRegistry] = None


def get_registry() -> PatternRegistry:
    """Get the shared registry holding the built-in patterns."""
    global _default_registry
    if _default_registry is None:
        _default_registry = PatternRegistry(builtin_patterns())
    return _default_registry


def match_line(line: str) -> Optional[PatternMatch]:
    """Classify ``line`` against the built-in registry."""
    return get_registry().match_line(line)


def build_registry(extra_files: Iterable[Path] = ()) -> PatternRegistry:
    """Built-in patterns plus any patterns declared in YAML ``extra_files``."""
    extra_files = list(extra_files)
    if not extra_files:
        return get_registry()
    registry = PatternRegistry(builtin_patterns())
    for path in extra_files:
        registry.load_yaml(Path(path))
    return registry
