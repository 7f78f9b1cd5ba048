"""Fix catalog and executor.

Turns a fix name chosen by diagnosis into a concrete, safe remediation and
runs it with a hard timeout.

Every automatable fix is a member of the closed ``FixKind`` enumeration and
carries its own validated parameters in a ``FixAction``. Fix names that are
recognized but need a human (code edits, environment changes, anything
destructive) are listed in ``MANUAL_FIXES`` and resolve to ``None``. Any other
name is rejected with ``UnknownFixError`` so that a typo in a pattern
definition fails loudly instead of silently resolving to "no command".

The catalog only contains idempotent or additive operations: dependency
installs and rebuilds, container prunes, directory creation and permission
widening inside the project root. Nothing here deletes project files.
"""

from __future__ import annotations

import logging
import os
import re
import stat
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from .exceptions import UnknownFixError
from .subprocess_streaming import CommandRunner, default_runner

logger = logging.getLogger(__name__)

DEFAULT_FIX_TIMEOUT_SECONDS = 120


class FixKind(str, Enum):
    """Automatable remediations."""

    REGENERATE_LOCKFILE = "regenerate_lockfile"
    INSTALL_LEGACY_PEER_DEPS = "install_legacy_peer_deps"
    INSTALL_FORCE = "install_force"
    REINSTALL_DEPS = "reinstall_deps"
    NPM_AUDIT_FIX = "npm_audit_fix"
    INSTALL_PACKAGE = "install_package"
    REBUILD_NATIVE = "rebuild_native"
    REBUILD_SQLITE = "rebuild_sqlite"
    REINSTALL_SHARP = "reinstall_sharp"
    CREATE_DIRECTORY = "create_directory"
    FIX_PERMISSIONS = "fix_permissions"
    DOCKER_PRUNE = "docker_prune"
    CLEAR_DOCKER_CACHE = "clear_docker_cache"
    CLEAN_OLD_IMAGES = "clean_old_images"
    RECREATE_NETWORK = "recreate_network"


# Fix names that share an implementation with a FixKind
FIX_ALIASES = {
    "run_npm_install_first": FixKind.REGENERATE_LOCKFILE,
    "install_missing": FixKind.INSTALL_PACKAGE,
    "rebuild_all_native": FixKind.REBUILD_NATIVE,
}

# Recognized fixes with no safe automated action
MANUAL_FIXES = frozenset(
    {
        # Source edits
        "add_catch_handler", "add_cleanup_effect", "add_deps", "add_dynamic_export",
        "add_error_boundary", "add_eslint_disable", "add_explicit_type",
        "add_global_declaration", "add_global_handler", "add_graceful_shutdown",
        "add_image_domain", "add_import", "add_import_or_require", "add_index_signature",
        "add_keep_alive", "add_key_prop", "add_mounted_ref", "add_non_null_assertion",
        "add_null_check", "add_optional_chain", "add_optional_params", "add_polyfill",
        "add_react_fc_type", "add_return_statement", "add_to_interface", "add_to_safelist",
        "add_try_catch", "add_type_assertion", "add_type_module", "add_typeof_guard",
        "add_use_client", "add_use_client_directive", "add_void_return_type", "cast_to_any",
        "convert_to_dynamic_import", "create_css_module", "create_missing_file",
        "declare_variable", "disable_no_implicit_any", "eslint_disable_line",
        "extract_client_component", "extract_component", "fall_back_to_webpack",
        "fix_alias_config", "fix_arg_count", "fix_class_name", "fix_component_type",
        "fix_dockerfile", "fix_esm_extension", "fix_eslint_errors", "fix_fd_leak",
        "fix_file_path", "fix_health_endpoint", "fix_import_path", "fix_json_syntax",
        "fix_nginx_config", "fix_overload_args", "fix_postcss_syntax", "fix_public_path",
        "fix_relative_path", "fix_sass_syntax", "fix_syntax", "fix_turbopack_compat",
        "fix_typescript_errors", "fix_version_range", "fix_violation", "merge_declarations",
        "move_hook_to_top", "move_metadata_to_server", "move_to_component", "optional_chain",
        "prefix_underscore", "relax_engines", "remove_import", "remove_pages_route",
        "rename_duplicate", "set_jsx_flag", "skip_sharp_optimization",
        "suppress_hydration_warning", "update_compose_syntax", "update_parser_config",
        "update_postcss_config", "use_default_import", "use_dynamic_import",
        "use_generate_metadata", "use_unoptimized", "validate_json_input", "widen_to_any",
        "wrap_in_suspense",
        # Environment / infrastructure changes
        "check_cors_middleware", "check_export_name", "check_hostname", "check_image_tag",
        "check_jwt_secret", "check_logs", "check_network", "check_network_retry",
        "check_next_build_output", "check_output_standalone", "check_path",
        "check_pg_config", "check_react_versions", "check_redis_url", "check_registry_auth",
        "check_upstream_health", "check_volume_mount", "check_webpack_config",
        "check_ws_proxy", "enable_wal_mode", "fix_db_permissions", "increase_busy_timeout",
        "increase_heap", "increase_memory", "increase_memory_limit",
        "increase_proxy_timeout", "increase_start_period", "increase_timeout",
        "increase_ulimit", "increase_ws_timeout", "install_build_tools", "install_ca_cert",
        "install_command", "install_sass", "nginx_test", "reduce_concurrency",
        "regenerate_tokens", "renew_certificate", "run_as_correct_user",
        "run_integrity_check", "run_next_build", "set_reject_unauthorized",
        "start_postgres", "start_redis", "start_target_service", "update_allowed_origins",
        "update_node_version",
        # Destructive, never automated
        "clear_next_cache", "clear_webpack_cache", "delete_and_reinstall", "kill_process",
        "reinstall_sqlite", "restore_from_backup",
    }
)

# Fixes that run the dependency manager inside each package directory
_DEPENDENCY_COMMANDS = {
    FixKind.REGENERATE_LOCKFILE: ["npm", "install", "--package-lock-only"],
    FixKind.INSTALL_LEGACY_PEER_DEPS: ["npm", "install", "--legacy-peer-deps"],
    FixKind.INSTALL_FORCE: ["npm", "install", "--force"],
    FixKind.REINSTALL_DEPS: ["npm", "install"],
    FixKind.NPM_AUDIT_FIX: ["npm", "audit", "fix"],
    FixKind.REBUILD_NATIVE: ["npm", "rebuild"],
    FixKind.REBUILD_SQLITE: ["npm", "rebuild", "better-sqlite3"],
    FixKind.REINSTALL_SHARP: ["npm", "install", "--platform=linux", "--arch=x64", "sharp"],
}

# Container housekeeping; prunes only touch unused images, caches and networks
_CONTAINER_COMMANDS = {
    FixKind.DOCKER_PRUNE: [
        ["docker", "system", "prune", "-f"],
        ["docker", "builder", "prune", "-f"],
    ],
    FixKind.CLEAR_DOCKER_CACHE: [["docker", "builder", "prune", "-f"]],
    FixKind.CLEAN_OLD_IMAGES: [["docker", "image", "prune", "-f"]],
    FixKind.RECREATE_NETWORK: [["docker", "network", "prune", "-f"]],
}

_PATH_KINDS = (FixKind.CREATE_DIRECTORY, FixKind.FIX_PERMISSIONS)

NPM_PACKAGE_RE = re.compile(r"^(?:@[a-z0-9][a-z0-9._~-]*/)?[a-z0-9][a-z0-9._~-]*$")


def normalize_package_name(spec: Optional[str]) -> Optional[str]:
    """Reduce a module specifier to an installable package name.

    ``lodash/fp`` becomes ``lodash`` and ``@scope/pkg/sub`` becomes
    ``@scope/pkg``. Relative paths, absolute paths, path aliases and
    ``node:`` builtins return None.
    """
    if not spec:
        return None
    spec = spec.strip()
    if spec.startswith((".", "/", "~", "node:")) or "\\" in spec:
        return None

    parts = spec.split("/")
    name = "/".join(parts[:2]) if spec.startswith("@") else parts[0]
    if len(name) > 214 or not NPM_PACKAGE_RE.match(name):
        return None
    return name


@dataclass(frozen=True)
class FixStep:
    """One command of a fix, run without a shell."""

    argv: List[str]
    cwd: Path

    def __str__(self) -> str:
        return f"(cd {self.cwd} && {' '.join(self.argv)})"


@dataclass(frozen=True)
class FixAction:
    """A resolved remediation with its validated parameters."""

    kind: FixKind
    package: Optional[str] = None
    path: Optional[Path] = None

    def __post_init__(self):
        if self.kind is FixKind.INSTALL_PACKAGE:
            if normalize_package_name(self.package) != self.package:
                raise ValueError(f"Invalid package name for {self.kind.value}: {self.package!r}")
        elif self.package is not None:
            raise ValueError(f"{self.kind.value} takes no package parameter")

        if self.kind in _PATH_KINDS:
            if self.path is None or not Path(self.path).is_absolute():
                raise ValueError(f"{self.kind.value} requires an absolute path")
        elif self.path is not None:
            raise ValueError(f"{self.kind.value} takes no path parameter")

    def describe(self) -> str:
        if self.package:
            return f"{self.kind.value}({self.package})"
        if self.path:
            return f"{self.kind.value}({self.path})"
        return self.kind.value


@dataclass
class FixExecutionResult:
    """Outcome of executing a fix. Never raised, always returned."""

    ok: bool
    action: FixAction
    output: str = ""
    error: Optional[str] = None
    duration_seconds: float = 0.0
    steps: List[str] = field(default_factory=list)


class FixCatalog:
    """Resolves fix names to actions and executes them.

    Args:
        project_root: Root of the project under repair
        package_dirs: Project-relative directories that may hold a package.json
        timeout: Hard timeout per command, in seconds
        runner: Command runner, replaceable in tests
        dry_run: Log what would run and report success without running anything
    """

    def __init__(
        self,
        project_root: Path,
        package_dirs: Sequence[str] = (".",),
        timeout: float = DEFAULT_FIX_TIMEOUT_SECONDS,
        runner: Optional[CommandRunner] = None,
        dry_run: bool = False,
    ):
        self.project_root = Path(project_root).resolve()
        self.package_dirs = list(package_dirs) or ["."]
        self.timeout = timeout
        self.runner = runner or default_runner
        self.dry_run = dry_run

    @staticmethod
    def kind_for(fix_name: str) -> Optional[FixKind]:
        """Map a fix name to its FixKind, or None for a manual fix.

        Raises:
            UnknownFixError: If the name is neither automatable nor a known manual fix
        """
        if fix_name in FIX_ALIASES:
            return FIX_ALIASES[fix_name]
        try:
            return FixKind(fix_name)
        except ValueError:
            pass
        if fix_name in MANUAL_FIXES:
            return None
        raise UnknownFixError(fix_name)

    @classmethod
    def validate(cls, fix_names: Iterable[str]) -> None:
        """Check every name is known. Raises UnknownFixError on the first unknown."""
        for name in fix_names:
            cls.kind_for(name)

    @classmethod
    def is_automatable(cls, fix_name: str) -> bool:
        return cls.kind_for(fix_name) is not None

    def _package_roots(self) -> List[Path]:
        roots = []
        for rel in self.package_dirs:
            candidate = (self.project_root / rel).resolve()
            if (candidate / "package.json").exists() and candidate not in roots:
                roots.append(candidate)
        return roots

    def _inside_project(self, raw: Optional[str]) -> Optional[Path]:
        if not raw:
            return None
        candidate = Path(raw.strip())
        if not candidate.is_absolute():
            candidate = self.project_root / candidate
        candidate = candidate.resolve()
        if candidate == self.project_root or self.project_root in candidate.parents:
            return candidate
        return None

    def resolve(self, fix_name: str, groups: Sequence[Optional[str]] = ()) -> Optional[FixAction]:
        """Resolve a fix name and captured groups to a concrete action.

        Args:
            fix_name: Name of the candidate fix
            groups: Regex groups captured by the pattern match

        Returns:
            FixAction, or None when the fix is known but has no safe automated
            action for these parameters (manual fix, package name that is a
            relative path, path outside the project, no package.json, ...)

        Raises:
            UnknownFixError: If the fix name is unknown
        """
        kind = self.kind_for(fix_name)
        if kind is None:
            return None

        first = groups[0] if groups else None

        if kind is FixKind.INSTALL_PACKAGE:
            package = normalize_package_name(first)
            if package is None or not self._package_roots():
                return None
            return FixAction(kind=kind, package=package)

        if kind in _PATH_KINDS:
            path = self._inside_project(first)
            if path is None:
                logger.info(f"[FixCatalog] {fix_name}: path {first!r} is outside the project root")
                return None
            return FixAction(kind=kind, path=path)

        if kind in _DEPENDENCY_COMMANDS and not self._package_roots():
            return None

        return FixAction(kind=kind)

    def plan(self, action: FixAction) -> List[FixStep]:
        """The commands an action runs. Empty for in-process actions."""
        if action.kind in _CONTAINER_COMMANDS:
            return [FixStep(argv=list(argv), cwd=self.project_root) for argv in _CONTAINER_COMMANDS[action.kind]]

        if action.kind is FixKind.INSTALL_PACKAGE:
            roots = self._package_roots()
            return [FixStep(argv=["npm", "install", action.package], cwd=roots[0])] if roots else []

        if action.kind in _DEPENDENCY_COMMANDS:
            argv = _DEPENDENCY_COMMANDS[action.kind]
            return [FixStep(argv=list(argv), cwd=root) for root in self._package_roots()]

        return []

    def execute(self, action: FixAction) -> FixExecutionResult:
        """Execute an action. Failures are returned, never raised."""
        start = time.monotonic()

        if action.kind in _PATH_KINDS:
            result = self._execute_in_process(action)
        else:
            result = self._execute_steps(action, self.plan(action))

        result.duration_seconds = time.monotonic() - start
        if result.ok:
            logger.info(f"[FixCatalog] Applied {action.describe()} in {result.duration_seconds:.1f}s")
        else:
            logger.warning(f"[FixCatalog] {action.describe()} failed: {result.error}")
        return result

    def _execute_steps(self, action: FixAction, steps: List[FixStep]) -> FixExecutionResult:
        if not steps:
            return FixExecutionResult(ok=False, action=action, error="Nothing to run")

        outputs: List[str] = []
        descriptions = [str(step) for step in steps]
        for step in steps:
            if self.dry_run:
                logger.info(f"[FixCatalog] [dry-run] Would run {step}")
                continue

            logger.info(f"[FixCatalog] Running {step}")
            completed = self.runner(step.argv, step.cwd, self.timeout)
            outputs.append(completed.output)
            if completed.timeout_occurred:
                return FixExecutionResult(
                    ok=False,
                    action=action,
                    output="\n".join(outputs),
                    error=f"Timed out after {self.timeout}s: {' '.join(step.argv)}",
                    steps=descriptions,
                )
            if completed.returncode != 0:
                return FixExecutionResult(
                    ok=False,
                    action=action,
                    output="\n".join(outputs),
                    error=f"Exit code {completed.returncode}: {' '.join(step.argv)}",
                    steps=descriptions,
                )

        return FixExecutionResult(ok=True, action=action, output="\n".join(outputs), steps=descriptions)

    def _execute_in_process(self, action: FixAction) -> FixExecutionResult:
        target = Path(action.path)
        if self.dry_run:
            logger.info(f"[FixCatalog] [dry-run] Would apply {action.describe()}")
            return FixExecutionResult(ok=True, action=action, steps=[action.describe()])

        try:
            if action.kind is FixKind.CREATE_DIRECTORY:
                # A path with a suffix names a file; create its parent instead
                directory = target.parent if target.suffix else target
                directory.mkdir(parents=True, exist_ok=True)
                return FixExecutionResult(ok=True, action=action, output=f"Created {directory}")

            if not target.exists():
                return FixExecutionResult(ok=False, action=action, error=f"{target} does not exist")
            count = _grant_owner_access(target)
            return FixExecutionResult(ok=True, action=action, output=f"Updated {count} paths")
        except OSError as e:
            return FixExecutionResult(ok=False, action=action, error=str(e))


def _chmod_owner(path: Path) -> bool:
    if path.is_symlink():
        return False
    mode = path.stat().st_mode
    new_mode = mode | stat.S_IRUSR | stat.S_IWUSR
    if stat.S_ISDIR(mode) or mode & (stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH):
        new_mode |= stat.S_IXUSR
    if new_mode == mode:
        return False
    os.chmod(path, new_mode)
    return True


def _grant_owner_access(root: Path) -> int:
    """Recursive ``chmod u+rwX``: owner read/write, plus execute on directories
    and on files that are already executable by someone."""
    count = int(_chmod_owner(root))
    if not root.is_dir() or root.is_symlink():
        return count
    # Top-down walk: each directory is opened up before it is descended into
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            count += int(_chmod_owner(Path(dirpath) / name))
    return count
