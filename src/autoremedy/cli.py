#!/usr/bin/env python3
"""autoremedy CLI - self-healing build and deploy repair

Usage:
    python -m autoremedy deploy PROJECT_ROOT [--skip-preflight] [--skip-lockcheck] [--max-retries N]
    python -m autoremedy surgeon PROJECT_ROOT [BUILD_OUTPUT] [--dry-run]
    python -m autoremedy memory PROJECT_ROOT [--json]
"""

import argparse
import json
import logging
import signal
import sys
from pathlib import Path

from . import __version__
from .config import Settings, load_settings
from .diagnosis import classify_output
from .error_patterns import build_registry
from .exceptions import AutoremedyError, ConfigError, RepairMemoryError
from .fix_catalog import FixCatalog
from .logging_config import configure_logging
from .orchestrator import DeployOrchestrator
from .remediation import RemediationStatus, Remediator
from .repair_memory import JsonRepairMemory

logger = logging.getLogger(__name__)

DEFAULT_BUILD_OUTPUT = "/tmp/build-output.log"


def _load(args, **overrides) -> Settings:
    config_path = Path(args.config) if args.config else None
    settings = load_settings(Path(args.project_root), config_path=config_path, **overrides)
    configure_logging(
        log_dir=settings.log_directory(Path(args.project_root)),
        log_level=settings.log_level,
        log_filename=settings.log_filename,
    )
    return settings


def _registry(settings: Settings, project_root: Path):
    return build_registry(settings.resolve_path(project_root, p) for p in settings.pattern_files)


def _read_build_output(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    with open(source, "r", encoding="utf-8", errors="replace") as f:
        return f.read()


def _pending_path(memory_file: Path) -> Path:
    return memory_file.with_name(f"{memory_file.name}.pending")


def _settle_pending(memory, pending_path: Path, classification) -> None:
    """Count the outcome of the fix applied by the previous surgeon run.

    The fix worked when its signature is absent from the output at hand.
    """
    try:
        pending = json.loads(pending_path.read_text(encoding="utf-8"))
        signature, fix_name = pending["signature"], pending["fix_name"]
    except FileNotFoundError:
        return
    except (OSError, ValueError, KeyError, TypeError) as e:
        logger.warning(f"[Surgeon] Ignoring unreadable pending outcome {pending_path}: {e}")
    else:
        resolved = signature not in classification.signatures()
        try:
            memory.record_outcome(signature, fix_name, resolved)
        except RepairMemoryError as e:
            logger.warning(f"[RepairMemory] Outcome for {signature} not recorded: {e}")
    try:
        pending_path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"[Surgeon] Cannot remove {pending_path}: {e}")


def _save_pending(memory, pending_path: Path, applied) -> None:
    try:
        memory.record(
            applied.signature,
            applied.fix.name,
            applied.fix.static_confidence,
            applied.error.category,
            applied.fix.description,
        )
        pending_path.write_text(
            json.dumps({"signature": applied.signature, "fix_name": applied.fix.name}),
            encoding="utf-8",
        )
    except (RepairMemoryError, OSError) as e:
        logger.warning(f"[RepairMemory] Application of {applied.fix.name} not recorded: {e}")


def run_surgeon(args):
    """Diagnose one captured build log and apply a single fix"""
    project_root = Path(args.project_root).resolve()
    settings = _load(args)

    try:
        output = _read_build_output(args.build_output)
    except OSError as e:
        print(f"❌ Cannot read build output: {e}")
        return 1

    classification = classify_output(output, _registry(settings, project_root))
    memory = JsonRepairMemory(settings.memory_file(project_root))
    pending_path = _pending_path(settings.memory_file(project_root))
    if not args.dry_run:
        _settle_pending(memory, pending_path, classification)

    if not classification.classified:
        print("No known error pattern or heuristic matched the build output")
        return 1

    print(f"Classified {len(classification.errors)} error(s):")
    for category, count in sorted(classification.category_counts().items()):
        print(f"  {category}: {count}")
    for error in classification.errors:
        location = f" ({error.file}:{error.line_number})" if error.file else ""
        print(f"  - [{error.category}] {error.key}{location}: {error.message}")

    catalog = FixCatalog(
        project_root,
        package_dirs=settings.package_dirs,
        timeout=settings.fix_timeout_seconds,
        dry_run=args.dry_run,
    )
    remediator = Remediator(catalog, memory, success_threshold=settings.memory_success_threshold)
    outcome = remediator.remediate(classification.errors)

    if outcome.status is not RemediationStatus.APPLIED:
        print(f"No fix applied ({outcome.status.value})")
        for name in outcome.skipped:
            print(f"  manual: {name}")
        return 1

    applied = outcome.applied
    print(f"✅ Applied {applied.action.describe()} for {applied.error.key}")
    if not args.dry_run:
        # Outcome is settled by the next run, once the caller has rebuilt
        _save_pending(memory, pending_path, applied)
    return 0


def run_deploy(args):
    """Run the full PreFlight -> BuildRetry -> Launch -> HealthVerify pipeline"""
    project_root = Path(args.project_root).resolve()
    overrides = {"max_retries": args.max_retries}
    if args.skip_preflight:
        overrides["skip_preflight"] = True
    if args.skip_lockcheck:
        overrides["skip_lockcheck"] = True
    settings = _load(args, **overrides)

    orchestrator = DeployOrchestrator(
        project_root,
        settings,
        JsonRepairMemory(settings.memory_file(project_root)),
        registry=_registry(settings, project_root),
    )

    def _on_signal(signum, frame):
        orchestrator.abort()

    previous = {
        sig: signal.signal(sig, _on_signal) for sig in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        result = orchestrator.run()
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    print("")
    print("=" * 60)
    print(f"Phase:    {result.phase.value}")
    print(f"Attempts: {len(result.attempts)}/{settings.max_retries}")
    for attempt in result.attempts:
        fixes = ", ".join(attempt.fixes_applied) or "-"
        outcome = attempt.outcome.value if attempt.outcome else "-"
        print(f"  #{attempt.attempt_number}: {outcome} (fixes: {fixes})")
    if result.escalation_reason:
        print(f"Escalated: {result.escalation_reason.value}")
    if result.health is not None:
        print(f"Health:   {result.health.passed}/{result.health.total} checks passed")
        for failure in result.health.failures:
            print(f"  FAIL {failure.check_name}: {failure.message}")
    print(result.message)
    print("=" * 60)
    return result.exit_code


def run_memory(args):
    """Print repair memory statistics"""
    project_root = Path(args.project_root).resolve()
    settings = _load(args)
    stats = JsonRepairMemory(settings.memory_file(project_root)).stats()

    if args.json:
        print(json.dumps(stats, indent=2))
        return 0

    print(f"Patterns:         {stats['total_patterns']}")
    print(f"Repairs applied:  {stats['total_repairs']}")
    print(f"Avg success rate: {stats['avg_success_rate']:.2f}")
    print(f"Deprecated fixes: {stats['deprecated_fixes']}")
    if stats["top_patterns"]:
        print("Most applied:")
        for entry in stats["top_patterns"]:
            print(
                f"  {entry['signature']}: {entry['fix_name']} "
                f"x{entry['times_applied']} ({entry['success_rate']:.2f})"
            )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="autoremedy",
        description="autoremedy - self-healing build and deploy repair",
    )
    parser.add_argument("--version", action="store_true", help="Show version and exit")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("project_root", help="Root of the project to repair")
    common.add_argument("--config", help="YAML config file (default: PROJECT_ROOT/autoremedy.yaml)")

    # deploy command
    deploy_parser = subparsers.add_parser(
        "deploy", parents=[common], help="Build, repair, launch and verify a project"
    )
    deploy_parser.add_argument(
        "--skip-preflight", action="store_true", help="Skip the static PreFlight checks"
    )
    deploy_parser.add_argument(
        "--skip-lockcheck", action="store_true", help="Skip the lockfile freshness check"
    )
    deploy_parser.add_argument(
        "--max-retries", type=int, help="Maximum remediation attempts (default: 3)"
    )

    # surgeon command
    surgeon_parser = subparsers.add_parser(
        "surgeon", parents=[common], help="Diagnose a build log and apply one fix"
    )
    surgeon_parser.add_argument(
        "build_output",
        nargs="?",
        default=DEFAULT_BUILD_OUTPUT,
        help=f"Captured build output, '-' for stdin (default: {DEFAULT_BUILD_OUTPUT})",
    )
    surgeon_parser.add_argument(
        "--dry-run", action="store_true", help="Show the fix without running it"
    )

    # memory command
    memory_parser = subparsers.add_parser(
        "memory", parents=[common], help="Show repair memory statistics"
    )
    memory_parser.add_argument("--json", action="store_true", help="Print raw JSON")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"autoremedy {__version__}")
        return 0

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "deploy": run_deploy,
        "surgeon": run_surgeon,
        "memory": run_memory,
    }
    try:
        return commands[args.command](args)
    except ConfigError as e:
        print(f"❌ Configuration error: {e}")
        return 1
    except AutoremedyError as e:
        print(f"❌ {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
