"""
IMFOLIO CLI

Operator commands for running the storage engine outside the API process.

Usage:
    imfolio audit [--owner ID] [--deep-verify] [--exclude PREFIX ...]
    imfolio repair [--owner ID] [--restore] [--delete] [--fixes FILE] [--apply]
    imfolio analytics [--owner ID]

Output is JSON on stdout; logs go to stderr.
"""

import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, TypeAdapter, ValidationError

from imfolio.config import get_settings
from imfolio.core.cancellation import CancellationToken
from imfolio.core.database import close_db, get_session_factory, init_db
from imfolio.core.exceptions import InventoryIncomplete, PolicyViolation, StorageAccessDenied
from imfolio.core.locks import close_key_locks, get_key_locks
from imfolio.core.log_config import configure_logging
from imfolio.models.contracts.storage import AuditOptions, AuditScope, ReferenceFix, RepairPolicy
from imfolio.services.storage_audit.object_store import get_object_store
from imfolio.services.storage_audit.service import StorageAuditService

logger = logging.getLogger(__name__)


def main(args: list[str] | None = None) -> int:
    """
    Main CLI entry point.

    Args:
        args: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, 1 for error)
    """
    if args is None:
        args = sys.argv[1:]

    # No args - show help
    if not args:
        print_help()
        return 0

    command = args[0].lower()

    if command in ("help", "-h", "--help"):
        print_help()
        return 0

    if command == "audit":
        return handle_audit(args[1:])

    if command == "repair":
        return handle_repair(args[1:])

    if command == "analytics":
        return handle_analytics(args[1:])

    # Unknown command
    print(f"Unknown command: {command}", file=sys.stderr)
    print_help()
    return 1


def print_help() -> None:
    """Print CLI help message."""
    print("""
IMFOLIO CLI - storage reconciliation for the IMFOLIO portfolio platform

Usage:
  imfolio <command> [options]

Commands:
  audit       Compare database records against the object store
  repair      Audit, then apply a repair policy (dry run unless --apply)
  analytics   Show storage usage per category and owner
  help        Show this help message

Examples:
  imfolio audit
  imfolio audit --owner 42 --deep-verify
  imfolio repair --restore --delete
  imfolio repair --owner 42 --fixes decisions.json --apply
  imfolio analytics --owner 42
""".strip())


def _parse_options(args: list[str], flags: set[str], values: set[str], repeated: set[str]) -> dict[str, Any]:
    """
    Minimal option parser for the sub-commands.

    Raises:
        ValueError: On an unknown option or a missing value
    """
    parsed: dict[str, Any] = {name: [] for name in repeated}
    i = 0
    while i < len(args):
        arg = args[i]
        if arg in flags:
            parsed[arg] = True
            i += 1
        elif arg in values or arg in repeated:
            if i + 1 >= len(args):
                raise ValueError(f"{arg} requires a value")
            if arg in repeated:
                parsed[arg].append(args[i + 1])
            else:
                parsed[arg] = args[i + 1]
            i += 2
        else:
            raise ValueError(f"Unknown option: {arg}")
    return parsed


def _print_model(model: BaseModel) -> None:
    print(model.model_dump_json(indent=2))


async def _with_service(
    action: Callable[[StorageAuditService, CancellationToken], Awaitable[BaseModel]],
) -> BaseModel:
    """Open the database, store and lock provider around one service call."""
    settings = get_settings()
    settings.validate_paths()
    await init_db()

    cancel = CancellationToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.cancel, "interrupted by operator")
    except (NotImplementedError, RuntimeError):
        # Signal handlers are unavailable on some platforms
        pass

    try:
        async with get_object_store(settings) as store:
            service = StorageAuditService(store, get_session_factory(), settings, locks=get_key_locks())
            return await action(service, cancel)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass
        await close_key_locks()
        await close_db()


def _run(action: Callable[[StorageAuditService, CancellationToken], Awaitable[BaseModel]]) -> int:
    configure_logging()
    try:
        result = asyncio.run(_with_service(action))
    except PolicyViolation as e:
        print(f"Error: invalid repair policy: {e.message}", file=sys.stderr)
        return 1
    except StorageAccessDenied as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except InventoryIncomplete as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    _print_model(result)
    return 0


def handle_audit(args: list[str]) -> int:
    """
    Handle 'imfolio audit' command.

    Args:
        args: Additional arguments (--owner, --deep-verify, --exclude)

    Returns:
        Exit code (0 for success, 1 for error)
    """
    if "--help" in args or "-h" in args:
        print("""
Usage: imfolio audit [options]

Options:
  --owner ID          Restrict the audit to one user
  --deep-verify       Re-hash matched objects and report content drift
  --exclude PREFIX    Key prefix never reported as orphaned (repeatable)
  --help, -h          Show this help message
""".strip())
        return 0

    try:
        opts = _parse_options(args, flags={"--deep-verify"}, values={"--owner"}, repeated={"--exclude"})
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    scope = AuditScope(owner_id=opts.get("--owner"))
    options = AuditOptions(deep_verify=opts.get("--deep-verify", False), exclude_prefixes=opts["--exclude"])
    return _run(lambda service, cancel: service.audit(scope, options, cancel))


def load_reference_fixes(path: str) -> list[ReferenceFix]:
    """
    Load operator decisions from a JSON file.

    The file holds a list of objects:
        [{"kind": "photo", "record_id": "17", "mode": "null"},
         {"kind": "hero", "record_id": "ab", "mode": "reassign", "replacement_key": "hero/u1/x.jpg"}]

    Raises:
        ValueError: If the file is unreadable or malformed
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        return TypeAdapter(list[ReferenceFix]).validate_python(data)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        raise ValueError(f"Cannot read reference fixes from {path}: {e}") from e


def handle_repair(args: list[str]) -> int:
    """
    Handle 'imfolio repair' command.

    Args:
        args: Additional arguments (--owner, --restore, --delete, --fixes, --apply, --exclude)

    Returns:
        Exit code (0 for success, 1 for error)
    """
    if "--help" in args or "-h" in args:
        print("""
Usage: imfolio repair [options]

Audits the scope, then applies the policy. Without --apply nothing is
changed and the outcome lists would-restore / would-delete actions.

Options:
  --owner ID          Restrict the repair to one user
  --restore           Restore orphaned files as placeholder records
  --delete            Delete orphaned files (only redundant duplicates with --restore)
  --fixes FILE        JSON file with per-record broken reference decisions
  --exclude PREFIX    Key prefix never treated as orphaned (repeatable)
  --apply             Perform the changes (default is a dry run)
  --help, -h          Show this help message
""".strip())
        return 0

    try:
        opts = _parse_options(
            args,
            flags={"--restore", "--delete", "--apply"},
            values={"--owner", "--fixes"},
            repeated={"--exclude"},
        )
        fixes = load_reference_fixes(opts["--fixes"]) if "--fixes" in opts else []
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    scope = AuditScope(owner_id=opts.get("--owner"))
    policy = RepairPolicy(
        dry_run=not opts.get("--apply", False),
        restore_orphans=opts.get("--restore", False),
        delete_orphans=opts.get("--delete", False),
        fix_broken_references=bool(fixes),
        reference_fixes=fixes,
    )
    return _run(
        lambda service, cancel: service.repair(scope, policy, exclude_prefixes=opts["--exclude"], cancel=cancel)
    )


def handle_analytics(args: list[str]) -> int:
    """
    Handle 'imfolio analytics' command.

    Args:
        args: Additional arguments (--owner)

    Returns:
        Exit code (0 for success, 1 for error)
    """
    if "--help" in args or "-h" in args:
        print("""
Usage: imfolio analytics [options]

Options:
  --owner ID          Restrict to one user
  --help, -h          Show this help message
""".strip())
        return 0

    try:
        opts = _parse_options(args, flags=set(), values={"--owner"}, repeated=set())
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    scope = AuditScope(owner_id=opts.get("--owner"))
    return _run(lambda service, cancel: service.analytics(scope))


if __name__ == "__main__":
    sys.exit(main())
