"""
OpsGuard - CLI Entry Points.

Provides:
- opsguard lock:        run a command while holding a filesystem lock
- opsguard timeout:     run a command under a wall-clock deadline
- opsguard cleanup:     run a command, then unwind cleanup commands (LIFO)
- opsguard retry:       retry a failing command with backoff
- opsguard lock-status: inspect a lock directory

Each primitive is also installed as its own script (opsguard-lock,
opsguard-timeout, opsguard-cleanup, opsguard-retry).

Exit codes: the command's own code, or 2 (usage), 70 (cleanup failed),
73 (lock timeout), 124 (deadline exceeded), 126/127 (cannot run command),
128+N (terminated by signal N).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from opsguard_core.config import OpsGuardConfig, load_config
from opsguard_core.core.error_handling import (
    EXIT_SUCCESS,
    EXIT_USAGE,
    OpsGuardError,
    UsageError,
    describe_exit_code,
    signal_exit_code,
)

# Configure logging early
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] [%(name)s] %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S%z",
    stream=sys.stderr,
)
logger = logging.getLogger("opsguard")


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """
    Configure logging based on verbosity.

    --quiet silences the primitives' progress logs (waiting, stale lock,
    timeout, retry); errors reported by the CLI itself are still shown.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.getLogger("opsguard").setLevel(level)
    logging.getLogger("opsguard_core").setLevel(logging.CRITICAL if quiet else level)


def _cleanup_command(value: str) -> Tuple[str, str]:
    return ("cmd", value)


def _cleanup_file(value: str) -> Tuple[str, str]:
    return ("file", value)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="opsguard",
        description="OpsGuard - locks, deadlines and cleanup for automation scripts",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Show version and exit",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="YAML file with lock/deadline/cleanup/retry defaults",
    )

    subparsers = parser.add_subparsers(dest="subcommand", help="Available commands")

    # Lock command
    lock_parser = subparsers.add_parser(
        "lock",
        help="Acquire an exclusive lock using an atomic directory and run a command",
    )
    lock_parser.add_argument(
        "--lock-file",
        type=Path,
        help="Lock directory path (required)",
    )
    lock_parser.add_argument(
        "--timeout",
        type=float,
        help="Max wait time in seconds (default: 0, wait forever)",
    )
    lock_parser.add_argument(
        "--poll-interval",
        type=float,
        help="Poll interval while waiting (default: 0.2)",
    )
    lock_parser.add_argument(
        "--stale-after",
        type=float,
        help="Break a dead owner's lock older than SEC (default: 0, disabled)",
    )
    lock_parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress wait/stale logs",
    )
    lock_parser.add_argument("command", nargs=argparse.REMAINDER)

    # Timeout command
    timeout_parser = subparsers.add_parser(
        "timeout",
        help="Run a command and enforce a maximum runtime",
    )
    timeout_parser.add_argument(
        "--timeout",
        type=float,
        help="Timeout in seconds (required, supports decimals)",
    )
    timeout_parser.add_argument(
        "--signal",
        help="Signal sent at timeout (default: TERM)",
    )
    timeout_parser.add_argument(
        "--grace",
        type=float,
        help="Grace period before SIGKILL (default: 5)",
    )
    timeout_parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress timeout logs",
    )
    timeout_parser.add_argument("command", nargs=argparse.REMAINDER)

    # Cleanup command
    cleanup_parser = subparsers.add_parser(
        "cleanup",
        help="Run a command, then cleanup commands in reverse order",
    )
    cleanup_parser.add_argument(
        "--cleanup",
        dest="cleanup_items",
        action="append",
        type=_cleanup_command,
        metavar="CMD",
        help="Cleanup command (repeatable)",
    )
    cleanup_parser.add_argument(
        "--cleanup-file",
        dest="cleanup_items",
        action="append",
        type=_cleanup_file,
        metavar="FILE",
        help="File with one cleanup command per line",
    )
    cleanup_parser.add_argument(
        "--verbose",
        dest="cleanup_verbose",
        action="store_true",
        help="Log each cleanup command and received signal",
    )
    cleanup_parser.add_argument("command", nargs=argparse.REMAINDER)

    # Retry command
    retry_parser = subparsers.add_parser(
        "retry",
        help="Retry a command on failure with configurable backoff",
    )
    retry_parser.add_argument("--attempts", type=int, help="Total attempts (default: 3)")
    retry_parser.add_argument("--delay", type=float, help="Initial delay before retry (default: 1)")
    retry_parser.add_argument("--backoff", type=float, help="Delay multiplier per retry (default: 2)")
    retry_parser.add_argument("--max-delay", type=float, help="Upper cap for delay (default: 0, disabled)")
    retry_parser.add_argument("--jitter", type=float, help="Add up to PERCENT%% positive jitter (default: 0)")
    retry_parser.add_argument("--retry-on", help="Comma-separated exit codes to retry (default: all non-zero)")
    retry_parser.add_argument("--quiet", action="store_true", help="Suppress retry logs")
    retry_parser.add_argument("command", nargs=argparse.REMAINDER)

    # Lock status command
    status_parser = subparsers.add_parser("lock-status", help="Show the state of a lock")
    status_parser.add_argument("--lock-file", type=Path, required=True, help="Lock directory path")
    status_parser.add_argument(
        "--stale-after",
        type=float,
        default=0.0,
        help="Threshold used to report the stale verdict",
    )
    status_parser.add_argument("--json", action="store_true", help="Emit JSON instead of a table")

    return parser


def _split_command(argv: List[str]) -> Tuple[List[str], Optional[List[str]]]:
    """Split argv at the first '--'; the tail is the command to run."""
    if "--" not in argv:
        return argv, None
    index = argv.index("--")
    return argv[:index], argv[index + 1:]


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for the OpsGuard CLI."""
    argv = list(sys.argv[1:] if argv is None else argv)
    head, tail = _split_command(argv)

    parser = build_parser()
    args = parser.parse_args(head)

    # '--' inside the command itself (no leading '--') must be kept
    command = list(getattr(args, "command", None) or [])
    if tail is not None:
        command = command + ["--"] + tail if command else tail
    args.command = command

    setup_logging(args.verbose, getattr(args, "quiet", False))

    if args.version:
        from opsguard_core import __version__
        print(f"OpsGuard v{__version__}")
        return EXIT_SUCCESS

    if args.subcommand is None:
        parser.print_help()
        return EXIT_SUCCESS

    try:
        config = load_config(args.config, reload=True)

        if args.subcommand == "lock":
            return _run_lock(args, config)
        elif args.subcommand == "timeout":
            return _run_timeout(args, config)
        elif args.subcommand == "cleanup":
            return _run_cleanup(args, config)
        elif args.subcommand == "retry":
            return _run_retry(args, config)
        elif args.subcommand == "lock-status":
            return _show_lock_status(args)

    except UsageError as e:
        parser.print_usage(sys.stderr)
        logger.error(e.message)
        return EXIT_USAGE
    except OpsGuardError as e:
        logger.error(e.message)
        return e.exit_code
    except KeyboardInterrupt:
        # asyncio.run already cancelled the primitive, which reaps its child
        logger.warning("interrupted")
        return signal_exit_code(signal.SIGINT)

    return EXIT_SUCCESS


def _require_command(args: argparse.Namespace) -> List[str]:
    if not args.command:
        raise UsageError("COMMAND is required (use -- COMMAND ...)")
    return args.command


def _report(code: int) -> int:
    if code != EXIT_SUCCESS:
        category, description = describe_exit_code(code)
        logger.debug(f"exiting with {code} ({category.value}: {description})")
    return code


def _run_lock(args: argparse.Namespace, config: OpsGuardConfig) -> int:
    """Run a command with the lock held."""
    from opsguard_core.locking import run_locked

    lock_config = config.lock.merge({
        "lock_file": args.lock_file,
        "timeout": args.timeout,
        "poll_interval": args.poll_interval,
        "stale_after": args.stale_after,
        "quiet": args.quiet or None,
    }).validate()
    command = _require_command(args)
    setup_logging(args.verbose, lock_config.quiet)

    return _report(asyncio.run(run_locked(command, lock_config)))


def _run_timeout(args: argparse.Namespace, config: OpsGuardConfig) -> int:
    """Run a command under a deadline."""
    from opsguard_core.supervision import run_with_config

    deadline_config = config.deadline.merge({
        "timeout": args.timeout,
        "signal": args.signal,
        "grace": args.grace,
        "quiet": args.quiet or None,
    }).validate()
    command = _require_command(args)
    setup_logging(args.verbose, deadline_config.quiet)

    result = asyncio.run(run_with_config(command, deadline_config))
    return _report(result.exit_code)


def _collect_cleanup_actions(items: Optional[List[Tuple[str, str]]]) -> List[str]:
    from opsguard_core.supervision import read_cleanup_file

    actions: List[str] = []
    for kind, value in items or []:
        if kind == "file":
            actions.extend(read_cleanup_file(value))
        else:
            actions.append(value)
    return actions


def _run_cleanup(args: argparse.Namespace, config: OpsGuardConfig) -> int:
    """Run a command, then unwind its cleanup stack."""
    from opsguard_core.supervision import CleanupStack, run_with_cleanup

    cleanup_config = config.cleanup
    if args.cleanup_verbose:
        cleanup_config = cleanup_config.merge({"verbose": True})

    actions = _collect_cleanup_actions(args.cleanup_items)
    if not actions:
        raise UsageError("at least one cleanup command is required")
    command = _require_command(args)

    stack = CleanupStack.from_config(cleanup_config, actions)
    return _report(asyncio.run(run_with_cleanup(command, stack)))


def _parse_retry_codes(value: Optional[str]) -> Optional[List[int]]:
    if value is None:
        return None
    codes = [part.strip() for part in value.split(",") if part.strip()]
    if not codes:
        raise UsageError("--retry-on must include at least one code")
    parsed = []
    for code in codes:
        if not code.isdigit():
            raise UsageError(f"retry code must be numeric: {code}")
        parsed.append(int(code))
    return parsed


def _run_retry(args: argparse.Namespace, config: OpsGuardConfig) -> int:
    """Retry a command with backoff."""
    from opsguard_core.supervision import run_with_retry

    retry_config = config.retry.merge({
        "attempts": args.attempts,
        "delay": args.delay,
        "backoff": args.backoff,
        "max_delay": args.max_delay,
        "jitter": args.jitter,
        "retry_on": _parse_retry_codes(args.retry_on),
        "quiet": args.quiet or None,
    }).validate()
    command = _require_command(args)
    setup_logging(args.verbose, retry_config.quiet)

    result = asyncio.run(run_with_retry(command, retry_config))
    return _report(result.exit_code)


def _show_lock_status(args: argparse.Namespace) -> int:
    """Show lock status."""
    from opsguard_core.locking import inspect_lock

    status = inspect_lock(args.lock_file, stale_after=args.stale_after)

    if args.json:
        print(json.dumps(status.to_dict(), indent=2))
        return EXIT_SUCCESS

    from rich.console import Console
    from rich.table import Table

    console = Console()

    if not status.exists:
        console.print(f"[green]Lock is free:[/green] {status.path}")
        return EXIT_SUCCESS

    table = Table(title="Lock Status")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")

    metadata = status.metadata
    table.add_row("Path", status.path)
    table.add_row("Owner PID", str(metadata.pid) if metadata and metadata.pid else "N/A")
    table.add_row("Host", metadata.host if metadata and metadata.host else "N/A")
    table.add_row("Created", str(metadata.created) if metadata and metadata.created else "N/A")
    table.add_row("Age", f"{status.age_seconds:.1f}s")
    table.add_row("Owner Alive", str(status.owner_alive))

    if status.stale:
        table.add_row("Stale", "[red]True[/red]")
    else:
        table.add_row("Stale", str(status.stale))

    console.print(table)
    return EXIT_SUCCESS


# CLI entry points for setup.py console_scripts
def lock() -> int:
    """Entry point for opsguard-lock."""
    sys.argv = ["opsguard", "lock"] + sys.argv[1:]
    return main()


def with_timeout() -> int:
    """Entry point for opsguard-timeout."""
    sys.argv = ["opsguard", "timeout"] + sys.argv[1:]
    return main()


def cleanup_trap() -> int:
    """Entry point for opsguard-cleanup."""
    sys.argv = ["opsguard", "cleanup"] + sys.argv[1:]
    return main()


def retry() -> int:
    """Entry point for opsguard-retry."""
    sys.argv = ["opsguard", "retry"] + sys.argv[1:]
    return main()


if __name__ == "__main__":
    sys.exit(main())
