#!/usr/bin/env python3
"""
syncpair  —  two-way rsync sync between a local tree and a remote one
======================================================================
Author: Younes Rahimi

Subcommands:
  init HOST PATH  Make the current directory a replica of PATH on HOST
                  (HOST '-' pairs it with a local directory instead).
  sync            Run one sync session (the default when no command is given).
  cron            Run one sync session with all output appended to the log.
  log             Show the tail of the log written by 'cron'.
  status          Show local changes since the last sync and the lock state.
  unlock          Remove a stale local lock after checking both replicas.

Exit codes:
  0    success
  1    another sync is already running here
  2    stale local lock; inspect, then 'syncpair unlock'
  3    remote lock unavailable (held elsewhere, or host unreachable)
  128  transfer, setup or usage failure

Run 'syncpair <subcommand> --help' for more details.
"""
import argparse
import os
import sys
import time
from pathlib import Path

from .errors import EXIT_FATAL, SyncError
from .utils.logging import error, set_verbose

EXIT_CODES = """exit codes:
  0    success
  1    another sync is already running here
  2    stale local lock; inspect, then 'syncpair unlock'
  3    remote lock unavailable (held elsewhere, or host unreachable)
  128  transfer, setup or usage failure
"""

EXCLUDE_TEMPLATE = """# rsync exclude patterns, one per line (see 'man rsync', FILTER RULES).
# Excluded paths are neither transferred nor deleted in either direction.
# A leading '/' anchors a pattern at the replica root.
#
# *.swp
# .DS_Store
# __pycache__/
"""


# ── init ─────────────────────────────────────────────────────────────────────

def cmd_init(args) -> int:
    """Create .syncpair/ with config.yaml and an empty exclude file in the cwd."""
    from . import config as _cfg

    if len(args.target) != 2:
        error("usage: syncpair init HOST PATH  (HOST '-' for a local directory)")
        return EXIT_FATAL
    host, remote_path = args.target

    control_dir = Path.cwd() / _cfg.CONTROL_DIR
    config_file = control_dir / _cfg.CONFIG_FILE
    if config_file.exists():
        error(f"{Path.cwd()} is already initialised ({config_file})")
        return EXIT_FATAL

    global_cfg = _cfg.load_global_config()
    defaults = global_cfg.get("defaults", {}) or {}
    content = _cfg.render_project_file(host, remote_path, defaults)

    # validates host/path the same way a later sync will
    _cfg.build_config(Path.cwd(), _cfg.parse_project_text(content, config_file))

    if args.dry_run:
        print(f"[dry-run] Would write {config_file}:")
        print(content)
        return 0

    (control_dir / "tmp").mkdir(parents=True, exist_ok=True)
    config_file.write_text(content, encoding="utf-8")
    print(f"Created {config_file}")

    exclude_file = control_dir / _cfg.EXCLUDE_FILE
    if not exclude_file.exists():
        exclude_file.write_text(EXCLUDE_TEMPLATE, encoding="utf-8")
        print(f"Created {exclude_file}")

    if args.verbose:
        print(content)
    return 0


# ── sync ─────────────────────────────────────────────────────────────────────

def cmd_sync(args) -> int:
    """Run one session using the nearest .syncpair config."""
    from .config import load_config
    from .core.sync_engine import run_sync

    config = load_config()
    run_sync(config, verbose=args.verbose)
    return 0


# ── cron ─────────────────────────────────────────────────────────────────────

def _redirect_output(log_file: Path):
    """Point file descriptors 1 and 2 at the log, so rsync's output lands there too."""
    sys.stdout.flush()
    sys.stderr.flush()
    with open(log_file, "a", encoding="utf-8") as f:
        os.dup2(f.fileno(), sys.stdout.fileno())
        os.dup2(f.fileno(), sys.stderr.fileno())


def cmd_cron(args) -> int:
    """Run one session with output appended to .syncpair/log."""
    from .config import load_config
    from .core.sync_engine import run_sync

    config = load_config()
    config.control_dir.mkdir(parents=True, exist_ok=True)
    _redirect_output(config.log_file)
    run_sync(config, verbose=args.verbose)
    return 0


# ── log ──────────────────────────────────────────────────────────────────────

def cmd_log(args) -> int:
    """Print the last lines of the log; with --follow keep printing new ones."""
    from .config import load_config

    config = load_config()
    log_file = config.log_file
    if not log_file.exists():
        print(f"No log yet at {log_file} (it is written by 'syncpair cron').")
        return 0

    with open(log_file, "r", encoding="utf-8", errors="replace") as f:
        lines = f.readlines()
        for line in lines[-args.lines:] if args.lines > 0 else []:
            sys.stdout.write(line)
        sys.stdout.flush()
        if not args.follow:
            return 0
        try:
            while True:
                line = f.readline()
                if line:
                    sys.stdout.write(line)
                    sys.stdout.flush()
                else:
                    time.sleep(1)
        except KeyboardInterrupt:
            print()
    return 0


# ── status ───────────────────────────────────────────────────────────────────

def cmd_status(args) -> int:
    """Show local changes since the last sync and whether a session holds the lock."""
    from .config import load_config
    from .core.lock import is_process_alive, read_lock_owner
    from .operations.exclusions import build_exclusions
    from .operations.snapshot import snapshot
    from .state.snapshot_store import SnapshotStore

    config = load_config()
    store = SnapshotStore(config)
    previous = store.load_previous()
    current = snapshot(config.local_root)
    diff = build_exclusions(previous, current)

    print(f"\nLocal   : {config.local_root}")
    print(f"Remote  : {config.display_remote}")
    if previous:
        print(f"Tracked : {len(previous)} path(s) at last sync")
        print(f"Created : {len(diff.locally_created)} path(s) locally since last sync")
        print(f"Deleted : {len(diff.locally_deleted)} path(s) locally since last sync")
        if args.verbose:
            for rel in diff.locally_created:
                print(f"  + {rel}")
            for rel in diff.locally_deleted:
                print(f"  - {rel}")
    else:
        print("Tracked : never synced")

    if config.lock_file.exists():
        owner = read_lock_owner(config.lock_file)
        if owner is not None and is_process_alive(owner):
            print(f"\nA sync is running (PID {owner}).")
        else:
            print(f"\n⚠  Stale lock {config.lock_file} (PID {owner if owner is not None else '?'}).")
            print("   Check both replicas, then run 'syncpair unlock'.")
    else:
        print("\nNo sync running.")
    return 0


# ── unlock ───────────────────────────────────────────────────────────────────

def cmd_unlock(args) -> int:
    """Remove a stale local lock; refuses while its owner is alive."""
    from .config import load_config
    from .core.lock import unlock_stale

    config = load_config()
    try:
        owner = unlock_stale(config)
    except FileNotFoundError:
        print(f"No lock at {config.lock_file}.")
        return 0
    print(f"Removed stale lock {config.lock_file} (PID {owner if owner is not None else '?'}).")
    print(f"If a remote lock was left behind too, remove the directory {config.remote_lock} on the remote side.")
    return 0


# ── main ──────────────────────────────────────────────────────────────────────

class ArgumentParser(argparse.ArgumentParser):
    """Usage errors exit 128: argparse's default 2 is the stale-lock code."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(EXIT_FATAL, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = ArgumentParser(
        prog="syncpair",
        description="Two-way rsync sync between a local tree and a remote one",
        epilog=EXIT_CODES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Show remote commands, rsync command lines and lock details")

    # sub-commands inherit -v without clobbering a top-level -v
    common = ArgumentParser(add_help=False)
    common.add_argument("-v", "--verbose", action="store_true", default=argparse.SUPPRESS,
                        help="Show extra output")

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    # ── init ──────────────────────────────────────────────────────────────────
    init_p = subparsers.add_parser(
        "init", parents=[common],
        help="Make the current directory a replica of PATH on HOST",
        description="Create .syncpair/config.yaml for this directory. "
                    "HOST is [user@]hostname, or '-' for a local directory.",
    )
    init_p.add_argument("target", nargs="*", metavar="HOST PATH",
                        help="Remote host and replica path")
    init_p.add_argument("-n", "--dry-run", action="store_true",
                        help="Preview without writing files")

    # ── sync / cron ───────────────────────────────────────────────────────────
    subparsers.add_parser("sync", parents=[common], help="Run one sync session (default)")
    subparsers.add_parser("cron", parents=[common],
                          help="Run one sync session, appending all output to .syncpair/log")

    # ── log ───────────────────────────────────────────────────────────────────
    log_p = subparsers.add_parser("log", parents=[common], help="Show the tail of .syncpair/log")
    log_p.add_argument("-n", "--lines", type=int, default=20, metavar="N",
                       help="Number of lines to show (default: 20)")
    log_p.add_argument("-f", "--follow", action="store_true",
                       help="Keep printing lines as they are appended")

    # ── status / unlock ───────────────────────────────────────────────────────
    subparsers.add_parser("status", parents=[common],
                          help="Show local changes since the last sync and the lock state")
    subparsers.add_parser("unlock", parents=[common],
                          help="Remove a stale local lock")
    return parser


COMMANDS = {
    "init": cmd_init,
    "sync": cmd_sync,
    "cron": cmd_cron,
    "log": cmd_log,
    "status": cmd_status,
    "unlock": cmd_unlock,
}


def main(argv=None):
    """CLI entry point for syncpair"""
    parser = build_parser()
    args = parser.parse_args(argv)
    set_verbose(args.verbose)

    handler = COMMANDS.get(args.command or "sync")
    try:
        rc = handler(args)
    except SyncError as exc:
        error(str(exc))
        sys.exit(exc.exit_code)
    except KeyboardInterrupt:
        error("interrupted")
        sys.exit(EXIT_FATAL)
    sys.exit(rc)


if __name__ == "__main__":
    main()
