"""Core functionality"""
from .lock import LockCoordinator, is_process_alive
from .notifier import SlowSyncNotifier
from .remote_shell import SSHShell, LocalShell, open_shell
from .sync_engine import SyncSession, run_sync

__all__ = [
    "LockCoordinator", "is_process_alive",
    "SlowSyncNotifier",
    "SSHShell", "LocalShell", "open_shell",
    "SyncSession", "run_sync",
]
