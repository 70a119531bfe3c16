"""
Main sync engine - one session: lock, snapshot, diff, transfer, commit
"""
import traceback
from typing import Callable, Optional

from ..config import SessionConfig
from ..errors import SetupError, SyncError
from ..operations.exclusions import ExclusionSet, build_exclusions
from ..operations.transfer import TransferOrchestrator
from ..state.snapshot_store import SnapshotStore
from ..utils.logging import is_verbose, log, set_verbose, warn
from .lock import LockCoordinator, is_process_alive
from .notifier import SlowSyncNotifier
from .remote_shell import open_shell


class SyncSession:
    """
    Collaborators are injectable so the ordering and cleanup rules can be
    exercised without ssh, rsync or real process ids.
    """

    def __init__(self, config: SessionConfig,
                 shell=None,
                 transfer=None,
                 is_alive: Callable[[int], bool] = is_process_alive,
                 notifier: Optional[SlowSyncNotifier] = None):
        self.config = config
        self._own_shell = shell is None
        self.shell = shell if shell is not None else open_shell(config)
        self.locks = LockCoordinator(config, self.shell, is_alive=is_alive)
        self.store = SnapshotStore(config)
        self.orchestrator = TransferOrchestrator(config, transfer)
        self.notifier = notifier if notifier is not None else SlowSyncNotifier(
            config.slow_sync_time, config.slow_sync_start_cmd, config.slow_sync_stop_cmd)
        self.exclusions: Optional[ExclusionSet] = None

    def run(self):
        """
        Run one session. Every failure is fatal for this session and is
        re-raised as a SyncError after the locks are released and the notifier
        is killed. Nothing is retried here.
        """
        cfg = self.config
        print(f"\n{'=' * 64}")
        print(f"  Sync  {cfg.local_root}")
        print(f"   ↔   {cfg.display_remote}")
        print(f"{'=' * 64}")

        try:
            self.store.ensure_dirs()
            self.locks.acquire()
            try:
                self._locked_session()
            except BaseException as exc:
                self._cleanup(exc)
                raise
            self.locks.release()
        except SyncError:
            raise
        except (OSError, ValueError) as exc:
            raise SetupError(str(exc)) from exc
        finally:
            if self._own_shell:
                self.shell.close()
        log("[sync] finished ✓")

    def _locked_session(self):
        previous = self.store.load_previous()
        current = self.store.take_current()
        log(f"[scan] {len(current)} local path(s), {len(previous)} in last synced state")

        self.exclusions = build_exclusions(previous, current)
        if not previous:
            log("[scan] no previous snapshot; first sync merges both trees, nothing is deleted")
        elif self.exclusions.empty:
            log("[diff] no local changes since the last sync")
        else:
            log(f"[diff] deleted locally={len(self.exclusions.locally_deleted)}  "
                f"created locally={len(self.exclusions.locally_created)}")

        self.notifier.start()
        self.orchestrator.run(self.exclusions, self.config.tmp_dir, delete=bool(previous))
        self.notifier.stop()

        self.store.promote()

    def _cleanup(self, exc: BaseException):
        """Failure path: locks first, then the notifier; the previous snapshot is left alone."""
        warn(f"Sync failed: {exc}")
        if is_verbose() and not isinstance(exc, SyncError):
            traceback.print_exc()
        self.locks.release()
        self.notifier.kill()
        self.store.discard_current()


def run_sync(config: SessionConfig, verbose: bool = False):
    set_verbose(verbose)
    SyncSession(config).run()
