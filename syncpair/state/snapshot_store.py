"""
Snapshot slots in the control directory (persistent across runs)

  previous  the tree as it stood after the last successful session
  current   scratch slot for this session; promoted to previous on success
"""
import os

from ..config import SessionConfig
from ..operations.snapshot import Snapshot, read_snapshot, snapshot, write_snapshot
from ..utils.logging import log, vlog


class SnapshotStore:
    def __init__(self, config: SessionConfig):
        self.config = config

    def ensure_dirs(self):
        self.config.control_dir.mkdir(parents=True, exist_ok=True)
        self.config.tmp_dir.mkdir(parents=True, exist_ok=True)

    def load_previous(self) -> Snapshot:
        return read_snapshot(self.config.previous_file)

    def take_current(self) -> Snapshot:
        """Snapshot the local replica into the current slot."""
        snap = snapshot(self.config.local_root)
        write_snapshot(self.config.current_file, snap)
        vlog(f"[scan] {len(snap)} path(s) written to {self.config.current_file}")
        return snap

    def promote(self):
        """
        Re-snapshot the tree as the transfers left it and make that the
        previous snapshot. Called only after both transfers succeeded.
        """
        snap = self.take_current()
        os.replace(self.config.current_file, self.config.previous_file)
        log(f"[commit] {len(snap)} path(s) recorded as last synced state")

    def discard_current(self):
        self.config.current_file.unlink(missing_ok=True)
