"""
Transfer operations: the rsync wrapper and the two-phase pull-then-push
"""
import subprocess
from pathlib import Path
from typing import Optional, Sequence

from ..config import CONTROL_DIR, SessionConfig
from ..errors import SetupError, TransferFailure
from ..utils.logging import log, vlog, warn
from .exclusions import ExclusionSet, write_rule_file

INCOMING = "incoming"
OUTGOING = "outgoing"


class Rsync:
    """Runs rsync for one direction; output streams straight to our stdout."""

    def __init__(self, config: SessionConfig):
        self.config = config

    def build_command(self, source: str, destination: str, *,
                      delete: bool = True,
                      excludes: Sequence[str] = (),
                      exclude_files: Sequence[Path] = (),
                      filter_files: Sequence[Path] = ()) -> list[str]:
        cfg = self.config
        cmd = [cfg.rsync_binary, *cfg.rsync_options]
        if delete:
            cmd.append("--delete")
        if cfg.is_remote:
            cmd.extend(["-e", cfg.rsync_shell()])
        # rsync applies the first matching rule, protect rules go first
        for path in filter_files:
            cmd.append(f"--filter=merge {path}")
        for pattern in excludes:
            cmd.append(f"--exclude={pattern}")
        for path in exclude_files:
            cmd.append(f"--exclude-from={path}")
        # Trailing slash = copy contents, not the directory itself
        cmd.append(source.rstrip("/") + "/")
        cmd.append(destination.rstrip("/") + "/")
        return cmd

    def __call__(self, source: str, destination: str, **kwargs) -> int:
        cmd = self.build_command(source, destination, **kwargs)
        vlog(f"[rsync] {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd)
        except FileNotFoundError as exc:
            raise SetupError(f"transfer tool not found: {cmd[0]}") from exc
        return result.returncode


class TransferOrchestrator:
    """
    Exactly two transfers per session, always in this order:

      incoming  remote → local, --delete. Locally deleted paths are excluded so
                they are not fetched back; locally created paths are protected
                so --delete does not remove what the remote has never seen.
      outgoing  local → remote, --delete. Pushes local changes and propagates
                local deletions; locally created paths are protected from the
                remote-side delete.

    Remote deletions are thereby reconciled before local changes are pushed.
    """

    def __init__(self, config: SessionConfig, transfer=None):
        self.config = config
        self.transfer = transfer if transfer is not None else Rsync(config)

    def _common(self, delete: bool) -> dict:
        excludes = [f"/{CONTROL_DIR}"]
        exclude_files = []
        user_file = self.config.exclude_file
        if user_file is not None:
            if user_file.is_file():
                exclude_files.append(user_file)
            else:
                vlog(f"[transfer] no exclude file at {user_file}")
        return dict(delete=delete, excludes=excludes, exclude_files=exclude_files)

    def _phase(self, phase: str, source: str, destination: str, filter_files: list, delete: bool):
        log(f"[{phase}] {source} → {destination}")
        rc = self.transfer(source, destination, filter_files=filter_files, **self._common(delete))
        if rc != 0:
            warn(f"[{phase}] rsync exited {rc}")
            raise TransferFailure(phase, rc)
        log(f"[{phase}] done ✓")

    def run(self, exclusions: ExclusionSet, scratch_dir: Optional[Path] = None, delete: bool = True):
        """
        Pull then push. Raises TransferFailure; the push never runs after a failed pull.
        delete=False (no previous snapshot yet) merges the two trees without
        deleting anything on either side.
        """
        scratch = Path(scratch_dir if scratch_dir is not None else self.config.tmp_dir)
        scratch.mkdir(parents=True, exist_ok=True)
        hide_file = scratch / "incoming.rules"
        protect_file = scratch / "protect.rules"
        try:
            write_rule_file(protect_file, exclusions.locally_created, rule="P")
            write_rule_file(hide_file, exclusions.locally_deleted, rule="-")
            log(f"[transfer] hiding {len(exclusions.locally_deleted)} local deletion(s), "
                f"protecting {len(exclusions.locally_created)} local creation(s)")

            local = str(self.config.local_root)
            remote = self.config.remote_location
            self._phase(INCOMING, remote, local, [protect_file, hide_file], delete)
            self._phase(OUTGOING, local, remote, [protect_file], delete)
        finally:
            for f in (hide_file, protect_file):
                f.unlink(missing_ok=True)
