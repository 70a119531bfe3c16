"""
Dual-site locking: a PID file in the local control directory plus a marker
directory on the remote replica. A session runs only while it holds both.
"""
import errno
import os
import shlex
import socket
import uuid
from pathlib import PurePosixPath
from typing import Callable, Optional

from ..config import SessionConfig
from ..errors import AlreadyRunning, RemoteLockBusy, SetupError, StaleLock
from ..utils.logging import log, vlog, warn
from ..utils.retry import RETRYABLE as CHANNEL_ERRORS

UNLOCKED = "unlocked"
LOCAL_ACQUIRED = "local-acquired"
BOTH_ACQUIRED = "both-acquired"


def is_process_alive(pid: int) -> bool:
    """True if a process with this id exists (signal 0 probes without signalling)."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # exists, owned by someone else
        return True
    return True


def read_lock_owner(path) -> Optional[int]:
    """PID recorded in a local lock file, or None if it is unreadable."""
    try:
        text = path.read_text("utf-8").strip()
        return int(text.split()[0])
    except (OSError, ValueError, IndexError):
        return None


class LockCoordinator:
    """
    Unlocked → LocalAcquired → BothAcquired → Unlocked.

    A stale local lock (owner process gone) is reported, never cleared: the
    crashed session's partial state is unknown and needs an operator.

    The remote marker holds an `owner` file with this session's token, so a
    marker whose creation outcome was lost with the channel can be recognised
    as ours, and release never removes another session's marker.
    """

    def __init__(self, config: SessionConfig, shell,
                 is_alive: Callable[[int], bool] = is_process_alive,
                 pid: Optional[int] = None):
        self.config = config
        self.shell = shell
        self.is_alive = is_alive
        self.pid = pid if pid is not None else os.getpid()
        self.token = f"{socket.gethostname()}:{self.pid}:{uuid.uuid4().hex}"
        self.state = UNLOCKED
        self._remote_pending = False

    # ── local ───────────────────────────────────────────────────────────────

    def acquire_local(self):
        path = self.config.lock_file
        if path.exists():
            owner = read_lock_owner(path)
            if owner is not None and self.is_alive(owner):
                raise AlreadyRunning(f"another sync (PID {owner}) is running on {self.config.local_root}")
            raise StaleLock(
                f"stale lock {path} (owner PID {owner if owner is not None else '?'} is not running); "
                "check both replicas, then run 'syncpair unlock'"
            )

        path.parent.mkdir(parents=True, exist_ok=True)
        # the PID goes into a private file first; the lock path only ever
        # appears with its content, via link()
        staging = path.with_name(f"{path.name}.{self.pid}.{uuid.uuid4().hex[:8]}")
        try:
            with open(staging, "x", encoding="utf-8") as f:
                f.write(f"{self.pid}\n")
            try:
                os.link(staging, path)
            except FileExistsError:
                raise AlreadyRunning(f"another sync just took the lock on {self.config.local_root}") from None
        finally:
            staging.unlink(missing_ok=True)
        self.state = LOCAL_ACQUIRED
        vlog(f"[lock] local lock {path} (PID {self.pid})")

    def release_local(self):
        try:
            self.config.lock_file.unlink()
            vlog("[lock] local lock released")
        except FileNotFoundError:
            pass
        except OSError as exc:
            warn(f"[lock] could not remove local lock {self.config.lock_file}: {exc}")

    # ── remote ──────────────────────────────────────────────────────────────

    @property
    def remote_owner_file(self) -> str:
        return str(PurePosixPath(self.config.remote_lock) / "owner")

    def bootstrap_remote(self):
        """Create the remote replica root and its control directory (releases the local lock on failure)."""
        cmd = f"mkdir -p {shlex.quote(self.config.remote_control_dir)}"
        try:
            rc, out = self.shell.run(cmd)
        except CHANNEL_ERRORS as exc:
            self.release_local()
            self.state = UNLOCKED
            raise RemoteLockBusy(f"cannot reach remote replica: {exc}") from exc
        if rc != 0:
            self.release_local()
            self.state = UNLOCKED
            raise SetupError(f"cannot create {self.config.remote_control_dir}: {out.strip()}")

    def _holds_remote(self) -> bool:
        """True if the remote marker exists and carries our token."""
        cmd = f"cat {shlex.quote(self.remote_owner_file)}"
        try:
            rc, out = self.shell.run(cmd)
        except CHANNEL_ERRORS as exc:
            warn(f"[lock] cannot check remote lock owner: {exc}")
            return False
        return rc == 0 and out.strip() == self.token

    def acquire_remote(self):
        """
        mkdir is atomic: of two sessions racing here exactly one succeeds.
        The command runs once, never retried; if the channel drops, the owner
        file tells whether it took effect.
        The local lock is dropped before any failure is reported.
        """
        if self.state != LOCAL_ACQUIRED:
            raise RuntimeError("acquire_local() must succeed before acquire_remote()")
        lock = shlex.quote(self.config.remote_lock)
        owner = shlex.quote(self.remote_owner_file)
        cmd = f"mkdir {lock} && printf '%s\\n' {shlex.quote(self.token)} > {owner}"
        self._remote_pending = True
        try:
            rc, out = self.shell.run(cmd, retry=False)
        except CHANNEL_ERRORS as exc:
            if self._holds_remote():
                self._remote_pending = False
                self.state = BOTH_ACQUIRED
                warn(f"[lock] remote channel dropped ({exc}); lock was taken before it did")
                return
            self._remote_pending = False
            self.release_local()
            self.state = UNLOCKED
            raise RemoteLockBusy(f"remote lock call failed: {exc}") from exc
        self._remote_pending = False
        if rc != 0:
            self.release_local()
            self.state = UNLOCKED
            detail = out.strip()
            raise RemoteLockBusy(
                f"remote lock {self.config.remote_lock} is held by another session"
                + (f" ({detail})" if detail else "")
            )
        self.state = BOTH_ACQUIRED
        vlog(f"[lock] remote lock {self.config.remote_lock}")

    def release_remote(self):
        """Remove the remote marker only if it carries our token."""
        lock = shlex.quote(self.config.remote_lock)
        owner = shlex.quote(self.remote_owner_file)
        cmd = (f"if [ \"$(cat {owner} 2>/dev/null)\" = {shlex.quote(self.token)} ]; "
               f"then rm -f {owner} && rmdir {lock}; fi")
        try:
            rc, out = self.shell.run(cmd)
        except CHANNEL_ERRORS as exc:
            warn(f"[lock] could not remove remote lock: {exc}")
            return
        if rc != 0:
            warn(f"[lock] could not remove remote lock {self.config.remote_lock}: {out.strip()}")
        else:
            vlog("[lock] remote lock released")

    # ── both ────────────────────────────────────────────────────────────────

    def acquire(self):
        self.acquire_local()
        try:
            self.bootstrap_remote()
            self.acquire_remote()
        except BaseException:
            self.release()
            raise
        log("[lock] both replicas locked")

    def release(self):
        """Best effort and idempotent; never raises."""
        if self.state == BOTH_ACQUIRED or self._remote_pending:
            self.release_remote()
        if self.state in (LOCAL_ACQUIRED, BOTH_ACQUIRED):
            self.release_local()
        self.state = UNLOCKED
        self._remote_pending = False

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, *exc):
        self.release()
        return False


def unlock_stale(config: SessionConfig, is_alive: Callable[[int], bool] = is_process_alive) -> Optional[int]:
    """
    Operator action: remove a local lock whose owner is gone.
    Returns the recorded PID (None if unreadable); raises AlreadyRunning if the
    owner is alive and FileNotFoundError if there is no lock.
    """
    path = config.lock_file
    if not path.exists():
        raise FileNotFoundError(errno.ENOENT, "no local lock", str(path))
    owner = read_lock_owner(path)
    if owner is not None and is_alive(owner):
        raise AlreadyRunning(f"lock is held by running process {owner}")
    path.unlink()
    return owner
