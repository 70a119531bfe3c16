"""
Slow-sync notifier: a timer racing the transfers, only to decide whether to
tell the user that a sync is taking a while.
"""
import os
import signal
import subprocess
import threading
from typing import Optional

from ..utils.logging import log, vlog, warn

KILL_GRACE = 5  # seconds between SIGTERM and SIGKILL
STOP_CMD_TIMEOUT = 30


def _spawn(cmd: str) -> subprocess.Popen:
    # own session, so the whole tree of the notification command can be killed
    return subprocess.Popen(cmd, shell=True, start_new_session=True)


def _kill_tree(proc: subprocess.Popen):
    # the group can outlive its leader (`cmd &`), so signal it even if proc exited
    try:
        os.killpg(proc.pid, signal.SIGTERM)
    except ProcessLookupError:
        proc.wait()
        return
    try:
        proc.wait(timeout=KILL_GRACE)
    except subprocess.TimeoutExpired:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        proc.wait()


class SlowSyncNotifier:
    """
    start()  arm the timer.
    stop()   the sync finished: cancel the timer, kill a running start command,
             join, then run the stop command if the start one fired.
    kill()   the sync failed: cancel, kill and join without notifying.

    The start command fires at most once per session.
    """

    def __init__(self, threshold: float, start_cmd: Optional[str] = None,
                 stop_cmd: Optional[str] = None):
        self.threshold = threshold
        self.start_cmd = start_cmd
        self.stop_cmd = stop_cmd
        self.slow = False
        self._done = threading.Event()
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._child: Optional[subprocess.Popen] = None

    @property
    def enabled(self) -> bool:
        return self.threshold > 0

    def start(self):
        if not self.enabled or self._thread is not None:
            return
        self._done.clear()
        self._thread = threading.Thread(target=self._wait, name="slow-sync-timer", daemon=True)
        self._thread.start()

    def _wait(self):
        if self._done.wait(self.threshold):
            return
        with self._lock:
            if self._done.is_set():
                return
            self.slow = True
            warn(f"[notify] sync is taking longer than {self.threshold:g}s …")
            if self.start_cmd:
                try:
                    self._child = _spawn(self.start_cmd)
                except OSError as exc:
                    warn(f"[notify] start command failed: {exc}")
                    return
        if self._child is not None:
            self._child.wait()

    def _halt(self):
        self._done.set()
        with self._lock:
            child = self._child
        if child is not None:
            _kill_tree(child)
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def stop(self):
        self._halt()
        if not self.slow:
            return
        log("[notify] slow sync finished")
        if not self.stop_cmd:
            return
        try:
            proc = _spawn(self.stop_cmd)
        except OSError as exc:
            warn(f"[notify] stop command failed: {exc}")
            return
        try:
            proc.wait(timeout=STOP_CMD_TIMEOUT)
        except subprocess.TimeoutExpired:
            warn("[notify] stop command timed out")
            _kill_tree(proc)

    def kill(self):
        self._halt()
        vlog("[notify] timer killed")

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.stop()
        else:
            self.kill()
        return False
