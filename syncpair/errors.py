"""
Session failures and the exit codes the CLI maps them to
"""

EXIT_ALREADY_RUNNING = 1
EXIT_STALE_LOCK = 2
EXIT_REMOTE_LOCK_BUSY = 3
EXIT_FATAL = 128


class SyncError(RuntimeError):
    """Base class: every session failure is fatal and carries its exit code."""

    exit_code = EXIT_FATAL


class AlreadyRunning(SyncError):
    """Another live session holds the local lock."""

    exit_code = EXIT_ALREADY_RUNNING


class StaleLock(SyncError):
    """The local lock belongs to a process that is gone; an operator must clear it."""

    exit_code = EXIT_STALE_LOCK


class RemoteLockBusy(SyncError):
    """The remote lock marker exists or the remote channel could not create it."""

    exit_code = EXIT_REMOTE_LOCK_BUSY


class TransferFailure(SyncError):
    """A transfer phase exited non-zero."""

    exit_code = EXIT_FATAL

    def __init__(self, phase: str, returncode: int):
        super().__init__(f"{phase} transfer failed (rsync exit code {returncode})")
        self.phase = phase
        self.returncode = returncode


class SetupError(SyncError):
    """Not initialised, unreadable config, or remote bootstrap failed."""

    exit_code = EXIT_FATAL
