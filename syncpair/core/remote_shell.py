"""
Remote-execution channel: paramiko SSH, or a local shell when no host is set
"""
import subprocess
from typing import Optional

import paramiko

from ..config import SessionConfig
from ..utils.logging import log, vlog
from ..utils.retry import retried


class SSHShell:
    """
    Wraps a paramiko SSHClient.
    Automatically reconnects on channel errors.
    Sends SSH keep-alives so a long rsync between lock calls doesn't drop us.
    """

    def __init__(self, config: SessionConfig):
        self.config = config
        self._ssh: Optional[paramiko.SSHClient] = None

    # ── connection ─────────────────────────────────────────────────────────

    def connect(self):
        if self._ssh:
            try:
                self._ssh.get_transport().send_ignore()  # test if alive
                return
            except (paramiko.SSHException, EOFError, OSError, AttributeError):
                self._close_quietly()

        cfg = self.config
        who = f"{cfg.user}@" if cfg.user else ""
        vlog(f"[SSH] connecting to {who}{cfg.host}:{cfg.port} …")
        client = paramiko.SSHClient()
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        kw: dict = dict(hostname=cfg.host, port=cfg.port,
                        timeout=20, banner_timeout=30, auth_timeout=30)
        if cfg.user:
            kw["username"] = cfg.user
        if cfg.ssh_key:
            kw["key_filename"] = cfg.ssh_key

        client.connect(**kw)

        # Keep-alive: send a NOP every 30s
        transport = client.get_transport()
        transport.set_keepalive(30)

        self._ssh = client
        vlog("[SSH] connected ✓")

    def _close_quietly(self):
        if self._ssh is not None:
            try:
                self._ssh.close()
            except (paramiko.SSHException, OSError) as exc:
                vlog(f"[SSH] close failed: {exc}")
        self._ssh = None

    def close(self):
        if self._ssh is not None:
            self._close_quietly()
            vlog("[SSH] disconnected.")

    def ensure_connected(self):
        """Call before any remote operation."""
        if self._ssh is not None:
            transport = self._ssh.get_transport()
            if transport is not None and transport.is_active():
                return
        self.connect()

    # ── exec ────────────────────────────────────────────────────────────────

    def run(self, cmd: str, timeout: int = 30, retry: bool = True) -> tuple[int, str]:
        """
        Run a command; return (exit_code, combined output).
        Pass retry=False for commands that must not run twice: a dropped
        channel can lose the exit status of a command that did run.
        """
        if retry:
            return self._run_retried(cmd, timeout)
        return self._exec(cmd, timeout)

    @retried
    def _run_retried(self, cmd: str, timeout: int) -> tuple[int, str]:
        return self._exec(cmd, timeout)

    def _exec(self, cmd: str, timeout: int) -> tuple[int, str]:
        self.ensure_connected()
        vlog(f"[SSH] $ {cmd}")
        _, stdout, stderr = self._ssh.exec_command(cmd, timeout=timeout)
        out = stdout.read().decode("utf-8", errors="replace")
        err = stderr.read().decode("utf-8", errors="replace")
        rc = stdout.channel.recv_exit_status()
        return rc, out + err

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class LocalShell:
    """Same contract as SSHShell, executed by /bin/sh on this machine."""

    def __init__(self, config: Optional[SessionConfig] = None):
        self.config = config

    def run(self, cmd: str, timeout: int = 30, retry: bool = True) -> tuple[int, str]:
        vlog(f"[sh] $ {cmd}")
        try:
            result = subprocess.run(
                cmd,
                shell=True,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise TimeoutError(f"local command timed out after {timeout}s: {cmd!r}") from exc
        return result.returncode, (result.stdout or "") + (result.stderr or "")

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


def open_shell(config: SessionConfig):
    """Pick the channel for this replica pair: SSH when a host is configured."""
    if config.is_remote:
        log(f"[SSH] remote replica {config.display_remote}")
        return SSHShell(config)
    return LocalShell(config)
