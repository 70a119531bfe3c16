"""
Configuration for syncpair
Author: Younes Rahimi

A session runs from one immutable SessionConfig built at startup from the
project file (.syncpair/config.yaml, searched upward) layered over the
global defaults ($XDG_CONFIG_HOME/syncpair/config.yaml).
"""
import os
import shlex
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional

import yaml

from .errors import SetupError

# ══════════════════════════════════════════════════════════════════════════════
#  DEFAULTS
# ══════════════════════════════════════════════════════════════════════════════

CONTROL_DIR = ".syncpair"
CONFIG_FILE = "config.yaml"
EXCLUDE_FILE = "exclude"

SSH_PORT = 22
SLOW_SYNC_TIME = 30  # seconds before the "sync is taking a while" notification

# -a archive, -u keep newer receiver files (last synced wins), -z compress,
# --itemize-changes report every change in the log
RSYNC_OPTIONS = ("-a", "-u", "-z", "--itemize-changes")

# Value for HOST in `syncpair init HOST PATH` that selects local mode
LOCAL_HOST = "-"


@dataclass(frozen=True)
class SessionConfig:
    local_root: Path
    remote_path: str
    host: Optional[str] = None
    port: int = SSH_PORT
    user: Optional[str] = None
    ssh_key: Optional[str] = None
    ssh_command: str = "ssh"
    rsync_binary: str = "rsync"
    rsync_options: tuple = RSYNC_OPTIONS
    exclude_file: Optional[Path] = None
    slow_sync_time: float = SLOW_SYNC_TIME
    slow_sync_start_cmd: Optional[str] = None
    slow_sync_stop_cmd: Optional[str] = None

    # ── mode ───────────────────────────────────────────────────────────────

    @property
    def is_remote(self) -> bool:
        return bool(self.host)

    @property
    def remote_root(self) -> str:
        """Remote replica root as the remote shell sees it."""
        if self.is_remote:
            return str(PurePosixPath(self.remote_path))
        path = Path(self.remote_path).expanduser()
        if not path.is_absolute():
            path = self.local_root / path
        return str(path)

    @property
    def remote_location(self) -> str:
        """Remote replica root in rsync's `[user@]host:path` form."""
        if not self.is_remote:
            return self.remote_root
        prefix = f"{self.user}@" if self.user else ""
        return f"{prefix}{self.host}:{self.remote_root}"

    @property
    def display_remote(self) -> str:
        if not self.is_remote:
            return f"(local) {self.remote_root}"
        return f"{self.remote_location} (port {self.port})"

    # ── local control directory ───────────────────────────────────────────

    @property
    def control_dir(self) -> Path:
        return self.local_root / CONTROL_DIR

    @property
    def config_file(self) -> Path:
        return self.control_dir / CONFIG_FILE

    @property
    def previous_file(self) -> Path:
        return self.control_dir / "previous"

    @property
    def current_file(self) -> Path:
        return self.control_dir / "current"

    @property
    def lock_file(self) -> Path:
        return self.control_dir / "lock"

    @property
    def tmp_dir(self) -> Path:
        return self.control_dir / "tmp"

    @property
    def log_file(self) -> Path:
        return self.control_dir / "log"

    # ── remote control directory ──────────────────────────────────────────

    @property
    def remote_control_dir(self) -> str:
        return str(PurePosixPath(self.remote_root) / CONTROL_DIR)

    @property
    def remote_lock(self) -> str:
        return str(PurePosixPath(self.remote_control_dir) / "lock")

    # ── transport ──────────────────────────────────────────────────────────

    def rsync_shell(self) -> str:
        """Value for rsync's -e option in remote mode."""
        parts = shlex.split(self.ssh_command) + ["-p", str(self.port)]
        if self.ssh_key:
            parts += ["-i", str(Path(self.ssh_key).expanduser())]
        return " ".join(shlex.quote(p) for p in parts)


# ══════════════════════════════════════════════════════════════════════════════
#  GLOBAL CONFIG FILE  ── $XDG_CONFIG_HOME/syncpair/config.yaml
# ══════════════════════════════════════════════════════════════════════════════

def get_global_config_dir() -> Path:
    """Return the global config directory for syncpair."""
    xdg = os.environ.get("XDG_CONFIG_HOME", "")
    if xdg:
        return Path(xdg) / "syncpair"
    return Path.home() / ".config" / "syncpair"


def load_global_config() -> dict:
    """Load the global config; a missing file means no defaults."""
    cfg_path = get_global_config_dir() / CONFIG_FILE
    if not cfg_path.is_file():
        return {}
    try:
        with cfg_path.open("r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise SetupError(f"cannot read global config {cfg_path}: {exc}") from exc


# ══════════════════════════════════════════════════════════════════════════════
#  PROJECT CONFIG FILE  ── .syncpair/config.yaml (searched upward)
# ══════════════════════════════════════════════════════════════════════════════

def find_project_root(start: Optional[Path] = None) -> Optional[Path]:
    """
    Search upward from *start* (default: cwd) for a directory holding
    .syncpair/config.yaml. Returns that directory (the local replica root),
    or None if no parent is initialised.
    """
    current = (start or Path.cwd()).resolve()
    while True:
        if (current / CONTROL_DIR / CONFIG_FILE).is_file():
            return current
        parent = current.parent
        if parent == current:
            return None
        current = parent


def parse_project_text(text: str, path: Path) -> dict:
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise SetupError(f"cannot parse {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise SetupError(f"{path}: expected a mapping at the top level")
    return data


def load_project_file(path: Path) -> dict:
    """Parse a project config.yaml and return its contents as a dict."""
    try:
        text = path.read_text("utf-8")
    except OSError as exc:
        raise SetupError(f"cannot read {path}: {exc}") from exc
    return parse_project_text(text, path)


def _options(value) -> tuple:
    if value is None:
        return RSYNC_OPTIONS
    if isinstance(value, str):
        return tuple(shlex.split(value))
    return tuple(str(v) for v in value)


def _check_disjoint(local_root: Path, remote_root: Path):
    """In local mode neither replica may contain the other."""
    remote_root = remote_root.resolve()
    if (remote_root == local_root or local_root in remote_root.parents
            or remote_root in local_root.parents):
        raise SetupError(
            f"replica roots overlap: {local_root} and {remote_root}; "
            "the local-mode remote_path must point outside this replica"
        )


def build_config(local_root: Path, data: dict) -> SessionConfig:
    """
    Build a SessionConfig from a flat settings dict.
    Supports keys: host, port, user, ssh_key, ssh_command, remote_path,
                   rsync_binary, rsync_options, exclude_file, slow_sync_time,
                   slow_sync_start_cmd, slow_sync_stop_cmd.
    """
    local_root = Path(local_root).resolve()
    remote_path = data.get("remote_path")
    if not remote_path:
        raise SetupError("remote_path is not set")

    host = data.get("host")
    if host in (None, "", LOCAL_HOST):
        host = None
    else:
        host = str(host)
    user = data.get("user")
    if host and "@" in host:
        user, host = host.split("@", 1)

    exclude = data.get("exclude_file", f"{CONTROL_DIR}/{EXCLUDE_FILE}")
    exclude_file = None
    if exclude:
        exclude_file = Path(exclude).expanduser()
        if not exclude_file.is_absolute():
            exclude_file = local_root / exclude_file

    try:
        port = int(data.get("port", SSH_PORT))
        slow_sync_time = float(data.get("slow_sync_time", SLOW_SYNC_TIME))
    except (TypeError, ValueError) as exc:
        raise SetupError(f"invalid number in config: {exc}") from exc

    config = SessionConfig(
        local_root=local_root,
        remote_path=str(remote_path),
        host=host,
        port=port,
        user=str(user) if user else None,
        ssh_key=data.get("ssh_key") or None,
        ssh_command=str(data.get("ssh_command") or "ssh"),
        rsync_binary=str(data.get("rsync_binary") or "rsync"),
        rsync_options=_options(data.get("rsync_options")),
        exclude_file=exclude_file,
        slow_sync_time=slow_sync_time,
        slow_sync_start_cmd=data.get("slow_sync_start_cmd") or None,
        slow_sync_stop_cmd=data.get("slow_sync_stop_cmd") or None,
    )
    if not config.is_remote:
        _check_disjoint(config.local_root, Path(config.remote_root))
    return config


def load_config(start: Optional[Path] = None) -> SessionConfig:
    """Locate the project, merge global defaults under it, build the config."""
    root = find_project_root(start)
    if root is None:
        raise SetupError(
            f"not initialised: no {CONTROL_DIR}/{CONFIG_FILE} in this directory "
            "or any parent (run 'syncpair init HOST PATH')"
        )
    merged = dict(load_global_config().get("defaults", {}) or {})
    merged.update(load_project_file(root / CONTROL_DIR / CONFIG_FILE))
    return build_config(root, merged)


def render_project_file(host: str, remote_path: str, defaults: Optional[dict] = None) -> str:
    """Text of a fresh .syncpair/config.yaml written by `syncpair init`."""
    defaults = defaults or {}

    def _yq(value: str) -> str:
        """Wrap a string in YAML single quotes, escaping embedded single quotes."""
        return "'" + value.replace("'", "''") + "'"

    lines = [
        "# .syncpair/config.yaml — syncpair replica configuration",
        "#",
        f"# host: SSH host ([user@]name), or '{LOCAL_HOST}' to sync with a local directory.",
        "# remote_path: replica root on the host (relative paths are relative to",
        "#              the SSH login directory, or to this replica in local mode,",
        "#              where it must lie outside it, e.g. '../mirror').",
        f"host: {_yq(host)}",
        f"remote_path: {_yq(remote_path)}",
        f"port: {int(defaults.get('port', SSH_PORT))}",
        f"exclude_file: {_yq(CONTROL_DIR + '/' + EXCLUDE_FILE)}",
        f"slow_sync_time: {defaults.get('slow_sync_time', SLOW_SYNC_TIME)}",
        "# Shell commands run when a sync takes longer than slow_sync_time,",
        "# and when that slow sync finishes, e.g. notify-send 'syncpair' 'syncing…'",
        f"slow_sync_start_cmd: {_yq(str(defaults.get('slow_sync_start_cmd') or ''))}",
        f"slow_sync_stop_cmd: {_yq(str(defaults.get('slow_sync_stop_cmd') or ''))}",
    ]
    return "\n".join(lines) + "\n"
