"""
Tree snapshots: the sorted listing of every path in the local replica
"""
import os
from pathlib import Path
from typing import Iterable

from ..config import CONTROL_DIR

Snapshot = tuple  # tuple[str, ...] of relative posix paths, byte-wise sorted


def sort_key(rel: str) -> bytes:
    """Byte-wise order of a path, independent of locale."""
    return rel.encode("utf-8", "surrogateescape")


def sort_paths(paths: Iterable[str]) -> Snapshot:
    return tuple(sorted(paths, key=sort_key))


def snapshot(root: Path, control_dir: str = CONTROL_DIR) -> Snapshot:
    """
    Walk *root* and return every file, directory and symlink below it as a
    '/'-separated relative path, byte-wise sorted.

    Symlinked directories are listed but not followed. The control directory
    at the top of the tree is pruned.
    """
    root = Path(root)
    paths: list[str] = []
    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        rel_dir = os.path.relpath(dirpath, root)
        prefix = "" if rel_dir == os.curdir else rel_dir.replace(os.sep, "/") + "/"
        if not prefix:
            dirnames[:] = [d for d in dirnames if d != control_dir]
        for name in dirnames:
            paths.append(prefix + name)
        for name in filenames:
            paths.append(prefix + name)
    return sort_paths(paths)


def write_snapshot(path: Path, snap: Snapshot):
    """
    Persist a snapshot one path per line.
    Written to a sibling temp file and renamed so the slot is never half-written.
    """
    path = Path(path)
    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "w", encoding="utf-8", errors="surrogateescape", newline="\n") as f:
        for rel in snap:
            f.write(rel)
            f.write("\n")
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)


def read_snapshot(path: Path) -> Snapshot:
    """Load a persisted snapshot; a missing file is the empty snapshot."""
    path = Path(path)
    if not path.exists():
        return ()
    with open(path, "r", encoding="utf-8", errors="surrogateescape", newline="\n") as f:
        return tuple(line.rstrip("\n") for line in f if line.rstrip("\n"))
