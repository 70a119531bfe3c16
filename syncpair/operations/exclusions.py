"""
Exclusion sets: what changed locally since the last successful sync
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from .snapshot import Snapshot, sort_key

_WILDCARDS = ("*", "?", "[")


@dataclass(frozen=True)
class ExclusionSet:
    """
    locally_deleted  paths in the previous snapshot but not the current one;
                     hidden from the incoming transfer so they are not fetched back.
    locally_created  paths in the current snapshot but not the previous one;
                     protected from --delete because the remote has never seen them.
    """
    locally_deleted: tuple = ()
    locally_created: tuple = ()

    @property
    def empty(self) -> bool:
        return not self.locally_deleted and not self.locally_created


def _check_sorted(name: str, seq: Snapshot):
    keys = [sort_key(p) for p in seq]
    for a, b in zip(keys, keys[1:]):
        if a >= b:
            raise ValueError(f"{name} snapshot is not strictly sorted at {b!r}")


def build_exclusions(previous: Snapshot, current: Snapshot) -> ExclusionSet:
    """
    Merge the two sorted snapshots in one pass.
    An empty previous snapshot (first run) yields empty sets: a plain two-way merge.
    """
    if not previous:
        return ExclusionSet()
    _check_sorted("previous", previous)
    _check_sorted("current", current)

    deleted: list[str] = []
    created: list[str] = []
    i = j = 0
    while i < len(previous) and j < len(current):
        p, c = sort_key(previous[i]), sort_key(current[j])
        if p == c:
            i += 1
            j += 1
        elif p < c:
            deleted.append(previous[i])
            i += 1
        else:
            created.append(current[j])
            j += 1
    deleted.extend(previous[i:])
    created.extend(current[j:])
    return ExclusionSet(tuple(deleted), tuple(created))


def rsync_pattern(rel: str) -> str:
    """Anchor *rel* at the transfer root; escape wildcards so it matches literally."""
    if any(ch in rel for ch in _WILDCARDS):
        rel = "".join("\\" + ch if ch in _WILDCARDS or ch == "\\" else ch for ch in rel)
    return "/" + rel


def write_rule_file(path: Path, paths: Iterable[str], rule: str = "-") -> Path:
    """
    Write an rsync merge file with one *rule* line per path
    ('-' exclude, 'P' protect from deletion). Returns *path*.
    """
    path = Path(path)
    with open(path, "w", encoding="utf-8", errors="surrogateescape", newline="\n") as f:
        for rel in paths:
            f.write(f"{rule} {rsync_pattern(rel)}\n")
    return path
