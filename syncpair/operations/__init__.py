"""Operations (snapshot, exclusions, transfer)"""
from .snapshot import snapshot, read_snapshot, write_snapshot, sort_paths
from .exclusions import ExclusionSet, build_exclusions, write_rule_file
from .transfer import Rsync, TransferOrchestrator

__all__ = [
    "snapshot", "read_snapshot", "write_snapshot", "sort_paths",
    "ExclusionSet", "build_exclusions", "write_rule_file",
    "Rsync", "TransferOrchestrator",
]
