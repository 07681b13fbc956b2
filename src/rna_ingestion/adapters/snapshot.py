# rna_ingestion/adapters/snapshot.py
from __future__ import annotations

from typing import Protocol

from rna_ingestion.contracts import ContextSnapshot


class SnapshotProvider(Protocol):
    """Source of the capability context Validation checks proposals against."""

    def get_snapshot(self) -> ContextSnapshot:
        ...


class StaticSnapshotProvider:
    def __init__(self, snapshot: ContextSnapshot) -> None:
        self._snapshot = snapshot

    def get_snapshot(self) -> ContextSnapshot:
        return self._snapshot
