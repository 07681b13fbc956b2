# rna_ingestion/context.py
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from rna_ingestion._compat import now_ms
from rna_ingestion.adapters.identity import IdKind, IdProvider, UuidIdProvider
from rna_ingestion.config import PipelineSettings, load_settings


@dataclass(frozen=True)
class StageContext:
    """Collaborators a stage needs besides the envelope: settings, id minting and a clock."""

    settings: PipelineSettings = field(default_factory=load_settings)
    id_provider: IdProvider = field(default_factory=UuidIdProvider)
    clock: Callable[[], int] = now_ms

    def new_id(self, kind: IdKind) -> str:
        return self.id_provider.new_id(kind)

    def now(self) -> int:
        return self.clock()
