# rna_ingestion/adapters/identity.py
from __future__ import annotations

import itertools
import uuid
from typing import Protocol

from rna_ingestion._compat import StrEnum


class IdKind(StrEnum):
    PROPOSAL = "proposal"
    EFFECTS = "effects"
    SNAPSHOT = "snapshot"
    OUTBOX = "outbox"
    INTAKE = "intake"
    VALIDATION = "validation"
    PLANNING = "planning"
    EXECUTION = "execution"
    REVALIDATION = "revalidation"
    COMMIT = "commit"


class IdProvider(Protocol):
    """Mints ids of the form ``<kind>_<opaque>``; unique per call."""

    def new_id(self, kind: IdKind) -> str:
        ...


class UuidIdProvider:
    def new_id(self, kind: IdKind) -> str:
        return f"{kind}_{uuid.uuid4().hex}"


class SequentialIdProvider:
    """Deterministic ids (``commit_0001``, ...) for tests and replays."""

    def __init__(self, start: int = 1) -> None:
        self._counter = itertools.count(start)

    def new_id(self, kind: IdKind) -> str:
        return f"{kind}_{next(self._counter):04d}"
