# rna_ingestion/adapters/outbox_applier.py
from __future__ import annotations

from typing import Protocol

from rna_ingestion.contracts import OutboxEntry, OutboxError, OutboxStatus


class OutboxApplier(Protocol):
    """
    Boundary where world mutation happens.

    ``apply`` performs the side effect for one entry; the ``mark_*`` methods
    persist the entry state the driving loop hands them.
    """

    async def apply(self, entry: OutboxEntry) -> None:
        ...

    async def mark_in_progress(self, entry: OutboxEntry) -> None:
        ...

    async def mark_applied(self, entry: OutboxEntry) -> None:
        ...

    async def mark_failed(self, entry: OutboxEntry, error: OutboxError) -> None:
        ...


class InMemoryOutboxApplier:
    """
    Keeps the latest state of each entry keyed by outbox_id.

    ``apply`` is idempotent on ``idempotency_key``: a key that was already
    applied is not applied again.
    """

    def __init__(self) -> None:
        self.entries: dict[str, OutboxEntry] = {}
        self.applied_keys: list[str] = []

    async def apply(self, entry: OutboxEntry) -> None:
        if entry.idempotency_key in self.applied_keys:
            return
        self.applied_keys.append(entry.idempotency_key)

    async def mark_in_progress(self, entry: OutboxEntry) -> None:
        self.entries[entry.outbox_id] = entry

    async def mark_applied(self, entry: OutboxEntry) -> None:
        self.entries[entry.outbox_id] = entry

    async def mark_failed(self, entry: OutboxEntry, error: OutboxError) -> None:
        self.entries[entry.outbox_id] = entry

    def by_status(self, status: OutboxStatus) -> list[OutboxEntry]:
        return [e for e in self.entries.values() if e.status == status]
