from __future__ import annotations

import asyncio

from rna_ingestion.adapters.identity import SequentialIdProvider
from rna_ingestion.adapters.outbox_applier import InMemoryOutboxApplier
from rna_ingestion.config import load_settings
from rna_ingestion.context import StageContext
from rna_ingestion.contracts import ArtifactEffect, OutboxEntry, OutboxError, OutboxStatus, TrustLevel
from rna_ingestion.outbox import (
    apply_outbox_entry,
    can_retry,
    drain_outbox,
    mark_pending,
    parse_outbox_entry,
    retry_candidates,
)


def _entry(outbox_id: str = "outbox_1", key: str = "key_1") -> OutboxEntry:
    return OutboxEntry(
        outbox_id=outbox_id,
        idempotency_key=key,
        pipeline="DEFAULT_INGESTION_PIPELINE",
        stage="COMMIT",
        status=OutboxStatus.PENDING,
        created_at=1,
        updated_at=1,
        effect=ArtifactEffect(stable_id="eff_1", object_id="note_1", kind="NOTE", trust=TrustLevel.COMMITTED),
    )


class RecordingApplier(InMemoryOutboxApplier):
    def __init__(self, *, fail_times: int = 0) -> None:
        super().__init__()
        self.fail_times = fail_times
        self.calls: list[str] = []

    async def apply(self, entry: OutboxEntry) -> None:
        self.calls.append(f"apply:{entry.status}")
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ConnectionError("downstream unavailable")
        await super().apply(entry)

    async def mark_in_progress(self, entry: OutboxEntry) -> None:
        self.calls.append("mark_in_progress")
        await super().mark_in_progress(entry)

    async def mark_applied(self, entry: OutboxEntry) -> None:
        self.calls.append("mark_applied")
        await super().mark_applied(entry)

    async def mark_failed(self, entry: OutboxEntry, error: OutboxError) -> None:
        self.calls.append(f"mark_failed:{error.code}")
        await super().mark_failed(entry, error)


def _clock() -> int:
    return 100


def test_successful_apply_marks_applied() -> None:
    applier = RecordingApplier()

    out = asyncio.run(apply_outbox_entry(applier, _entry(), clock=_clock))

    assert out.status == OutboxStatus.APPLIED
    assert out.applied_at == 100
    assert applier.calls == ["mark_in_progress", "apply:IN_PROGRESS", "mark_applied"]
    assert applier.entries["outbox_1"] == out
    assert applier.applied_keys == ["key_1"]


def test_failing_apply_is_recorded_not_raised() -> None:
    applier = RecordingApplier(fail_times=1)

    out = asyncio.run(apply_outbox_entry(applier, _entry(), clock=_clock))

    assert out.status == OutboxStatus.FAILED
    assert out.attempts == 1
    assert out.error is not None
    assert out.error.message == "downstream unavailable"
    assert out.error.code == "ConnectionError"
    assert out.error.at == 100
    assert applier.calls == ["mark_in_progress", "apply:IN_PROGRESS", "mark_failed:ConnectionError"]
    assert applier.by_status(OutboxStatus.FAILED) == [out]


def test_non_pending_entries_are_left_alone() -> None:
    applier = RecordingApplier(fail_times=1)
    failed = asyncio.run(apply_outbox_entry(applier, _entry(), clock=_clock))
    applier.calls.clear()

    again = asyncio.run(apply_outbox_entry(applier, failed, clock=_clock))

    assert again == failed
    assert applier.calls == []


def test_retry_is_an_external_decision() -> None:
    applier = RecordingApplier(fail_times=2)
    entry = _entry()
    max_attempts = 3

    for _ in range(3):
        entry = asyncio.run(apply_outbox_entry(applier, entry, max_attempts=max_attempts, clock=_clock))
        if entry.status != OutboxStatus.FAILED or not can_retry(entry, max_attempts=max_attempts):
            break
        entry = mark_pending(entry, at=_clock())

    assert entry.status == OutboxStatus.APPLIED
    assert entry.attempts == 2
    assert entry.last_error is None
    assert applier.calls.count("apply:IN_PROGRESS") == 3


def test_drain_applies_each_entry_once_in_order() -> None:
    applier = RecordingApplier()
    entries = [_entry("outbox_1", "key_1"), _entry("outbox_2", "key_2")]

    out = asyncio.run(drain_outbox(applier, entries, clock=_clock))

    assert [e.outbox_id for e in out] == ["outbox_1", "outbox_2"]
    assert all(e.status == OutboxStatus.APPLIED for e in out)
    assert applier.applied_keys == ["key_1", "key_2"]


def test_in_memory_applier_is_idempotent_on_key() -> None:
    applier = InMemoryOutboxApplier()
    entries = [_entry("outbox_1", "same"), _entry("outbox_2", "same")]

    asyncio.run(drain_outbox(applier, entries, clock=_clock))

    assert applier.applied_keys == ["same"]
    assert len(applier.by_status(OutboxStatus.APPLIED)) == 2


def _context(**environ: str) -> StageContext:
    return StageContext(
        settings=load_settings(environ={f"RNA_INGESTION_{k.upper()}": v for k, v in environ.items()}),
        id_provider=SequentialIdProvider(),
        clock=_clock,
    )


def test_configured_max_attempts_gates_retries(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    strict = _context(outbox_max_attempts="1")
    lenient = _context(outbox_max_attempts="5")

    failed = asyncio.run(apply_outbox_entry(RecordingApplier(fail_times=1), _entry(), context=strict))

    assert failed.status == OutboxStatus.FAILED
    assert failed.attempts == 1
    assert failed.updated_at == 100
    assert retry_candidates([failed], context=strict) == []
    assert retry_candidates([failed], context=lenient) == [failed]


def test_configured_max_attempts_clamps_failed_attempts(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    ctx = _context(outbox_max_attempts="1")
    entry = _entry().model_copy(update={"attempts": 1})

    out = asyncio.run(drain_outbox(RecordingApplier(fail_times=1), [entry], context=ctx))

    assert [e.attempts for e in out] == [1]


def test_wire_rows_are_read_back_through_the_entry_contract() -> None:
    row = _entry().model_dump(mode="json")

    parsed = parse_outbox_entry(row)

    assert parsed.ok is True
    assert parsed.value == _entry()

    broken = parse_outbox_entry({**row, "status": "FAILED"})
    assert broken.ok is False
    assert broken.error.contract == "outbox.entry"
