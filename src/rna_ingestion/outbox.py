# rna_ingestion/outbox.py
"""
Outbox lifecycle.

Entries are created PENDING by Commit and moved along
PENDING -> IN_PROGRESS -> APPLIED | FAILED by the transition functions below.
The transitions are pure; persisting them is the applier's job.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any, Optional

from rna_ingestion._compat import now_ms
from rna_ingestion.adapters.outbox_applier import OutboxApplier
from rna_ingestion.checker import ContractName, ContractViolations, check_contract
from rna_ingestion.context import StageContext
from rna_ingestion.contracts import OutboxEntry, OutboxError, OutboxStatus
from rna_ingestion.result import Result

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


def mark_in_progress(entry: OutboxEntry, *, at: Optional[int] = None) -> OutboxEntry:
    return entry.model_copy(
        update={
            "status": OutboxStatus.IN_PROGRESS,
            "error": None,
            "updated_at": now_ms() if at is None else at,
        }
    )


def mark_applied(entry: OutboxEntry, *, applied_at: Optional[int] = None) -> OutboxEntry:
    ts = now_ms() if applied_at is None else applied_at
    return entry.model_copy(
        update={
            "status": OutboxStatus.APPLIED,
            "applied_at": ts,
            "updated_at": ts,
            "error": None,
            "last_error": None,
        }
    )


def mark_failed(
    entry: OutboxEntry,
    error: OutboxError,
    *,
    max_attempts: Optional[int] = None,
    at: Optional[int] = None,
) -> OutboxEntry:
    attempts = entry.attempts + 1
    if max_attempts is not None:
        attempts = min(attempts, max_attempts)
    return entry.model_copy(
        update={
            "status": OutboxStatus.FAILED,
            "attempts": attempts,
            "error": error,
            "last_error": error,
            "updated_at": error.at if at is None else at,
        }
    )


def mark_pending(entry: OutboxEntry, *, at: Optional[int] = None) -> OutboxEntry:
    """Re-queue an entry. ``last_error`` and ``attempts`` are kept for audit."""
    return entry.model_copy(
        update={
            "status": OutboxStatus.PENDING,
            "error": None,
            "updated_at": now_ms() if at is None else at,
        }
    )


def can_retry(entry: OutboxEntry, *, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> bool:
    return entry.status == OutboxStatus.FAILED and entry.attempts < max_attempts


def retry_candidates(entries: Iterable[OutboxEntry], *, context: Optional[StageContext] = None) -> list[OutboxEntry]:
    """FAILED entries still under the configured ``outbox_max_attempts``."""
    ctx = context or StageContext()
    limit = ctx.settings.outbox_max_attempts
    return [e for e in entries if can_retry(e, max_attempts=limit)]


def parse_outbox_entry(candidate: object) -> Result[OutboxEntry, ContractViolations]:
    """Read an entry back from its wire shape, e.g. a row handed over by the applier's store."""
    return check_contract(ContractName.OUTBOX_ENTRY, candidate)


def make_outbox_error(exc: BaseException, *, at: int, trace: Any = None) -> OutboxError:
    message = str(exc) or "Unknown outbox apply error"
    if trace is None:
        trace = {"type": type(exc).__name__, "args": [repr(a) for a in exc.args]}
    return OutboxError(message=message, code=type(exc).__name__, trace=trace, at=at)


async def apply_outbox_entry(
    applier: OutboxApplier,
    entry: OutboxEntry,
    *,
    context: Optional[StageContext] = None,
    max_attempts: Optional[int] = None,
    clock: Optional[Callable[[], int]] = None,
) -> OutboxEntry:
    """
    Drive one entry through a single apply attempt and return its resulting state.

    Non-PENDING entries are returned unchanged. A failing ``apply`` is recorded
    as FAILED and not retried here; retrying is gated by ``can_retry``.
    ``max_attempts`` and ``clock`` default to the context's settings and clock.
    """
    ctx = context or StageContext()
    if max_attempts is None:
        max_attempts = ctx.settings.outbox_max_attempts
    if clock is None:
        clock = ctx.clock

    if entry.status != OutboxStatus.PENDING:
        logger.debug("outbox entry %s skipped (status=%s)", entry.outbox_id, entry.status)
        return entry

    in_progress = mark_in_progress(entry, at=clock())
    await applier.mark_in_progress(in_progress)

    try:
        await applier.apply(in_progress)
    except Exception as e:
        error = make_outbox_error(e, at=clock())
        failed = mark_failed(in_progress, error, max_attempts=max_attempts)
        await applier.mark_failed(failed, error)
        logger.warning(
            "outbox entry %s failed (attempt %d): %s",
            failed.outbox_id,
            failed.attempts,
            error.message,
        )
        return failed

    applied = mark_applied(in_progress, applied_at=clock())
    await applier.mark_applied(applied)
    logger.info("outbox entry %s applied (key=%s)", applied.outbox_id, applied.idempotency_key)
    return applied


async def drain_outbox(
    applier: OutboxApplier,
    entries: Iterable[OutboxEntry],
    *,
    context: Optional[StageContext] = None,
    max_attempts: Optional[int] = None,
    clock: Optional[Callable[[], int]] = None,
) -> list[OutboxEntry]:
    """Apply each entry at most once, in order."""
    ctx = context or StageContext()
    results: list[OutboxEntry] = []
    for entry in entries:
        results.append(
            await apply_outbox_entry(applier, entry, context=ctx, max_attempts=max_attempts, clock=clock)
        )
    return results
