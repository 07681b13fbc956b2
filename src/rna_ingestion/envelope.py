# rna_ingestion/envelope.py
"""
Envelope utilities.

Every helper returns a new ``Envelope``; nothing here mutates its input.
``errors`` only ever grows, and ids are only ever added.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any, Optional

from pydantic import BaseModel

from rna_ingestion.contracts import (
    Envelope,
    EnvelopeIds,
    EnvelopeStage,
    PipelineStage,
    Severity,
    StageError,
)

logger = logging.getLogger(__name__)


def halting_errors(envelope: Envelope) -> list[StageError]:
    return [e for e in envelope.errors if e.severity == Severity.HALT]


def has_halting_errors(envelope: Envelope) -> bool:
    return any(e.severity == Severity.HALT for e in envelope.errors)


def first_halt(envelope: Envelope) -> Optional[StageError]:
    for e in envelope.errors:
        if e.severity == Severity.HALT:
            return e
    return None


def make_stage_error(
    stage: PipelineStage | EnvelopeStage | str,
    code: str,
    message: str,
    *,
    at: int,
    trace: Optional[Mapping[str, Any]] = None,
    severity: Severity = Severity.HALT,
) -> StageError:
    return StageError(
        stage=EnvelopeStage(str(stage)),
        severity=severity,
        code=code,
        message=message,
        trace=dict(trace) if trace is not None else None,
        at=at,
    )


def append_error(envelope: Envelope, error: StageError) -> Envelope:
    if error.severity == Severity.HALT:
        logger.warning("%s halted: %s (%s)", error.stage, error.code, error.message)
    else:
        logger.info("%s warning: %s (%s)", error.stage, error.code, error.message)
    return envelope.model_copy(update={"errors": (*envelope.errors, error)})


def merge_ids(envelope: Envelope, **ids: Optional[str]) -> Envelope:
    """
    Add ids to the envelope. ``None`` values are skipped, and an id that is
    already set keeps its first value.
    """
    current = envelope.ids.model_dump()
    update = {k: v for k, v in ids.items() if v is not None and not current.get(k)}
    unknown = set(update) - set(EnvelopeIds.model_fields)
    if unknown:
        raise KeyError(f"unknown envelope id(s): {sorted(unknown)}")
    if not update:
        return envelope
    return envelope.model_copy(update={"ids": envelope.ids.model_copy(update=update)})


def observed_ids(envelope: Envelope, keys: Iterable[str]) -> EnvelopeIds:
    current = envelope.ids.model_dump()
    return EnvelopeIds(**{k: current.get(k) for k in keys})


def write_stage(envelope: Envelope, stage: PipelineStage, slot: BaseModel) -> Envelope:
    """Write ``slot`` into this stage's own slot. Other slots are left untouched."""
    if envelope.stages.has_run(stage):
        raise ValueError(f"{stage} has already run; stage history is append-only")
    stages = envelope.stages.model_copy(update={stage.key: slot})
    return envelope.model_copy(update={"stages": stages})
