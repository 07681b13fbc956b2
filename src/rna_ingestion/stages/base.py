# rna_ingestion/stages/base.py
"""
Shared stage skeleton.

    HALT short-circuit -> re-run protection -> Pre-Guard -> Guard -> Post-Guard -> write

Every step speaks ``Result``; the first ``Err`` carries the envelope with its
HALT error appended. Stages never raise for bad input.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Optional

from pydantic import BaseModel

from rna_ingestion.contracts import Envelope, PipelineStage
from rna_ingestion.context import StageContext
from rna_ingestion.envelope import (
    append_error,
    has_halting_errors,
    make_stage_error,
    merge_ids,
    write_stage,
)
from rna_ingestion.guards import Guard, GuardFailure, pre_guard
from rna_ingestion.result import Err, Ok, Result, StageLeft

logger = logging.getLogger(__name__)

STAGE_ALREADY_RAN = "STAGE_ALREADY_RAN"

PostGuard = Callable[[Any], Result[Any, GuardFailure]]
Write = Callable[[Envelope, Any, StageContext], Envelope]


def halt(envelope: Envelope, failure: GuardFailure, *, at: int) -> Err[StageLeft]:
    """Record a guard/post-guard failure as a HALT error."""
    err = make_stage_error(
        failure.stage,
        failure.code,
        failure.message,
        at=at,
        trace=failure.trace,
    )
    return Err(StageLeft(envelope=append_error(envelope, err), error=err))


def _already_ran(envelope: Envelope, stage: PipelineStage, context: StageContext) -> Result[Envelope, StageLeft]:
    if not envelope.stages.has_run(stage):
        return Ok(envelope)
    slot = envelope.stages.slot(stage)
    return halt(
        envelope,
        GuardFailure(
            code=STAGE_ALREADY_RAN,
            stage=stage,
            message=f"{stage} has already run.",
            trace={
                "proposal_id": envelope.ids.proposal_id,
                f"{stage.key}_id": getattr(slot, f"{stage.key}_id", None),
            },
        ),
        at=context.now(),
    )


def run_stage(
    envelope: Envelope,
    *,
    stage: PipelineStage,
    prereq_code: str,
    guard: Guard,
    write: Write,
    context: StageContext,
    post_guard: Optional[PostGuard] = None,
    prepare: Optional[Callable[[Envelope], Envelope]] = None,
) -> Envelope:
    if has_halting_errors(envelope):
        return envelope

    check_prereqs = pre_guard(stage, prereq_code, clock=context.clock)

    def _guarded(env: Envelope) -> Result[tuple[Envelope, BaseModel], StageLeft]:
        g = guard(env)
        if not g.ok:
            return halt(env, g.error, at=context.now())
        return Ok((env, g.value))

    def _post(pair: tuple[Envelope, BaseModel]) -> Result[tuple[Envelope, Any], StageLeft]:
        env, data = pair
        if post_guard is None:
            return Ok((env, data))
        decision = post_guard(data)
        if not decision.ok:
            return halt(env, decision.error, at=context.now())
        return Ok((env, decision.value))

    result = (
        _already_ran(envelope, stage, context)
        .map(prepare or (lambda env: env))
        .and_then(check_prereqs)
        .and_then(_guarded)
        .and_then(_post)
        .map(lambda pair: write(pair[0], pair[1], context))
    )
    return result.value if result.ok else result.error.envelope


def commit_slot(envelope: Envelope, stage: PipelineStage, slot: BaseModel, **ids: Optional[str]) -> Envelope:
    """Write this stage's slot and merge its newly minted ids."""
    out = merge_ids(write_stage(envelope, stage, slot), **ids)
    logger.info(
        "%s wrote stage output (proposal_id=%s, ids=%s)",
        stage,
        out.ids.proposal_id,
        ",".join(f"{k}={v}" for k, v in ids.items() if v is not None),
    )
    return out
