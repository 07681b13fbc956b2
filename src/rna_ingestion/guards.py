# rna_ingestion/guards.py
from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ValidationError

from rna_ingestion._compat import now_ms
from rna_ingestion.checker import check_contract
from rna_ingestion.contracts import Envelope, PipelineStage
from rna_ingestion.envelope import append_error, make_stage_error
from rna_ingestion.result import Err, Ok, Result, StageLeft

UNKNOWN_MODE = "UNKNOWN"


@dataclass(frozen=True)
class StageDependencies:
    stages: tuple[PipelineStage, ...] = ()
    ids: tuple[str, ...] = ()


STAGE_DEPENDENCIES: dict[PipelineStage, StageDependencies] = {
    PipelineStage.INTAKE: StageDependencies(),
    PipelineStage.VALIDATION: StageDependencies(
        stages=(PipelineStage.INTAKE,),
        ids=("proposal_id", "snapshot_id", "intake_id"),
    ),
    PipelineStage.PLANNING: StageDependencies(
        stages=(PipelineStage.VALIDATION,),
        ids=("proposal_id", "validation_id", "snapshot_id"),
    ),
    PipelineStage.EXECUTION: StageDependencies(
        stages=(PipelineStage.PLANNING,),
        ids=("proposal_id", "planning_id", "snapshot_id"),
    ),
    PipelineStage.REVALIDATION: StageDependencies(
        stages=(PipelineStage.EXECUTION, PipelineStage.VALIDATION),
        ids=("proposal_id", "effects_log_id", "snapshot_id"),
    ),
    PipelineStage.COMMIT: StageDependencies(
        stages=(PipelineStage.REVALIDATION,),
        ids=("proposal_id",),
    ),
}


# ------------------------------------------------------------------------------
# Pre-Guard
# ------------------------------------------------------------------------------

PreGuard = Callable[[Envelope], Result[Envelope, StageLeft]]


def pre_guard(stage: PipelineStage, code: str, *, clock: Callable[[], int] = now_ms) -> PreGuard:
    """
    Dependency check for ``stage``: prerequisite stages first, then prerequisite ids.

    Stops at the first missing dependency, appends one HALT error and returns
    ``Err(StageLeft)``. Stage payloads are never touched.
    """
    deps = STAGE_DEPENDENCIES[stage]

    def _check(envelope: Envelope) -> Result[Envelope, StageLeft]:
        proposal_id = envelope.ids.proposal_id

        for dep in deps.stages:
            if not envelope.stages.has_run(dep):
                err = make_stage_error(
                    stage,
                    code,
                    f"{dep.key} stage has not run.",
                    at=clock(),
                    trace={"proposal_id": proposal_id, f"{dep.key}_has_run": False},
                )
                return Err(StageLeft(envelope=append_error(envelope, err), error=err))

        ids = envelope.ids.model_dump()
        for id_key in deps.ids:
            value = ids.get(id_key)
            if not isinstance(value, str) or not value:
                err = make_stage_error(
                    stage,
                    code,
                    f"Missing {id_key} required for {stage.key}.",
                    at=clock(),
                    trace={"proposal_id": proposal_id, "id_key": id_key, "value": value},
                )
                return Err(StageLeft(envelope=append_error(envelope, err), error=err))

        return Ok(envelope)

    return _check


# ------------------------------------------------------------------------------
# Guard
# ------------------------------------------------------------------------------


@dataclass(frozen=True)
class GuardFailure:
    code: str
    stage: PipelineStage
    message: str
    trace: Mapping[str, Any] = field(default_factory=dict)


Pluck = Callable[[Envelope], Any]


def as_candidate(value: Any) -> Any:
    """Plain-data view of a plucked value so the checker validates it afresh."""
    if isinstance(value, BaseModel):
        return value.model_dump()
    if isinstance(value, (list, tuple)):
        return [as_candidate(v) for v in value]
    return value


Guard = Callable[[object], Result[BaseModel, GuardFailure]]


def _as_envelope(value: object) -> Envelope | None:
    if isinstance(value, Envelope):
        return value
    if not isinstance(value, Mapping):
        return None
    if not isinstance(value.get("ids"), Mapping) or not isinstance(value.get("stages"), Mapping):
        return None
    try:
        return Envelope.model_validate(value)
    except ValidationError:
        return None


def _present_stages(value: object) -> frozenset[str]:
    """Stage keys the input actually carries; model validation would default the absent ones."""
    if isinstance(value, Mapping):
        return frozenset(k for k, v in value["stages"].items() if v is not None)
    return frozenset(s.key for s in PipelineStage)


def guard(
    stage: PipelineStage,
    contract: str,
    code: str,
    parse_failed_rule: str,
    pluck: Pluck,
) -> Guard:
    """
    Pure input guard: narrows the envelope, plucks a candidate and validates it
    against ``contract``. Never appends errors and never writes stage output.
    """
    deps = STAGE_DEPENDENCIES[stage]

    def _fail(message: str, proposal_id: Any, extra: Mapping[str, Any] | None = None) -> Err[GuardFailure]:
        trace: dict[str, Any] = {
            "mode": UNKNOWN_MODE,
            "proposal_id": proposal_id,
            "rules_applied": [parse_failed_rule],
        }
        if extra:
            trace.update(extra)
        return Err(GuardFailure(code=code, stage=stage, message=message, trace=trace))

    def _guard(value: object) -> Result[BaseModel, GuardFailure]:
        envelope = _as_envelope(value)
        if envelope is None or not envelope.ids.proposal_id:
            proposal_id = envelope.ids.proposal_id if envelope is not None else None
            return _fail(f"{stage}: Schema parsing failed, invalid input.", proposal_id)

        proposal_id = envelope.ids.proposal_id
        present = _present_stages(value)
        for dep in deps.stages:
            if dep.key not in present:
                return _fail(
                    f"{stage}: Missing prereq stage, invalid input.",
                    proposal_id,
                    {"missing_stage": str(dep)},
                )

        candidate = pluck(envelope)
        checked = check_contract(contract, candidate)
        if not checked.ok:
            return _fail(
                f"{stage}: Schema parsing failed, invalid input.",
                proposal_id,
                {"violations": list(checked.error.violations)},
            )
        return Ok(checked.value)

    return _guard
