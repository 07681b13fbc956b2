# rna_ingestion/stages/execution.py
from __future__ import annotations

from typing import Any, Optional

from rna_ingestion.adapters.identity import IdKind
from rna_ingestion.checker import ContractName
from rna_ingestion.contracts import (
    ArtifactEffect,
    EffectType,
    EffectsLog,
    Envelope,
    EventEffect,
    ExecutionInput,
    ExecutionRun,
    PipelineStage,
    PlanKind,
    PlanStep,
    TrustLevel,
)
from rna_ingestion.context import StageContext
from rna_ingestion.envelope import observed_ids
from rna_ingestion.guards import as_candidate, guard
from rna_ingestion.stable_ids import derive_effect_ids, fingerprint
from rna_ingestion.stages.base import commit_slot, run_stage

STAGE = PipelineStage.EXECUTION

EXECUTION_PREREQ_MISSING = "EXECUTION_PREREQ_MISSING"
INVALID_EXECUTION_INPUT = "INVALID_EXECUTION_INPUT"
EXECUTION_PARSE_FAILED = "EXECUTION_PARSE_FAILED"

OBSERVED_IDS = ("proposal_id", "planning_id", "snapshot_id")


def pluck_execution(envelope: Envelope) -> dict[str, Any]:
    return {
        "proposal_id": envelope.ids.proposal_id,
        "snapshot_id": envelope.ids.snapshot_id,
        "planning_id": envelope.ids.planning_id,
        "plan": as_candidate(getattr(envelope.stages.planning, "plan", None)),
        "commit_policy": as_candidate(getattr(envelope.stages.validation, "commit_policy", None)),
    }


guard_execution = guard(
    STAGE,
    ContractName.EXECUTION_INPUT,
    INVALID_EXECUTION_INPUT,
    EXECUTION_PARSE_FAILED,
    pluck_execution,
)


def produce_effects(proposal_id: str, plan: list[PlanStep]) -> list[ArtifactEffect | EventEffect]:
    """
    Deterministic effects for a plan. Every effect starts PROVISIONAL; only
    Commit may move it further.
    """
    effects: list[ArtifactEffect | EventEffect] = []
    for step in plan:
        if step.kind == PlanKind.PRODUCE_ARTIFACT:
            for i, artifact in enumerate(step.outputs.artifacts):
                stable_id, object_id = derive_effect_ids(
                    proposal_id=proposal_id,
                    step_id=step.step_id,
                    output_index=i,
                    effect_type=EffectType.ARTIFACT,
                    name=artifact.kind,
                )
                effects.append(
                    ArtifactEffect(
                        stable_id=stable_id,
                        object_id=object_id,
                        kind=artifact.kind,
                        trust=TrustLevel.PROVISIONAL,
                    )
                )
        elif step.kind == PlanKind.EMIT_EVENT:
            for i, event in enumerate(step.outputs.events):
                stable_id, _ = derive_effect_ids(
                    proposal_id=proposal_id,
                    step_id=step.step_id,
                    output_index=i,
                    effect_type=EffectType.EVENT,
                    name=event.name,
                )
                effects.append(
                    EventEffect(
                        stable_id=stable_id,
                        event_name=event.name,
                        payload={"proposal_id": proposal_id, "step_id": step.step_id},
                        trust=TrustLevel.PROVISIONAL,
                    )
                )
    return effects


def _write(envelope: Envelope, data: ExecutionInput, context: StageContext) -> Envelope:
    execution_id = context.new_id(IdKind.EXECUTION)
    effects_log_id = context.new_id(IdKind.EFFECTS)
    produced = produce_effects(data.proposal_id, data.plan)
    effects_log = EffectsLog(
        effects_log_id=effects_log_id,
        proposal_id=data.proposal_id,
        produced_effects=produced,
        fingerprint=fingerprint({"proposal_id": data.proposal_id, "produced_effects": produced}),
    )
    slot = ExecutionRun(
        ran_at=context.now(),
        observed=observed_ids(envelope, OBSERVED_IDS),
        execution_id=execution_id,
        effects_log=effects_log,
    )
    return commit_slot(envelope, STAGE, slot, execution_id=execution_id, effects_log_id=effects_log_id)


def execution_stage(envelope: Envelope, *, context: Optional[StageContext] = None) -> Envelope:
    ctx = context or StageContext()
    return run_stage(
        envelope,
        stage=STAGE,
        prereq_code=EXECUTION_PREREQ_MISSING,
        guard=guard_execution,
        write=_write,
        context=ctx,
    )
