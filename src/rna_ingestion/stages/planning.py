# rna_ingestion/stages/planning.py
from __future__ import annotations

from typing import Any, Optional

from rna_ingestion.adapters.identity import IdKind
from rna_ingestion.checker import ContractName
from rna_ingestion.contracts import (
    Envelope,
    PipelineStage,
    PlanKind,
    PlannedArtifact,
    PlanningInput,
    PlanningRun,
    PlanOutputs,
    PlanStep,
    ProposalRecord,
)
from rna_ingestion.context import StageContext
from rna_ingestion.envelope import observed_ids
from rna_ingestion.guards import as_candidate, guard
from rna_ingestion.stable_ids import fingerprint
from rna_ingestion.stages.base import commit_slot, run_stage

STAGE = PipelineStage.PLANNING

PLANNING_PREREQ_MISSING = "PLANNING_PREREQ_MISSING"
INVALID_PLANNING_INPUT = "INVALID_PLANNING_INPUT"
PLANNING_PARSE_FAILED = "PLANNING_PARSE_FAILED"

OBSERVED_IDS = ("proposal_id", "validation_id", "snapshot_id")


def default_plan(proposal: ProposalRecord) -> list[PlanStep]:
    """One PRODUCE_ARTIFACT step per kind the proposal targets, in target order."""
    raw = proposal.raw_proposal
    return [
        PlanStep(
            step_id=f"step_{i}_{kind.lower()}",
            kind=PlanKind.PRODUCE_ARTIFACT,
            description=f"Produce {kind} for: {raw.intent}",
            outputs=PlanOutputs(artifacts=[PlannedArtifact(kind=kind)]),
        )
        for i, kind in enumerate(raw.target.scope.allowed_kinds, start=1)
    ]


def _plan_candidate(envelope: Envelope) -> Any:
    if envelope.meta.plan is not None:
        return as_candidate(envelope.meta.plan)
    proposal = getattr(envelope.stages.intake, "proposal", None)
    if proposal is None:
        return None
    return as_candidate(default_plan(proposal))


def pluck_planning(envelope: Envelope) -> dict[str, Any]:
    return {
        "proposal_id": envelope.ids.proposal_id,
        "snapshot_id": envelope.ids.snapshot_id,
        "validation_id": envelope.ids.validation_id,
        "commit_policy": as_candidate(getattr(envelope.stages.validation, "commit_policy", None)),
        "plan": _plan_candidate(envelope),
    }


guard_planning = guard(
    STAGE,
    ContractName.PLANNING_INPUT,
    INVALID_PLANNING_INPUT,
    PLANNING_PARSE_FAILED,
    pluck_planning,
)


def _write(envelope: Envelope, data: PlanningInput, context: StageContext) -> Envelope:
    planning_id = context.new_id(IdKind.PLANNING)
    slot = PlanningRun(
        ran_at=context.now(),
        observed=observed_ids(envelope, OBSERVED_IDS),
        planning_id=planning_id,
        plan=data.plan,
        fingerprint=fingerprint({"proposal_id": data.proposal_id, "plan": data.plan}),
    )
    return commit_slot(envelope, STAGE, slot, planning_id=planning_id)


def planning_stage(envelope: Envelope, *, context: Optional[StageContext] = None) -> Envelope:
    ctx = context or StageContext()
    return run_stage(
        envelope,
        stage=STAGE,
        prereq_code=PLANNING_PREREQ_MISSING,
        guard=guard_planning,
        write=_write,
        context=ctx,
    )
