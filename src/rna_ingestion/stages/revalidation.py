# rna_ingestion/stages/revalidation.py
from __future__ import annotations

from typing import Any, Optional

from rna_ingestion.adapters.identity import IdKind
from rna_ingestion.checker import ContractName
from rna_ingestion.contracts import (
    CommitMode,
    CommitOutcome,
    EffectType,
    Envelope,
    PipelineStage,
    RevalidationDirective,
    RevalidationInput,
    RevalidationRun,
    TrustLevel,
)
from rna_ingestion.context import StageContext
from rna_ingestion.envelope import observed_ids
from rna_ingestion.guards import GuardFailure, as_candidate, guard
from rna_ingestion.result import Err, Ok, Result
from rna_ingestion.stages.base import commit_slot, run_stage

STAGE = PipelineStage.REVALIDATION

REVALIDATION_PREREQ_MISSING = "REVALIDATION_PREREQ_MISSING"
INVALID_REVALIDATION_INPUT = "INVALID_REVALIDATION_INPUT"
REVALIDATION_PARSE_FAILED = "REVALIDATION_PARSE_FAILED"
PARTIAL_NOT_ALLOWED = "PARTIAL_NOT_ALLOWED"

# rules
DRIFT_DETECTED = "DRIFT_DETECTED"
NON_ARTIFACT_EFFECTS_PRESENT = "NON_ARTIFACT_EFFECTS_PRESENT"
PARTIAL_NOT_ALLOWED_BY_POLICY = "PARTIAL_NOT_ALLOWED_BY_POLICY"

OBSERVED_IDS = ("proposal_id", "effects_log_id", "snapshot_id")


def pluck_revalidation(envelope: Envelope) -> dict[str, Any]:
    return {
        "proposal_id": envelope.ids.proposal_id,
        "snapshot_id": envelope.ids.snapshot_id,
        "validation_id": envelope.ids.validation_id,
        "planning_id": envelope.ids.planning_id,
        "execution_id": envelope.ids.execution_id,
        "plan": as_candidate(getattr(envelope.stages.planning, "plan", None)),
        "commit_policy": as_candidate(getattr(envelope.stages.validation, "commit_policy", None)),
        "effects_log": as_candidate(getattr(envelope.stages.execution, "effects_log", None)),
    }


guard_revalidation = guard(
    STAGE,
    ContractName.REVALIDATION_INPUT,
    INVALID_REVALIDATION_INPUT,
    REVALIDATION_PARSE_FAILED,
    pluck_revalidation,
)


def post_guard_revalidation(data: RevalidationInput) -> Result[RevalidationDirective, GuardFailure]:
    """
    Decide the commit directive.

    Drift is a valid outcome (REJECT_COMMIT), not a failure. Non-artifact
    effects require PARTIAL, which the commit policy must allow.
    """
    effects_log = data.effects_log

    if effects_log.proposal_id != data.proposal_id:
        return Ok(
            RevalidationDirective(
                proposal_id=data.proposal_id,
                outcome=CommitOutcome.REJECT_COMMIT,
                commit_allow_list=[],
                rules_applied=[DRIFT_DETECTED],
            )
        )

    effects = effects_log.produced_effects
    non_artifact = [e for e in effects if e.effect_type != EffectType.ARTIFACT]

    if non_artifact and not data.commit_policy.allows_partial:
        return Err(
            GuardFailure(
                code=PARTIAL_NOT_ALLOWED,
                stage=STAGE,
                message="Commit policy forbids PARTIAL but non-artifact effects are present.",
                trace={
                    "mode": str(CommitMode.PARTIAL),
                    "proposal_id": data.proposal_id,
                    "effects_log_id": effects_log.effects_log_id,
                    "non_artifact_count": len(non_artifact),
                    "rules_applied": [NON_ARTIFACT_EFFECTS_PRESENT, PARTIAL_NOT_ALLOWED_BY_POLICY],
                },
            )
        )

    if non_artifact:
        allow_list = list(
            dict.fromkeys(
                e.object_id
                for e in effects
                if e.effect_type == EffectType.ARTIFACT and e.trust == TrustLevel.PROVISIONAL
            )
        )
        return Ok(
            RevalidationDirective(
                proposal_id=data.proposal_id,
                outcome=CommitOutcome.PARTIAL_COMMIT,
                commit_allow_list=allow_list,
                rules_applied=[NON_ARTIFACT_EFFECTS_PRESENT],
            )
        )

    return Ok(
        RevalidationDirective(
            proposal_id=data.proposal_id,
            outcome=CommitOutcome.APPROVE_COMMIT,
            commit_allow_list=[],
            rules_applied=[],
        )
    )


def _write(envelope: Envelope, directive: RevalidationDirective, context: StageContext) -> Envelope:
    revalidation_id = context.new_id(IdKind.REVALIDATION)
    slot = RevalidationRun(
        ran_at=context.now(),
        observed=observed_ids(envelope, OBSERVED_IDS),
        revalidation_id=revalidation_id,
        proposal_id=directive.proposal_id,
        directive=directive,
    )
    return commit_slot(envelope, STAGE, slot, revalidation_id=revalidation_id)


def revalidation_stage(envelope: Envelope, *, context: Optional[StageContext] = None) -> Envelope:
    ctx = context or StageContext()
    return run_stage(
        envelope,
        stage=STAGE,
        prereq_code=REVALIDATION_PREREQ_MISSING,
        guard=guard_revalidation,
        post_guard=post_guard_revalidation,
        write=_write,
        context=ctx,
    )
