# rna_ingestion/stages/validation.py
from __future__ import annotations

from typing import Any, Optional

from rna_ingestion.adapters.identity import IdKind
from rna_ingestion.checker import ContractName
from rna_ingestion.contracts import (
    DecisionType,
    Envelope,
    PipelineStage,
    ValidationInput,
    ValidationRun,
)
from rna_ingestion.context import StageContext
from rna_ingestion.envelope import observed_ids
from rna_ingestion.guards import GuardFailure, as_candidate, guard
from rna_ingestion.result import Err, Ok, Result
from rna_ingestion.stable_ids import fingerprint
from rna_ingestion.stages.base import commit_slot, run_stage

STAGE = PipelineStage.VALIDATION

VALIDATION_PREREQ_MISSING = "VALIDATION_PREREQ_MISSING"
INVALID_VALIDATION_INPUT = "INVALID_VALIDATION_INPUT"
VALIDATION_PARSE_FAILED = "VALIDATION_PARSE_FAILED"
SNAPSHOT_PERMISSION_NOT_ALLOWED = "SNAPSHOT_PERMISSION_NOT_ALLOWED"
SNAPSHOT_SCOPE_NOT_ALLOWED = "SNAPSHOT_SCOPE_NOT_ALLOWED"

OBSERVED_IDS = ("proposal_id", "snapshot_id", "intake_id")


def pluck_validation(envelope: Envelope, *, default_commit_policy: Any = None) -> dict[str, Any]:
    policy = envelope.meta.commit_policy
    return {
        "proposal_id": envelope.ids.proposal_id,
        "snapshot_id": envelope.ids.snapshot_id,
        "intake_id": envelope.ids.intake_id,
        "snapshot": as_candidate(envelope.snapshot),
        "proposal": as_candidate(getattr(envelope.stages.intake, "proposal", None)),
        "commit_policy": as_candidate(policy if policy is not None else default_commit_policy),
    }


def post_guard_validation(data: ValidationInput) -> Result[ValidationInput, GuardFailure]:
    """Snapshot capability rules: something must be allowed, and every targeted kind in scope."""
    if not data.snapshot.permissions.allow:
        return Err(
            GuardFailure(
                code=SNAPSHOT_PERMISSION_NOT_ALLOWED,
                stage=STAGE,
                message="Permissions have none allowed",
                trace={
                    "proposal_id": data.proposal_id,
                    "snapshot_id": data.snapshot_id,
                    "actor_id": data.snapshot.permissions.actor.actor_id,
                },
            )
        )

    allowed = set(data.snapshot.scope.allowed_kinds)
    targeted = data.proposal.raw_proposal.target.scope.allowed_kinds
    outside = [k for k in targeted if k not in allowed]
    if outside:
        return Err(
            GuardFailure(
                code=SNAPSHOT_SCOPE_NOT_ALLOWED,
                stage=STAGE,
                message=f"Proposal targets kinds outside the snapshot scope: {', '.join(outside)}",
                trace={
                    "proposal_id": data.proposal_id,
                    "snapshot_id": data.snapshot_id,
                    "kinds": outside,
                    "allowed_kinds": sorted(allowed),
                },
            )
        )

    return Ok(data)


def _write(envelope: Envelope, data: ValidationInput, context: StageContext) -> Envelope:
    ran_at = context.now()
    validation_id = context.new_id(IdKind.VALIDATION)
    slot = ValidationRun(
        ran_at=ran_at,
        observed=observed_ids(envelope, OBSERVED_IDS),
        validation_id=validation_id,
        proposal_id=data.proposal_id,
        commit_policy=data.commit_policy,
        decision_type=DecisionType.APPROVE,
        decided_at=ran_at,
        justification=True,
        attribution=[],
        fingerprint=fingerprint(
            {
                "proposal_id": data.proposal_id,
                "proposal_fingerprint": data.proposal.fingerprint,
                "snapshot": data.snapshot,
                "commit_policy": data.commit_policy,
            }
        ),
        snapshot=data.snapshot,
    )
    return commit_slot(envelope, STAGE, slot, validation_id=validation_id)


def validation_stage(envelope: Envelope, *, context: Optional[StageContext] = None) -> Envelope:
    """Check the intake proposal against the snapshot and fix the commit policy for later stages."""
    ctx = context or StageContext()
    default_policy = ctx.settings.default_commit_policy()

    guard_validation = guard(
        STAGE,
        ContractName.VALIDATION_INPUT,
        INVALID_VALIDATION_INPUT,
        VALIDATION_PARSE_FAILED,
        lambda env: pluck_validation(env, default_commit_policy=default_policy),
    )

    return run_stage(
        envelope,
        stage=STAGE,
        prereq_code=VALIDATION_PREREQ_MISSING,
        guard=guard_validation,
        post_guard=post_guard_validation,
        write=_write,
        context=ctx,
    )
