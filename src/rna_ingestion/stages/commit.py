# rna_ingestion/stages/commit.py
"""
Commit stage.

The post-guard partitions every produced effect into exactly one of
eligible, rejected or ignored; the write step promotes each eligible artifact
through the trust guard and emits one PENDING outbox entry per approved effect.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Union

from rna_ingestion.adapters.identity import IdKind
from rna_ingestion.checker import ContractName
from rna_ingestion.contracts import (
    ApprovedEffect,
    ArtifactEffect,
    CommitEffects,
    CommitInput,
    CommitMode,
    CommitOutcome,
    CommitRun,
    Envelope,
    EventEffect,
    Justification,
    JustificationInput,
    OutboxEntry,
    OutboxStatus,
    PipelineStage,
    PromotionRecord,
    RejectedArtifactEffect,
    RejectedEventEffect,
    TrustLevel,
    TrustPromotionRequest,
    UnknownEffect,
)
from rna_ingestion.context import StageContext
from rna_ingestion.envelope import observed_ids
from rna_ingestion.guards import UNKNOWN_MODE, GuardFailure, as_candidate, guard
from rna_ingestion.result import Err, Ok, Result
from rna_ingestion.stable_ids import fingerprint
from rna_ingestion.stages.base import commit_slot, run_stage
from rna_ingestion.trust import promote

STAGE = PipelineStage.COMMIT

COMMIT_PREREQ_MISSING = "COMMIT_PREREQ_MISSING"
INVALID_COMMIT_INPUT = "INVALID_COMMIT_INPUT"
COMMIT_PARSE_FAILED = "COMMIT_PARSE_FAILED"
COMMIT_INPUT_MISMATCH = "COMMIT_INPUT_MISMATCH"
COMMIT_OUTCOME_UNSUPPORTED = "COMMIT_OUTCOME_UNSUPPORTED"
ALLOWLIST_UNKNOWN_OBJECT = "ALLOWLIST_UNKNOWN_OBJECT"

# rules
PROPOSAL_ID_MISMATCH_REVALIDATION = "PROPOSAL_ID_MISMATCH_REVALIDATION"
PROPOSAL_ID_MISMATCH_EFFECTS_LOG = "PROPOSAL_ID_MISMATCH_EFFECTS_LOG"
OUTCOME_UNSUPPORTED = "OUTCOME_UNSUPPORTED"
PARTIAL_EMPTY_ALLOWLIST_COMMITS_NOTHING = "PARTIAL_EMPTY_ALLOWLIST_COMMITS_NOTHING"
PARTIAL_ALLOWLIST_HAS_UNKNOWN_IDS = "PARTIAL_ALLOWLIST_HAS_UNKNOWN_IDS"
PARTIAL_COMMIT_USE_ALLOWLIST = "PARTIAL_COMMIT_USE_ALLOWLIST"
FULL_COMMIT_ALL_PROVISIONAL_EFFECTS = "FULL_COMMIT_ALL_PROVISIONAL_EFFECTS"
FULL_IGNORES_ALLOWLIST = "FULL_IGNORES_ALLOWLIST"

# rejection reasons
NOT_PROVISIONAL = "NOT_PROVISIONAL"
NOT_ALLOWLIST_OBJECT = "NOT_ALLOWLIST_OBJECT"

PROMOTION_REASON = "Commit stage promotion of provisional execution outputs."

OBSERVED_IDS = (
    "snapshot_id",
    "proposal_id",
    "intake_id",
    "validation_id",
    "planning_id",
    "effects_log_id",
    "revalidation_id",
)

Rejected = Union[RejectedArtifactEffect, RejectedEventEffect]
Ignored = Union[ArtifactEffect, EventEffect, UnknownEffect]


@dataclass(frozen=True)
class CommitDecision:
    """Post-guard output: the commit mode plus a total partition of the produced effects."""

    mode: CommitMode
    outcome: CommitOutcome
    proposal_id: str
    effects_log_id: str
    allow_list_count: int
    eligible: tuple[ArtifactEffect, ...] = ()
    rejected: tuple[Rejected, ...] = ()
    ignored: tuple[Ignored, ...] = ()
    rules_applied: tuple[str, ...] = field(default_factory=tuple)
    notes: tuple[str, ...] = ()


def pluck_commit(envelope: Envelope) -> dict[str, Any]:
    return {
        "proposal_id": envelope.ids.proposal_id,
        "revalidation": as_candidate(envelope.stages.revalidation),
        "effects_log": as_candidate(getattr(envelope.stages.execution, "effects_log", None)),
    }


guard_commit = guard(
    STAGE,
    ContractName.COMMIT_INPUT,
    INVALID_COMMIT_INPUT,
    COMMIT_PARSE_FAILED,
    pluck_commit,
)


def _reject(effect: Union[ArtifactEffect, EventEffect], reason_code: str, reason: str) -> Rejected:
    fields = effect.model_dump()
    extra = {"original_trust": effect.trust, "reason_code": reason_code, "reason": reason}
    if isinstance(effect, ArtifactEffect):
        return RejectedArtifactEffect(**fields, **extra)
    return RejectedEventEffect(**fields, **extra)


def _mode_for(outcome: CommitOutcome) -> str:
    if outcome == CommitOutcome.PARTIAL_COMMIT:
        return str(CommitMode.PARTIAL)
    if outcome == CommitOutcome.APPROVE_COMMIT:
        return str(CommitMode.FULL)
    return UNKNOWN_MODE


def post_guard_commit(data: CommitInput) -> Result[CommitDecision, GuardFailure]:
    pid = data.proposal_id
    rv = data.revalidation
    el = data.effects_log
    directive = rv.directive
    allow_list = directive.commit_allow_list

    def _fail(code: str, message: str, rule: str, **extra: Any) -> Err[GuardFailure]:
        trace: dict[str, Any] = {
            "mode": _mode_for(directive.outcome),
            "proposal_id": pid,
            "revalidation_declared_proposal_id": rv.proposal_id,
            "effects_log_declared_proposal_id": el.proposal_id,
            "effects_log_id": el.effects_log_id,
            "allow_list_count": len(allow_list),
            "rules_applied": [rule],
        }
        trace.update(extra)
        return Err(GuardFailure(code=code, stage=STAGE, message=message, trace=trace))

    if rv.proposal_id != pid:
        return _fail(
            COMMIT_INPUT_MISMATCH,
            "revalidation.proposal_id does not match proposal_id",
            PROPOSAL_ID_MISMATCH_REVALIDATION,
        )
    if el.proposal_id != pid:
        return _fail(
            COMMIT_INPUT_MISMATCH,
            "effects_log.proposal_id does not match proposal_id",
            PROPOSAL_ID_MISMATCH_EFFECTS_LOG,
        )
    if directive.outcome not in (CommitOutcome.APPROVE_COMMIT, CommitOutcome.PARTIAL_COMMIT):
        return _fail(
            COMMIT_OUTCOME_UNSUPPORTED,
            "partial or full approval required",
            OUTCOME_UNSUPPORTED,
            outcome=str(directive.outcome),
        )

    partial = directive.outcome == CommitOutcome.PARTIAL_COMMIT

    provisional_artifacts: list[ArtifactEffect] = []
    rejected: list[Rejected] = []
    ignored: list[Ignored] = []
    produced_artifact_ids: set[str] = set()

    for eff in el.produced_effects:
        if isinstance(eff, ArtifactEffect):
            produced_artifact_ids.add(eff.object_id)
            if eff.trust == TrustLevel.PROVISIONAL:
                provisional_artifacts.append(eff)
            else:
                rejected.append(_reject(eff, NOT_PROVISIONAL, "Trust not PROVISIONAL"))
        elif isinstance(eff, EventEffect):
            if eff.trust == TrustLevel.PROVISIONAL:
                ignored.append(eff)
            else:
                rejected.append(_reject(eff, NOT_PROVISIONAL, "Trust not PROVISIONAL"))
        else:
            ignored.append(eff)

    decision = CommitDecision(
        mode=CommitMode.PARTIAL if partial else CommitMode.FULL,
        outcome=directive.outcome,
        proposal_id=pid,
        effects_log_id=el.effects_log_id,
        allow_list_count=len(allow_list),
    )

    if not partial:
        return Ok(
            _with(
                decision,
                eligible=provisional_artifacts,
                rejected=rejected,
                ignored=ignored,
                rules=[FULL_COMMIT_ALL_PROVISIONAL_EFFECTS, FULL_IGNORES_ALLOWLIST],
                notes=[f"{len(allow_list)} allow-listed id(s) ignored under FULL commit."] if allow_list else [],
            )
        )

    if not allow_list:
        not_allowed = [_reject(a, NOT_ALLOWLIST_OBJECT, "Missing from allow list.") for a in provisional_artifacts]
        return Ok(
            _with(
                decision,
                eligible=[],
                rejected=[*rejected, *not_allowed],
                ignored=ignored,
                rules=[PARTIAL_EMPTY_ALLOWLIST_COMMITS_NOTHING],
                notes=["Empty allow list: nothing committed."],
            )
        )

    unknown_ids = [i for i in allow_list if i not in produced_artifact_ids]
    if unknown_ids:
        return _fail(
            ALLOWLIST_UNKNOWN_OBJECT,
            "unknown allowlist object",
            PARTIAL_ALLOWLIST_HAS_UNKNOWN_IDS,
            unknown_ids=unknown_ids,
        )

    allowed = set(allow_list)
    eligible = [a for a in provisional_artifacts if a.object_id in allowed]
    not_allowed = [
        _reject(a, NOT_ALLOWLIST_OBJECT, "Missing from allow list.")
        for a in provisional_artifacts
        if a.object_id not in allowed
    ]
    return Ok(
        _with(
            decision,
            eligible=eligible,
            rejected=[*rejected, *not_allowed],
            ignored=ignored,
            rules=[PARTIAL_COMMIT_USE_ALLOWLIST],
        )
    )


def _with(
    decision: CommitDecision,
    *,
    eligible: list[ArtifactEffect],
    rejected: list[Rejected],
    ignored: list[Ignored],
    rules: list[str],
    notes: list[str] | None = None,
) -> CommitDecision:
    return CommitDecision(
        mode=decision.mode,
        outcome=decision.outcome,
        proposal_id=decision.proposal_id,
        effects_log_id=decision.effects_log_id,
        allow_list_count=decision.allow_list_count,
        eligible=tuple(eligible),
        rejected=tuple(rejected),
        ignored=tuple(ignored),
        rules_applied=tuple(rules),
        notes=tuple(notes or ()),
    )


def promote_eligible(
    decision: CommitDecision,
    *,
    commit_id: str,
) -> tuple[list[ApprovedEffect], list[PromotionRecord], list[Rejected]]:
    """
    Run the trust guard once per eligible artifact. A denial moves that one
    artifact to rejected; it never aborts the commit.
    """
    approved: list[ApprovedEffect] = []
    promotions: list[PromotionRecord] = []
    rejected: list[Rejected] = []

    for eff in decision.eligible:
        verdict = promote(
            TrustPromotionRequest(
                from_trust=eff.trust,
                to_trust=TrustLevel.COMMITTED,
                stage=STAGE,
                reason=PROMOTION_REASON,
            )
        )
        if not verdict.ok:
            rejected.append(_reject(eff, str(verdict.code), verdict.message))
            continue

        approved.append(
            ApprovedEffect(
                stable_id=eff.stable_id,
                object_id=eff.object_id,
                kind=eff.kind,
            )
        )
        promotions.append(
            PromotionRecord(
                object_id=eff.object_id,
                reason=PROMOTION_REASON,
                proposal_id=decision.proposal_id,
                effects_log_id=decision.effects_log_id,
                commit_id=commit_id,
            )
        )

    return approved, promotions, rejected


def build_outbox(
    approved: list[ApprovedEffect],
    *,
    commit_id: str,
    pipeline: str,
    created_at: int,
    context: StageContext,
) -> list[OutboxEntry]:
    return [
        OutboxEntry(
            outbox_id=context.new_id(IdKind.OUTBOX),
            idempotency_key=fingerprint(
                {
                    "pipeline": pipeline,
                    "stage": str(STAGE),
                    "commit_id": commit_id,
                    "effect_type": effect.effect_type,
                    "object_id": effect.object_id,
                    "kind": effect.kind,
                }
            ),
            pipeline=pipeline,
            stage=str(STAGE),
            status=OutboxStatus.PENDING,
            attempts=0,
            created_at=created_at,
            updated_at=created_at,
            effect=effect,
        )
        for effect in approved
    ]


def _write(envelope: Envelope, decision: CommitDecision, context: StageContext) -> Envelope:
    ran_at = context.now()
    commit_id = context.new_id(IdKind.COMMIT)

    approved, promotions, denied = promote_eligible(decision, commit_id=commit_id)
    outbox = build_outbox(
        approved,
        commit_id=commit_id,
        pipeline=context.settings.pipeline_name,
        created_at=ran_at,
        context=context,
    )

    slot = CommitRun(
        ran_at=ran_at,
        observed=observed_ids(envelope, OBSERVED_IDS),
        commit_id=commit_id,
        proposal_id=decision.proposal_id,
        promotions=promotions,
        effects=CommitEffects(
            approved=approved,
            rejected=[*decision.rejected, *denied],
            ignored=list(decision.ignored),
        ),
        justification=Justification(
            mode=decision.mode,
            rules_applied=list(decision.rules_applied),
            notes=[
                *decision.notes,
                *(f"Promotion denied for {r.object_id}: {r.reason_code}." for r in denied),
            ],
            inputs=[
                JustificationInput(
                    commit_id=commit_id,
                    proposal_id=decision.proposal_id,
                    allow_list_count=decision.allow_list_count,
                )
            ],
        ),
        outcome=decision.outcome,
        outbox=outbox,
    )
    return commit_slot(envelope, STAGE, slot, commit_id=commit_id)


def commit_stage(envelope: Envelope, *, context: Optional[StageContext] = None) -> Envelope:
    """Promote approved PROVISIONAL artifacts to COMMITTED and emit their outbox entries."""
    ctx = context or StageContext()
    return run_stage(
        envelope,
        stage=STAGE,
        prereq_code=COMMIT_PREREQ_MISSING,
        guard=guard_commit,
        post_guard=post_guard_commit,
        write=_write,
        context=ctx,
    )
