# rna_ingestion/stages/intake.py
from __future__ import annotations

from typing import Any, Optional

from rna_ingestion._compat import iso_from_ms
from rna_ingestion.adapters.identity import IdKind
from rna_ingestion.checker import ContractName
from rna_ingestion.contracts import (
    Envelope,
    EnvelopeIds,
    IntakeInput,
    IntakeRun,
    PipelineStage,
    ProposalRecord,
)
from rna_ingestion.context import StageContext
from rna_ingestion.envelope import merge_ids
from rna_ingestion.guards import as_candidate, guard
from rna_ingestion.stable_ids import fingerprint
from rna_ingestion.stages.base import commit_slot, run_stage

STAGE = PipelineStage.INTAKE

INTAKE_PREREQ_MISSING = "INTAKE_PREREQ_MISSING"
INVALID_INTAKE_INPUT = "INVALID_INTAKE_INPUT"
INTAKE_PARSE_FAILED = "INTAKE_PARSE_FAILED"


def pluck_intake(envelope: Envelope) -> dict[str, Any]:
    return {
        "proposal_id": envelope.ids.proposal_id,
        "raw_proposal": as_candidate(envelope.meta.raw_proposal),
    }


guard_intake = guard(STAGE, ContractName.INTAKE_INPUT, INVALID_INTAKE_INPUT, INTAKE_PARSE_FAILED, pluck_intake)


def intake_fingerprint(data: IntakeInput) -> str:
    return fingerprint({"proposal_id": data.proposal_id, "raw_proposal": data.raw_proposal})


def _write(envelope: Envelope, data: IntakeInput, context: StageContext) -> Envelope:
    ran_at = context.now()
    intake_id = context.new_id(IdKind.INTAKE)
    stamp = iso_from_ms(ran_at)
    record = ProposalRecord(
        id=data.proposal_id,
        created_at=stamp,
        actor=data.raw_proposal.actor,
        proposal_id=data.proposal_id,
        fingerprint=intake_fingerprint(data),
        intake_timestamp=stamp,
        raw_proposal=data.raw_proposal,
    )
    slot = IntakeRun(
        ran_at=ran_at,
        observed=EnvelopeIds(proposal_id=data.proposal_id),
        intake_id=intake_id,
        proposal=record,
    )
    return commit_slot(envelope, STAGE, slot, intake_id=intake_id)


def intake_stage(envelope: Envelope, *, context: Optional[StageContext] = None) -> Envelope:
    """Accept the untrusted raw proposal and record it as an UNTRUSTED ProposalRecord."""
    ctx = context or StageContext()

    def _ensure_proposal_id(env: Envelope) -> Envelope:
        if env.ids.proposal_id:
            return env
        return merge_ids(env, proposal_id=ctx.new_id(IdKind.PROPOSAL))

    return run_stage(
        envelope,
        stage=STAGE,
        prereq_code=INTAKE_PREREQ_MISSING,
        guard=guard_intake,
        write=_write,
        context=ctx,
        prepare=_ensure_proposal_id,
    )
