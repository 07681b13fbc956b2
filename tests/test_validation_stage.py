from __future__ import annotations

from rna_ingestion.contracts import CommitMode, DecisionType, ValidationRun
from rna_ingestion.stages.intake import intake_stage
from rna_ingestion.stages.validation import validation_stage


def test_validation_approves_and_records_default_policy(make_envelope, context) -> None:
    env = intake_stage(make_envelope(), context=context)

    out = validation_stage(env, context=context)

    assert out.errors == ()
    slot = out.stages.validation
    assert isinstance(slot, ValidationRun)
    assert slot.decision_type == DecisionType.APPROVE
    assert slot.justification is True
    assert slot.attribution == []
    assert slot.commit_policy.allowed_modes == (CommitMode.FULL,)
    assert slot.snapshot == env.snapshot
    assert slot.observed.intake_id == env.ids.intake_id
    assert slot.observed.snapshot_id == env.ids.snapshot_id
    assert out.ids.validation_id == slot.validation_id


def test_validation_uses_caller_commit_policy(make_envelope, context) -> None:
    env = intake_stage(
        make_envelope(commit_policy={"allowed_modes": ["FULL", "PARTIAL"]}),
        context=context,
    )

    out = validation_stage(env, context=context)

    assert out.stages.validation.commit_policy.allows_partial is True


def test_validation_rejects_malformed_commit_policy(make_envelope, context) -> None:
    env = intake_stage(make_envelope(commit_policy={"allowed_modes": ["PARTIAL"]}), context=context)

    out = validation_stage(env, context=context)

    assert out.stages.validation.has_run is False
    assert [e.code for e in out.errors] == ["INVALID_VALIDATION_INPUT"]


def test_validation_requires_intake(make_envelope, context) -> None:
    out = validation_stage(make_envelope(proposal_id="proposal_1"), context=context)

    assert [e.code for e in out.errors] == ["VALIDATION_PREREQ_MISSING"]
    assert out.errors[0].trace == {"proposal_id": "proposal_1", "intake_has_run": False}


def test_snapshot_without_permissions_halts(make_envelope, make_snapshot, context) -> None:
    env = intake_stage(make_envelope(snapshot=make_snapshot(allow=())), context=context)

    out = validation_stage(env, context=context)

    assert out.stages.validation.has_run is False
    assert [e.code for e in out.errors] == ["SNAPSHOT_PERMISSION_NOT_ALLOWED"]
    assert out.errors[0].message == "Permissions have none allowed"


def test_targeted_kind_outside_snapshot_scope_halts(make_envelope, make_raw_proposal, context) -> None:
    env = intake_stage(make_envelope(raw_proposal=make_raw_proposal(kinds=("NOTE", "TASK"))), context=context)

    out = validation_stage(env, context=context)

    assert [e.code for e in out.errors] == ["SNAPSHOT_SCOPE_NOT_ALLOWED"]
    assert out.errors[0].trace["kinds"] == ["TASK"]
