from __future__ import annotations

import pytest

from rna_ingestion.contracts import (
    Envelope,
    EnvelopeIds,
    EnvelopeStage,
    PipelineStage,
    Severity,
    StageNotRun,
)
from rna_ingestion.envelope import (
    append_error,
    first_halt,
    halting_errors,
    has_halting_errors,
    make_stage_error,
    merge_ids,
    observed_ids,
    write_stage,
)


def test_append_error_returns_new_envelope_and_keeps_order() -> None:
    env = Envelope(ids=EnvelopeIds(proposal_id="proposal_1"))
    warn = make_stage_error(PipelineStage.INTAKE, "SOFT", "heads up", at=1, severity=Severity.WARN)
    halt = make_stage_error(PipelineStage.VALIDATION, "HARD", "stop", at=2)

    env1 = append_error(env, warn)
    env2 = append_error(env1, halt)

    assert env.errors == ()
    assert [e.code for e in env2.errors] == ["SOFT", "HARD"]
    assert env2.errors[1].stage == EnvelopeStage.VALIDATION


def test_warn_errors_do_not_halt() -> None:
    env = append_error(
        Envelope(),
        make_stage_error(PipelineStage.INTAKE, "SOFT", "heads up", at=1, severity=Severity.WARN),
    )

    assert has_halting_errors(env) is False
    assert halting_errors(env) == []
    assert first_halt(env) is None


def test_first_halt_is_earliest_halt() -> None:
    env = Envelope()
    for code in ("A", "B"):
        env = append_error(env, make_stage_error(PipelineStage.PLANNING, code, code, at=1))

    assert has_halting_errors(env) is True
    assert first_halt(env) is not None
    assert first_halt(env).code == "A"  # type: ignore[union-attr]


def test_envelope_stage_errors_are_supported() -> None:
    err = make_stage_error("ENVELOPE", "ENVELOPE_INVALID", "bad envelope", at=5)
    assert err.stage == EnvelopeStage.ENVELOPE


def test_merge_ids_adds_but_never_overwrites() -> None:
    env = Envelope(ids=EnvelopeIds(proposal_id="proposal_1"))

    out = merge_ids(env, proposal_id="proposal_other", intake_id="intake_1", planning_id=None)

    assert out.ids.proposal_id == "proposal_1"
    assert out.ids.intake_id == "intake_1"
    assert out.ids.planning_id is None
    assert env.ids.intake_id is None


def test_merge_ids_rejects_unknown_keys() -> None:
    with pytest.raises(KeyError):
        merge_ids(Envelope(), not_an_id="x")


def test_observed_ids_only_carries_requested_keys() -> None:
    env = Envelope(ids=EnvelopeIds(proposal_id="proposal_1", intake_id="intake_1", snapshot_id="snapshot_1"))

    observed = observed_ids(env, ("proposal_id", "snapshot_id"))

    assert observed.proposal_id == "proposal_1"
    assert observed.snapshot_id == "snapshot_1"
    assert observed.intake_id is None


def test_write_stage_refuses_to_overwrite_history(make_commit_envelope) -> None:
    env = make_commit_envelope([])
    assert env.stages.has_run(PipelineStage.REVALIDATION)

    with pytest.raises(ValueError):
        write_stage(env, PipelineStage.REVALIDATION, StageNotRun())
