from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

import pytest

from rna_ingestion.adapters.identity import SequentialIdProvider
from rna_ingestion.adapters.snapshot import StaticSnapshotProvider
from rna_ingestion.config import PipelineSettings
from rna_ingestion.context import StageContext
from rna_ingestion.contracts import (
    Actor,
    ActorType,
    ArtifactEffect,
    CommitMode,
    CommitOutcome,
    CommitPolicy,
    ContextSnapshot,
    EffectsLog,
    Envelope,
    EnvelopeIds,
    EventEffect,
    ExecutionRun,
    IngestionStages,
    KindScope,
    Permissions,
    RevalidationDirective,
    RevalidationRun,
    TrustLevel,
)
from rna_ingestion.engine import new_envelope

FIXED_NOW_MS = 1_700_000_000_000


@pytest.fixture
def clock() -> Callable[[], int]:
    return lambda: FIXED_NOW_MS


@pytest.fixture
def context(clock: Callable[[], int]) -> StageContext:
    return StageContext(
        settings=PipelineSettings(),
        id_provider=SequentialIdProvider(),
        clock=clock,
    )


@pytest.fixture
def make_raw_proposal() -> Callable[..., dict[str, Any]]:
    def _make_raw_proposal(
        *,
        intent: str = "Write weekly reflection",
        actor_id: str = "user_1",
        kinds: Sequence[str] = ("NOTE",),
        impact: str = "LOW",
        reversibility_claim: str = "REVERSIBLE",
    ) -> dict[str, Any]:
        return {
            "intent": intent,
            "actor": {"actor_id": actor_id, "actor_type": "USER"},
            "target": {"entity": "journal", "scope": {"allowed_kinds": list(kinds)}},
            "dependencies": [],
            "impact": impact,
            "reversibility_claim": reversibility_claim,
        }

    return _make_raw_proposal


@pytest.fixture
def make_snapshot() -> Callable[..., ContextSnapshot]:
    def _make_snapshot(
        *,
        allow: Sequence[str] = ("WEEKLY_REFLECTION",),
        allowed_kinds: Sequence[str] = ("NOTE",),
        invariants_version: str = "v1",
    ) -> ContextSnapshot:
        return ContextSnapshot(
            permissions=Permissions(
                actor=Actor(actor_id="user_1", actor_type=ActorType.USER),
                allow=list(allow),
            ),
            scope=KindScope(allowed_kinds=list(allowed_kinds)),
            invariants_version=invariants_version,
            timestamp_ms=FIXED_NOW_MS,
        )

    return _make_snapshot


@pytest.fixture
def make_envelope(
    context: StageContext,
    make_raw_proposal: Callable[..., dict[str, Any]],
    make_snapshot: Callable[..., ContextSnapshot],
) -> Callable[..., Envelope]:
    def _make_envelope(
        *,
        raw_proposal: Any = None,
        snapshot: ContextSnapshot | None = None,
        proposal_id: str | None = None,
        commit_policy: Any = None,
        plan: Any = None,
    ) -> Envelope:
        return new_envelope(
            raw_proposal if raw_proposal is not None else make_raw_proposal(),
            snapshot_provider=StaticSnapshotProvider(snapshot or make_snapshot()),
            context=context,
            proposal_id=proposal_id,
            commit_policy=commit_policy,
            plan=plan,
        )

    return _make_envelope


@pytest.fixture
def make_artifact() -> Callable[..., ArtifactEffect]:
    def _make_artifact(
        object_id: str,
        *,
        trust: TrustLevel = TrustLevel.PROVISIONAL,
        kind: str = "NOTE",
    ) -> ArtifactEffect:
        return ArtifactEffect(stable_id=f"eff_{object_id}", object_id=object_id, kind=kind, trust=trust)

    return _make_artifact


@pytest.fixture
def make_event() -> Callable[..., EventEffect]:
    def _make_event(
        name: str,
        *,
        trust: TrustLevel = TrustLevel.PROVISIONAL,
    ) -> EventEffect:
        return EventEffect(stable_id=f"eff_{name}", event_name=name, trust=trust)

    return _make_event


@pytest.fixture
def make_commit_envelope() -> Callable[..., Envelope]:
    """Envelope positioned right before Commit: execution and revalidation have run."""

    def _make_commit_envelope(
        effects: Sequence[Any],
        *,
        outcome: CommitOutcome = CommitOutcome.APPROVE_COMMIT,
        allow_list: Sequence[str] = (),
        proposal_id: str = "proposal_1",
        effects_log_proposal_id: str | None = None,
        revalidation_proposal_id: str | None = None,
    ) -> Envelope:
        effects_log = EffectsLog(
            effects_log_id="effects_1",
            proposal_id=effects_log_proposal_id or proposal_id,
            produced_effects=list(effects),
            fingerprint="fp_effects_1",
        )
        directive = RevalidationDirective(
            proposal_id=revalidation_proposal_id or proposal_id,
            outcome=outcome,
            commit_allow_list=list(allow_list),
            rules_applied=[],
        )
        return Envelope(
            ids=EnvelopeIds(
                proposal_id=proposal_id,
                snapshot_id="snapshot_1",
                execution_id="execution_1",
                effects_log_id="effects_1",
                revalidation_id="revalidation_1",
            ),
            stages=IngestionStages(
                execution=ExecutionRun(
                    ran_at=FIXED_NOW_MS,
                    observed=EnvelopeIds(proposal_id=proposal_id),
                    execution_id="execution_1",
                    effects_log=effects_log,
                ),
                revalidation=RevalidationRun(
                    ran_at=FIXED_NOW_MS,
                    observed=EnvelopeIds(proposal_id=proposal_id),
                    revalidation_id="revalidation_1",
                    proposal_id=revalidation_proposal_id or proposal_id,
                    directive=directive,
                ),
            ),
        )

    return _make_commit_envelope


@pytest.fixture
def partial_policy() -> CommitPolicy:
    return CommitPolicy(allowed_modes=(CommitMode.FULL, CommitMode.PARTIAL))
