# rna_ingestion/contracts.py
from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from rna_ingestion._compat import Self, StrEnum

# ------------------------------------------------------------------------------
# Shared BaseModel config helpers
# ------------------------------------------------------------------------------

_CONTRACT_CONFIG = ConfigDict(
    extra="forbid",
    use_enum_values=False,  # keep enums as enums in Python
    frozen=True,
)

# Stage inputs are plucked from stage slots that also carry has_run/ran_at/observed.
_INPUT_CONTRACT_CONFIG = ConfigDict(
    extra="ignore",
    use_enum_values=False,
    frozen=True,
)

NonEmptyStr = Annotated[str, Field(min_length=1)]


# ------------------------------------------------------------------------------
# Enumerations
# ------------------------------------------------------------------------------


class PipelineStage(StrEnum):
    INTAKE = "INTAKE"
    VALIDATION = "VALIDATION"
    PLANNING = "PLANNING"
    EXECUTION = "EXECUTION"
    REVALIDATION = "REVALIDATION"
    COMMIT = "COMMIT"

    @property
    def key(self) -> str:
        """Attribute name of this stage's slot on ``IngestionStages``."""
        return self.value.lower()


class EnvelopeStage(StrEnum):
    """Stage an error is attributed to; ENVELOPE covers envelope-level checks."""

    INTAKE = "INTAKE"
    VALIDATION = "VALIDATION"
    PLANNING = "PLANNING"
    EXECUTION = "EXECUTION"
    REVALIDATION = "REVALIDATION"
    COMMIT = "COMMIT"
    ENVELOPE = "ENVELOPE"


class Severity(StrEnum):
    HALT = "HALT"
    WARN = "WARN"


class TrustLevel(StrEnum):
    UNTRUSTED = "UNTRUSTED"
    PROVISIONAL = "PROVISIONAL"
    COMMITTED = "COMMITTED"
    DERIVED = "DERIVED"


TRUST_RANK: dict[TrustLevel, int] = {
    TrustLevel.UNTRUSTED: 0,
    TrustLevel.PROVISIONAL: 1,
    TrustLevel.COMMITTED: 2,
    TrustLevel.DERIVED: 3,
}


class EffectType(StrEnum):
    ARTIFACT = "ARTIFACT"
    EVENT = "EVENT"
    UNKNOWN = "UNKNOWN"


class CommitOutcome(StrEnum):
    APPROVE_COMMIT = "APPROVE_COMMIT"
    PARTIAL_COMMIT = "PARTIAL_COMMIT"
    REJECT_COMMIT = "REJECT_COMMIT"


class CommitMode(StrEnum):
    FULL = "FULL"
    PARTIAL = "PARTIAL"


class DecisionType(StrEnum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    PARTIAL_APPROVE = "PARTIAL_APPROVE"
    ESCALATE = "ESCALATE"


class PlanKind(StrEnum):
    PRODUCE_ARTIFACT = "PRODUCE_ARTIFACT"
    EMIT_EVENT = "EMIT_EVENT"


class ActorType(StrEnum):
    USER = "USER"
    AGENT = "AGENT"
    SYSTEM = "SYSTEM"


class Impact(StrEnum):
    LOW = "LOW"
    MED = "MED"
    HIGH = "HIGH"


class ReversibilityClaim(StrEnum):
    REVERSIBLE = "REVERSIBLE"
    PARTIALLY_REVERSIBLE = "PARTIALLY_REVERSIBLE"
    IRREVERSIBLE = "IRREVERSIBLE"
    UNKNOWN = "UNKNOWN"


class OutboxStatus(StrEnum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    APPLIED = "APPLIED"
    FAILED = "FAILED"


# ------------------------------------------------------------------------------
# Proposal / snapshot
# ------------------------------------------------------------------------------


class Actor(BaseModel):
    model_config = _CONTRACT_CONFIG
    actor_id: NonEmptyStr
    actor_type: ActorType
    role: NonEmptyStr | None = None


class KindScope(BaseModel):
    model_config = _CONTRACT_CONFIG
    allowed_kinds: list[NonEmptyStr] = Field(default_factory=list)


class ProposalTarget(BaseModel):
    model_config = _CONTRACT_CONFIG
    entity: NonEmptyStr
    scope: KindScope
    selector: NonEmptyStr | None = None


class RawProposal(BaseModel):
    """Untrusted proposal as submitted; the only input Intake accepts."""

    model_config = _CONTRACT_CONFIG
    intent: NonEmptyStr
    actor: Actor
    target: ProposalTarget
    dependencies: list[str] = Field(default_factory=list)
    impact: Impact
    reversibility_claim: ReversibilityClaim


class ProposalRecord(BaseModel):
    model_config = _CONTRACT_CONFIG
    id: NonEmptyStr
    created_at: NonEmptyStr
    actor: Actor
    kind: Literal["PROPOSAL_RECORD"] = "PROPOSAL_RECORD"
    trust: Literal[TrustLevel.UNTRUSTED] = TrustLevel.UNTRUSTED
    proposal_id: NonEmptyStr
    fingerprint: NonEmptyStr
    intake_timestamp: NonEmptyStr
    raw_proposal: RawProposal


class Permissions(BaseModel):
    model_config = _CONTRACT_CONFIG
    actor: Actor
    allow: list[NonEmptyStr] = Field(default_factory=list)


class ContextSnapshot(BaseModel):
    """Point-in-time capability context handed out by a snapshot provider."""

    model_config = _CONTRACT_CONFIG
    permissions: Permissions
    scope: KindScope
    invariants_version: NonEmptyStr
    timestamp_ms: int = Field(ge=0)
    dependency_versions: dict[str, str] | None = None


class CommitPolicy(BaseModel):
    model_config = _CONTRACT_CONFIG
    allowed_modes: tuple[CommitMode, ...] = (CommitMode.FULL,)

    @field_validator("allowed_modes")
    @classmethod
    def _validate_allowed_modes(cls, value: tuple[CommitMode, ...]) -> tuple[CommitMode, ...]:
        if value not in {(CommitMode.FULL,), (CommitMode.FULL, CommitMode.PARTIAL)}:
            raise ValueError("allowed_modes must be [FULL] or [FULL, PARTIAL]")
        return value

    @property
    def allows_partial(self) -> bool:
        return CommitMode.PARTIAL in self.allowed_modes


# ------------------------------------------------------------------------------
# Plan
# ------------------------------------------------------------------------------


class PlannedArtifact(BaseModel):
    model_config = _CONTRACT_CONFIG
    kind: NonEmptyStr


class PlannedEvent(BaseModel):
    model_config = _CONTRACT_CONFIG
    name: NonEmptyStr


class PlanOutputs(BaseModel):
    model_config = _CONTRACT_CONFIG
    artifacts: list[PlannedArtifact] = Field(default_factory=list)
    events: list[PlannedEvent] = Field(default_factory=list)


class PlanStep(BaseModel):
    model_config = _CONTRACT_CONFIG
    step_id: NonEmptyStr
    kind: PlanKind
    description: NonEmptyStr
    outputs: PlanOutputs = Field(default_factory=PlanOutputs)


# ------------------------------------------------------------------------------
# Effects
# ------------------------------------------------------------------------------


class ArtifactEffect(BaseModel):
    model_config = _CONTRACT_CONFIG
    stable_id: NonEmptyStr
    effect_type: Literal[EffectType.ARTIFACT] = EffectType.ARTIFACT
    object_id: NonEmptyStr
    kind: NonEmptyStr
    trust: TrustLevel


class EventEffect(BaseModel):
    model_config = _CONTRACT_CONFIG
    stable_id: NonEmptyStr
    effect_type: Literal[EffectType.EVENT] = EffectType.EVENT
    event_name: NonEmptyStr
    payload: Any = None
    trust: TrustLevel


class UnknownEffect(BaseModel):
    model_config = _CONTRACT_CONFIG
    stable_id: NonEmptyStr
    effect_type: Literal[EffectType.UNKNOWN] = EffectType.UNKNOWN
    trust: TrustLevel
    raw: Any = None


Effect = Annotated[
    Union[ArtifactEffect, EventEffect, UnknownEffect],
    Field(discriminator="effect_type"),
]


class ApprovedEffect(ArtifactEffect):
    trust: Literal[TrustLevel.COMMITTED] = TrustLevel.COMMITTED


class RejectedArtifactEffect(ArtifactEffect):
    original_trust: TrustLevel
    reason_code: NonEmptyStr
    reason: NonEmptyStr


class RejectedEventEffect(EventEffect):
    original_trust: TrustLevel
    reason_code: NonEmptyStr
    reason: NonEmptyStr


# UNKNOWN effects are never rejected, only ignored.
RejectedEffect = Annotated[
    Union[RejectedArtifactEffect, RejectedEventEffect],
    Field(discriminator="effect_type"),
]


class EffectsLog(BaseModel):
    model_config = _CONTRACT_CONFIG
    effects_log_id: NonEmptyStr
    proposal_id: NonEmptyStr
    produced_effects: list[Effect] = Field(default_factory=list)
    fingerprint: NonEmptyStr


# ------------------------------------------------------------------------------
# Revalidation / commit records
# ------------------------------------------------------------------------------


class RevalidationDirective(BaseModel):
    model_config = _CONTRACT_CONFIG
    proposal_id: NonEmptyStr
    outcome: CommitOutcome
    commit_allow_list: list[NonEmptyStr] = Field(default_factory=list)
    rules_applied: list[str] = Field(default_factory=list)


class PromotionRecord(BaseModel):
    model_config = _CONTRACT_CONFIG
    stage: Literal[PipelineStage.COMMIT] = PipelineStage.COMMIT
    object_id: NonEmptyStr
    from_trust: Literal[TrustLevel.PROVISIONAL] = TrustLevel.PROVISIONAL
    to_trust: Literal[TrustLevel.COMMITTED] = TrustLevel.COMMITTED
    reason: NonEmptyStr
    proposal_id: NonEmptyStr
    effects_log_id: NonEmptyStr
    commit_id: NonEmptyStr


class JustificationInput(BaseModel):
    model_config = _CONTRACT_CONFIG
    commit_id: NonEmptyStr
    proposal_id: NonEmptyStr
    allow_list_count: int = Field(ge=0)


class Justification(BaseModel):
    model_config = _CONTRACT_CONFIG
    mode: CommitMode
    rules_applied: list[str] = Field(default_factory=list)
    inputs: list[JustificationInput] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)


class CommitEffects(BaseModel):
    model_config = _CONTRACT_CONFIG
    approved: list[ApprovedEffect] = Field(default_factory=list)
    rejected: list[RejectedEffect] = Field(default_factory=list)
    ignored: list[Effect] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.approved) + len(self.rejected) + len(self.ignored)


# ------------------------------------------------------------------------------
# Outbox
# ------------------------------------------------------------------------------


class OutboxError(BaseModel):
    model_config = _CONTRACT_CONFIG
    message: NonEmptyStr
    code: NonEmptyStr | None = None
    trace: Any = None
    at: int = Field(ge=0)


class OutboxEntry(BaseModel):
    """Durable intent-to-apply record for one approved effect."""

    model_config = _CONTRACT_CONFIG

    outbox_id: NonEmptyStr
    idempotency_key: NonEmptyStr
    pipeline: NonEmptyStr
    stage: NonEmptyStr
    status: OutboxStatus
    attempts: int = Field(default=0, ge=0)
    created_at: int = Field(ge=0)
    updated_at: int = Field(ge=0)
    applied_at: int | None = Field(default=None, ge=0)
    effect: Effect
    error: OutboxError | None = None
    last_error: OutboxError | None = None

    @model_validator(mode="after")
    def _validate_error_matches_status(self) -> Self:
        if self.status == OutboxStatus.FAILED and self.error is None:
            raise ValueError("FAILED outbox entry must include `error`")
        if self.status != OutboxStatus.FAILED and self.error is not None:
            raise ValueError("`error` may only be present when status is FAILED")
        return self


class CommitRecord(BaseModel):
    model_config = _CONTRACT_CONFIG
    commit_id: NonEmptyStr
    proposal_id: NonEmptyStr
    promotions: list[PromotionRecord] = Field(default_factory=list)
    effects: CommitEffects = Field(default_factory=CommitEffects)
    justification: Justification
    outcome: CommitOutcome
    outbox: list[OutboxEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_promotions_match_approved(self) -> Self:
        if len(self.promotions) != len(self.effects.approved):
            raise ValueError("every approved effect requires exactly one promotion record")
        return self


# ------------------------------------------------------------------------------
# Envelope
# ------------------------------------------------------------------------------


class EnvelopeIds(BaseModel):
    """Canonical ids carried by the envelope; populated incrementally by stages."""

    model_config = _CONTRACT_CONFIG
    proposal_id: str | None = None
    intake_id: str | None = None
    validation_id: str | None = None
    planning_id: str | None = None
    execution_id: str | None = None
    effects_log_id: str | None = None
    revalidation_id: str | None = None
    commit_id: str | None = None
    snapshot_id: str | None = None


class StageError(BaseModel):
    model_config = _CONTRACT_CONFIG
    stage: EnvelopeStage
    severity: Severity
    code: NonEmptyStr
    message: str
    trace: dict[str, Any] | None = None
    at: int = Field(ge=0)


class StageNotRun(BaseModel):
    model_config = _CONTRACT_CONFIG
    has_run: Literal[False] = False


class _StageRun(BaseModel):
    model_config = _CONTRACT_CONFIG
    has_run: Literal[True] = True
    ran_at: int = Field(ge=0)
    observed: EnvelopeIds


class IntakeRun(_StageRun):
    intake_id: NonEmptyStr
    proposal: ProposalRecord


class ValidationRun(_StageRun):
    validation_id: NonEmptyStr
    proposal_id: NonEmptyStr
    commit_policy: CommitPolicy
    decision_type: DecisionType
    decided_at: int = Field(ge=0)
    justification: bool
    attribution: list[str] = Field(default_factory=list)
    fingerprint: NonEmptyStr
    snapshot: ContextSnapshot


class PlanningRun(_StageRun):
    planning_id: NonEmptyStr
    plan: list[PlanStep] = Field(default_factory=list)
    fingerprint: NonEmptyStr


class ExecutionRun(_StageRun):
    execution_id: NonEmptyStr
    effects_log: EffectsLog


class RevalidationRun(_StageRun):
    revalidation_id: NonEmptyStr
    proposal_id: NonEmptyStr
    directive: RevalidationDirective


class CommitRun(CommitRecord):
    has_run: Literal[True] = True
    ran_at: int = Field(ge=0)
    observed: EnvelopeIds


class IngestionStages(BaseModel):
    model_config = _CONTRACT_CONFIG
    intake: Union[IntakeRun, StageNotRun] = Field(default_factory=StageNotRun)
    validation: Union[ValidationRun, StageNotRun] = Field(default_factory=StageNotRun)
    planning: Union[PlanningRun, StageNotRun] = Field(default_factory=StageNotRun)
    execution: Union[ExecutionRun, StageNotRun] = Field(default_factory=StageNotRun)
    revalidation: Union[RevalidationRun, StageNotRun] = Field(default_factory=StageNotRun)
    commit: Union[CommitRun, StageNotRun] = Field(default_factory=StageNotRun)

    def slot(self, stage: PipelineStage) -> BaseModel:
        return getattr(self, stage.key)

    def has_run(self, stage: PipelineStage) -> bool:
        return bool(getattr(self.slot(stage), "has_run", False))


class EnvelopeMeta(BaseModel):
    """Caller-supplied, untrusted inputs; stages validate what they pluck."""

    model_config = _CONTRACT_CONFIG
    raw_proposal: Any = None
    commit_policy: Any = None
    plan: Any = None


class Envelope(BaseModel):
    """Pipeline state threaded through every stage. Updated by replacement only."""

    model_config = _CONTRACT_CONFIG
    ids: EnvelopeIds = Field(default_factory=EnvelopeIds)
    snapshot: ContextSnapshot | None = None
    stages: IngestionStages = Field(default_factory=IngestionStages)
    errors: tuple[StageError, ...] = ()
    meta: EnvelopeMeta = Field(default_factory=EnvelopeMeta)


# ------------------------------------------------------------------------------
# Stage input contracts (what each guard plucks and validates)
# ------------------------------------------------------------------------------


class IntakeInput(BaseModel):
    model_config = _INPUT_CONTRACT_CONFIG
    proposal_id: NonEmptyStr
    raw_proposal: RawProposal


class ValidationInput(BaseModel):
    model_config = _INPUT_CONTRACT_CONFIG
    proposal_id: NonEmptyStr
    snapshot_id: NonEmptyStr
    intake_id: NonEmptyStr
    snapshot: ContextSnapshot
    proposal: ProposalRecord
    commit_policy: CommitPolicy


class PlanningInput(BaseModel):
    model_config = _INPUT_CONTRACT_CONFIG
    proposal_id: NonEmptyStr
    snapshot_id: NonEmptyStr
    validation_id: NonEmptyStr
    commit_policy: CommitPolicy
    plan: list[PlanStep] = Field(default_factory=list)


class ExecutionInput(BaseModel):
    model_config = _INPUT_CONTRACT_CONFIG
    proposal_id: NonEmptyStr
    snapshot_id: NonEmptyStr
    planning_id: NonEmptyStr
    plan: list[PlanStep] = Field(default_factory=list)
    commit_policy: CommitPolicy


class RevalidationInput(BaseModel):
    model_config = _INPUT_CONTRACT_CONFIG
    proposal_id: NonEmptyStr
    snapshot_id: NonEmptyStr
    validation_id: NonEmptyStr
    planning_id: NonEmptyStr
    execution_id: NonEmptyStr
    plan: list[PlanStep] = Field(default_factory=list)
    commit_policy: CommitPolicy
    effects_log: EffectsLog


class RevalidationOutput(BaseModel):
    model_config = _INPUT_CONTRACT_CONFIG
    proposal_id: NonEmptyStr
    revalidation_id: NonEmptyStr
    directive: RevalidationDirective


class CommitInput(BaseModel):
    model_config = _INPUT_CONTRACT_CONFIG
    proposal_id: NonEmptyStr
    revalidation: RevalidationOutput
    effects_log: EffectsLog


class TrustPromotionRequest(BaseModel):
    model_config = _CONTRACT_CONFIG
    from_trust: TrustLevel
    to_trust: TrustLevel
    stage: PipelineStage
    reason: NonEmptyStr
