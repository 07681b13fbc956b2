# rna_ingestion/engine.py
from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any, Optional

from rna_ingestion.adapters.identity import IdKind
from rna_ingestion.adapters.snapshot import SnapshotProvider
from rna_ingestion.config import load_settings
from rna_ingestion.contracts import Envelope, EnvelopeIds, EnvelopeMeta
from rna_ingestion.context import StageContext
from rna_ingestion.envelope import first_halt, halting_errors, has_halting_errors
from rna_ingestion.stages import (
    commit_stage,
    execution_stage,
    intake_stage,
    planning_stage,
    revalidation_stage,
    validation_stage,
)

logger = logging.getLogger(__name__)

Stage = Callable[..., Envelope]

INGESTION_SPINE: tuple[Stage, ...] = (
    intake_stage,
    validation_stage,
    planning_stage,
    execution_stage,
    revalidation_stage,
    commit_stage,
)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | int | None = None) -> None:
    """For applications; library code never installs handlers. Defaults to the configured log_level."""
    if level is None:
        level = load_settings().log_level
    logging.basicConfig(level=level, format=_LOG_FORMAT)
    logging.getLogger("rna_ingestion").setLevel(level)


def new_envelope(
    raw_proposal: Any,
    *,
    snapshot_provider: SnapshotProvider,
    context: Optional[StageContext] = None,
    proposal_id: Optional[str] = None,
    commit_policy: Any = None,
    plan: Any = None,
) -> Envelope:
    """
    Envelope0: empty stage slots, a snapshot from the provider and a freshly
    minted snapshot_id. ``raw_proposal``, ``commit_policy`` and ``plan`` are
    kept as given; the stages validate them.
    """
    ctx = context or StageContext()
    return Envelope(
        ids=EnvelopeIds(
            proposal_id=proposal_id,
            snapshot_id=ctx.new_id(IdKind.SNAPSHOT),
        ),
        snapshot=snapshot_provider.get_snapshot(),
        meta=EnvelopeMeta(raw_proposal=raw_proposal, commit_policy=commit_policy, plan=plan),
    )


def run_ingestion(
    envelope: Envelope,
    *,
    context: Optional[StageContext] = None,
    stages: Sequence[Stage] = INGESTION_SPINE,
) -> Envelope:
    """Fold the envelope through the stages. A HALT makes every later stage a no-op."""
    ctx = context or StageContext()
    env = envelope
    for stage in stages:
        env = stage(env, context=ctx)

    halt = first_halt(env)
    if halt is not None:
        logger.warning(
            "ingestion halted at %s (%s) for proposal_id=%s",
            halt.stage,
            halt.code,
            env.ids.proposal_id,
        )
    else:
        logger.info("ingestion completed for proposal_id=%s (commit_id=%s)", env.ids.proposal_id, env.ids.commit_id)
    return env


__all__ = [
    "INGESTION_SPINE",
    "configure_logging",
    "first_halt",
    "halting_errors",
    "has_halting_errors",
    "new_envelope",
    "run_ingestion",
]
