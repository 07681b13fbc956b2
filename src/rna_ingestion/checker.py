# rna_ingestion/checker.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ValidationError

from rna_ingestion._compat import StrEnum
from rna_ingestion.contracts import (
    CommitInput,
    ExecutionInput,
    IntakeInput,
    OutboxEntry,
    PlanningInput,
    RevalidationInput,
    TrustPromotionRequest,
    ValidationInput,
)
from rna_ingestion.result import Err, Ok, Result


class ContractName(StrEnum):
    INTAKE_INPUT = "intake.input"
    VALIDATION_INPUT = "validation.input"
    PLANNING_INPUT = "planning.input"
    EXECUTION_INPUT = "execution.input"
    REVALIDATION_INPUT = "revalidation.input"
    COMMIT_INPUT = "commit.input"
    OUTBOX_ENTRY = "outbox.entry"
    TRUST_PROMOTION_REQUEST = "trust.promotion_request"


@dataclass(frozen=True)
class ContractViolations:
    contract: str
    violations: tuple[str, ...]

    @property
    def message(self) -> str:
        return "; ".join(self.violations)


REGISTRY: dict[str, type[BaseModel]] = {
    ContractName.INTAKE_INPUT.value: IntakeInput,
    ContractName.VALIDATION_INPUT.value: ValidationInput,
    ContractName.PLANNING_INPUT.value: PlanningInput,
    ContractName.EXECUTION_INPUT.value: ExecutionInput,
    ContractName.REVALIDATION_INPUT.value: RevalidationInput,
    ContractName.COMMIT_INPUT.value: CommitInput,
    ContractName.OUTBOX_ENTRY.value: OutboxEntry,
    ContractName.TRUST_PROMOTION_REQUEST.value: TrustPromotionRequest,
}


def _render(err: ValidationError) -> tuple[str, ...]:
    out: list[str] = []
    for item in err.errors():
        loc = ".".join(str(part) for part in item.get("loc", ())) or "<root>"
        out.append(f"{loc}: {item.get('msg', 'invalid')}")
    return tuple(out)


def check_contract(name: str, candidate: Any) -> Result[BaseModel, ContractViolations]:
    """
    Validate ``candidate`` against the named contract.

    Returns ``Ok(model)`` or ``Err(ContractViolations)``. Never raises for bad input.
    """
    model = REGISTRY.get(str(name))
    if model is None:
        return Err(ContractViolations(contract=str(name), violations=(f"unknown contract: {name}",)))
    try:
        return Ok(model.model_validate(candidate))
    except ValidationError as e:
        return Err(ContractViolations(contract=str(name), violations=_render(e)))
