# rna_ingestion/trust.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Union

from rna_ingestion._compat import StrEnum
from rna_ingestion.checker import ContractName, check_contract
from rna_ingestion.contracts import TRUST_RANK, PipelineStage, TrustLevel, TrustPromotionRequest


class TrustGuardCode(StrEnum):
    INVALID_REQUEST = "INVALID_REQUEST"
    NO_OP = "NO_OP"
    TRUST_DOWNGRADE_FORBIDDEN = "TRUST_DOWNGRADE_FORBIDDEN"
    COMMIT_STAGE_REQUIRED = "COMMIT_STAGE_REQUIRED"


@dataclass(frozen=True)
class PromotionAllowed:
    request: TrustPromotionRequest
    ok: Literal[True] = True


@dataclass(frozen=True)
class PromotionDenied:
    code: TrustGuardCode
    message: str
    ok: Literal[False] = False


PromotionDecision = Union[PromotionAllowed, PromotionDenied]


def rank(level: TrustLevel) -> int:
    return TRUST_RANK[level]


def promote(request: Any) -> PromotionDecision:
    """
    Trust promotion policy. Stateless and total: every request gets a decision.

    Accepts a ``TrustPromotionRequest`` or anything shaped like one.
    """
    if isinstance(request, TrustPromotionRequest):
        req = request
    else:
        checked = check_contract(ContractName.TRUST_PROMOTION_REQUEST, request)
        if not checked.ok:
            return PromotionDenied(code=TrustGuardCode.INVALID_REQUEST, message=checked.error.message)
        req = checked.value

    if req.from_trust == req.to_trust:
        return PromotionDenied(
            code=TrustGuardCode.NO_OP,
            message="Trust promotion must change trust level.",
        )

    if rank(req.to_trust) < rank(req.from_trust):
        return PromotionDenied(
            code=TrustGuardCode.TRUST_DOWNGRADE_FORBIDDEN,
            message=f"Cannot downgrade trust from {req.from_trust} to {req.to_trust} in promotion guard.",
        )

    if req.to_trust == TrustLevel.COMMITTED and req.stage != PipelineStage.COMMIT:
        return PromotionDenied(
            code=TrustGuardCode.COMMIT_STAGE_REQUIRED,
            message="Only COMMIT stage may promote to COMMITTED trust.",
        )

    return PromotionAllowed(request=req)
