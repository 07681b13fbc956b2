# rna_ingestion/stable_ids.py
from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel


def _sha256_hex(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _jsonable(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Mapping):
        return {str(k): _jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_jsonable(v) for v in obj]
    return obj


def _canon(obj: Any) -> str:
    """
    Canonical JSON string (stable across runs) for hashing.
    Mapping key order never affects the result; sequence order does.
    """
    return json.dumps(_jsonable(obj), sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def fingerprint(obj: Any) -> str:
    """Deterministic sha256 hex digest of the canonical JSON form of ``obj``."""
    return _sha256_hex(_canon(obj))


def derive_effect_ids(
    *,
    proposal_id: str,
    step_id: str,
    output_index: int,
    effect_type: str,
    name: str,
) -> tuple[str, str]:
    """
    Stable (stable_id, object_id) pair for an effect produced by a plan step.
    Same proposal + step + output always yields the same pair.
    """
    key_obj = {
        "proposal_id": proposal_id,
        "step_id": step_id,
        "output_index": output_index,
        "effect_type": effect_type,
        "name": name,
    }
    digest = fingerprint(key_obj)
    return "eff_" + digest, "obj_" + fingerprint({"effect": digest})
