# rna_ingestion/result.py
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, Literal, TypeVar, Union

from rna_ingestion.contracts import Envelope, StageError

T = TypeVar("T")
E = TypeVar("E")
U = TypeVar("U")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    ok: Literal[True] = True

    def and_then(self, fn: Callable[[T], "Result[U, Any]"]) -> "Result[U, Any]":
        return fn(self.value)

    def map(self, fn: Callable[[T], U]) -> "Ok[U]":
        return Ok(fn(self.value))


@dataclass(frozen=True)
class Err(Generic[E]):
    error: E
    ok: Literal[False] = False

    def and_then(self, fn: Callable[[Any], Any]) -> "Err[E]":
        return self

    def map(self, fn: Callable[[Any], Any]) -> "Err[E]":
        return self


Result = Union[Ok[T], Err[E]]


@dataclass(frozen=True)
class StageLeft:
    """Error side of a stage chain: the envelope as it stands plus the error that stopped it."""

    envelope: Envelope
    error: StageError


__all__ = ["Ok", "Err", "Result", "StageLeft"]
