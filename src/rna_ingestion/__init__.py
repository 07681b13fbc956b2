# rna_ingestion/__init__.py
"""Staged proposal ingestion: guards, trust promotion and the commit outbox."""
from rna_ingestion.engine import (
    INGESTION_SPINE,
    configure_logging,
    first_halt,
    halting_errors,
    new_envelope,
    run_ingestion,
)

__all__ = [
    "INGESTION_SPINE",
    "configure_logging",
    "first_halt",
    "halting_errors",
    "new_envelope",
    "run_ingestion",
]
