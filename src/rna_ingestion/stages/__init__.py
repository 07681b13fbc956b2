# rna_ingestion/stages/__init__.py
from rna_ingestion.stages.commit import commit_stage, post_guard_commit
from rna_ingestion.stages.execution import execution_stage
from rna_ingestion.stages.intake import intake_stage
from rna_ingestion.stages.planning import planning_stage
from rna_ingestion.stages.revalidation import post_guard_revalidation, revalidation_stage
from rna_ingestion.stages.validation import validation_stage

__all__ = [
    "commit_stage",
    "execution_stage",
    "intake_stage",
    "planning_stage",
    "post_guard_commit",
    "post_guard_revalidation",
    "revalidation_stage",
    "validation_stage",
]
