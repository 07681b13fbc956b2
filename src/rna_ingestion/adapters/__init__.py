# rna_ingestion/adapters/__init__.py
"""Boundary collaborators: id minting, snapshots and outbox application."""
