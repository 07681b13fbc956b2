"""
lifeos-ingestion distribution import namespace.

Re-exports the ingestion entry points of `rna_ingestion` and carries the
distribution version.
"""

from importlib.metadata import PackageNotFoundError, version

# src/lifeos/__init__.py
from rna_ingestion import *  # noqa: F401,F403

try:
    from ._version import __version__  # written at build time
except ImportError:  # pragma: no cover - editable/local checkouts have no _version module
    try:
        __version__ = version("lifeos-ingestion")
    except PackageNotFoundError:
        __version__ = "0+unknown"
