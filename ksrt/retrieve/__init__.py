"""
Retrieval for KSRT.

Fetches a registered schema with all its references and writes it back
out as a local file tree.
"""

from .retriever import RegistryRetriever, RetrievalNode, RetrievalResult
from .materialize import assign_local_paths, materialize, render_schema

__all__ = [
    "RegistryRetriever",
    "RetrievalNode",
    "RetrievalResult",
    "assign_local_paths",
    "materialize",
    "render_schema",
]
