"""
Retrieval — vector index, similarity search, and citation models.

This module hides the vector store behind a small interface so that the
conversation layer never needs to know which index backs retrieval.

Public surface
--------------
- :class:`SemanticRetriever` — embeds a query and searches the index.
- :class:`VectorStoreBase` — abstract backend.
- :class:`InMemoryVectorStore` — default cosine-similarity backend.
- :class:`Citation`, :class:`RetrievalResult` — data models.
"""

from codebase_rag.retrieval.base import VectorStoreBase
from codebase_rag.retrieval.memory_store import InMemoryVectorStore
from codebase_rag.retrieval.models import Citation, RetrievalResult
from codebase_rag.retrieval.retriever import SemanticRetriever

__all__ = [
    "Citation",
    "InMemoryVectorStore",
    "RetrievalResult",
    "SemanticRetriever",
    "VectorStoreBase",
]
