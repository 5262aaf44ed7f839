"""
kb_search - hybrid lexical + semantic retrieval over a document collection.

A TF-IDF inverted index and an ANN vector index are queried in parallel and
their rankings merged with weighted Reciprocal Rank Fusion. Embeddings come
from Azure OpenAI, OpenAI or a local TF-IDF fallback, chosen once at startup.

Example usage:
    >>> from kb_search import Document, HybridSearchEngine
    >>> engine = HybridSearchEngine()
    >>> _ = engine.index([Document(id="a", title="Loops", content="create microflow loop")])
    >>> [hit.document_id for hit in engine.search("loop")]
    ['a']
"""

from .config import Settings
from .errors import (
    ConfigurationError,
    IndexNotReadyError,
    KnowledgeSearchError,
    OperationCancelledError,
    ProviderUnavailableError,
    ValidationError,
)
from .models import Document, load_documents, make_document_id
from .retry import Deadline, call_with_retry
from .search import (
    FusionWeights,
    HybridSearchEngine,
    IndexReport,
    LexicalIndex,
    SearchResult,
    fuse,
)
from .vector import VectorIndexClient

__all__ = [
    # Configuration
    "Settings",
    # Errors
    "ConfigurationError",
    "IndexNotReadyError",
    "KnowledgeSearchError",
    "OperationCancelledError",
    "ProviderUnavailableError",
    "ValidationError",
    # Documents
    "Document",
    "load_documents",
    "make_document_id",
    # Retry
    "Deadline",
    "call_with_retry",
    # Search
    "FusionWeights",
    "HybridSearchEngine",
    "IndexReport",
    "LexicalIndex",
    "SearchResult",
    "fuse",
    "VectorIndexClient",
]
