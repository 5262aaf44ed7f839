"""Lexical index, metadata filters, rank fusion and the hybrid query engine."""

from .analytics import AnalyticsSummary, QueryAnalytics, QueryRecord
from .filters import (
    FILTERABLE_FIELDS,
    MetadataFilter,
    MetadataFilterParseError,
    build_vector_filter,
    coerce_filters,
    parse_metadata_filters,
    supported_filter_syntax,
)
from .fusion import (
    DEFAULT_RRF_K,
    FusionResult,
    FusionWeights,
    MatchedVia,
    RankedItem,
    deduplicate,
    fuse,
)
from .hybrid import EngineStats, HybridSearchEngine, IndexReport, SearchResult, expand_query
from .lexical import LexicalHit, LexicalIndex, LexicalIndexStats

__all__ = [
    "AnalyticsSummary",
    "QueryAnalytics",
    "QueryRecord",
    "FILTERABLE_FIELDS",
    "MetadataFilter",
    "MetadataFilterParseError",
    "build_vector_filter",
    "coerce_filters",
    "parse_metadata_filters",
    "supported_filter_syntax",
    "DEFAULT_RRF_K",
    "FusionResult",
    "FusionWeights",
    "MatchedVia",
    "RankedItem",
    "deduplicate",
    "fuse",
    "EngineStats",
    "HybridSearchEngine",
    "IndexReport",
    "SearchResult",
    "expand_query",
    "LexicalHit",
    "LexicalIndex",
    "LexicalIndexStats",
]
