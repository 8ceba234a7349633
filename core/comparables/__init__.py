"""
Comparables Engine v1.0

Scoring and normalization of comparable property transactions backing the
comparables valuation feature: distance, price normalization, similarity
(cosine and weighted KNN), deduplication, quality tiering and search.

All stages are pure and synchronous over in-memory collections.
"""

from .models import (
    ConfigurationError,
    Source,
    Quality,
    SqmRule,
    ScoreMethod,
    DedupStrategy,
    ExportFormat,
    SubjectRef,
    Comparable,
    NormalizeRules,
    ScoreParams,
    DedupGroup,
    DedupResult,
    CompSet,
    ImportRowError,
    ImportResult,
    ppsqm,
)
from .geo import haversine_m, distance_to
from .normalize import NormalizationEngine
from .similarity import SimilarityScorer, cosine_similarity, knn_weights
from .dedup import Deduplicator
from .quality import QualityClassifier
from .search import SearchFilters, SearchResult, SearchOrchestrator, SortField
from .stats import detect_outliers, group_by_cadastre, cluster_by_grid, summarize
from .importer import import_rows, import_csv, import_json
from .export import export_csv, export_json, export_geojson, export_comparables
from .audit import AuditAction, AuditEvent, AuditTrail
from .compsets import CompSetRepository

__all__ = [
    # Models
    "ConfigurationError",
    "Source",
    "Quality",
    "SqmRule",
    "ScoreMethod",
    "DedupStrategy",
    "ExportFormat",
    "SubjectRef",
    "Comparable",
    "NormalizeRules",
    "ScoreParams",
    "DedupGroup",
    "DedupResult",
    "CompSet",
    "ImportRowError",
    "ImportResult",
    "ppsqm",
    # Engine
    "haversine_m",
    "distance_to",
    "NormalizationEngine",
    "SimilarityScorer",
    "cosine_similarity",
    "knn_weights",
    "Deduplicator",
    "QualityClassifier",
    "SearchFilters",
    "SearchResult",
    "SearchOrchestrator",
    "SortField",
    # Statistics
    "detect_outliers",
    "group_by_cadastre",
    "cluster_by_grid",
    "summarize",
    # Import / Export
    "import_rows",
    "import_csv",
    "import_json",
    "export_csv",
    "export_json",
    "export_geojson",
    "export_comparables",
    # Comp sets and audit
    "AuditAction",
    "AuditEvent",
    "AuditTrail",
    "CompSetRepository",
]

__version__ = "1.0"
