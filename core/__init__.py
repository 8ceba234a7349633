"""
Comparables Engine - Core Business Logic

This module provides the comparable property pipeline:
1. Import (row validation)
2. Deduplication (canonical keys)
3. Search (filters, radius, density)
4. Normalization (ordered price adjustments)
5. Similarity Scoring (weighted cosine, KNN)
6. Quality Tiering (A / B / C)
7. Export (CSV, JSON, GeoJSON)
"""

from .comparables import (
    Comparable,
    SubjectRef,
    Source,
    Quality,
    NormalizeRules,
    ScoreParams,
    CompSet,
    NormalizationEngine,
    SimilarityScorer,
    Deduplicator,
    QualityClassifier,
    SearchOrchestrator,
    SearchFilters,
    CompSetRepository,
    AuditTrail,
)

__all__ = [
    # Data model
    "Comparable",
    "SubjectRef",
    "Source",
    "Quality",
    "NormalizeRules",
    "ScoreParams",
    "CompSet",
    # Engine stages
    "NormalizationEngine",
    "SimilarityScorer",
    "Deduplicator",
    "QualityClassifier",
    "SearchOrchestrator",
    "SearchFilters",
    # Persistence
    "CompSetRepository",
    "AuditTrail",
]
