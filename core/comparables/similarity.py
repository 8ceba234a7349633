"""
Similarity Scorer for the Comparables Engine

Two methods:
- COSINE: weighted cosine similarity of per-attribute contribution terms
- KNN: cosine similarity ranked within a distance cap, top-k weights
  normalised to sum to 1

Contribution terms (each in [0, 1]):
- location: max(0, 1 - distance / 5000 m)
- sqm: 1 - |a - b| / max(a, b)
- rooms, baths, condition: 1 when equal, 0.5 otherwise

A term is only included when both sides know the attribute, so a missing
attribute is neither a penalty nor a bonus.
"""

import logging
import math
from typing import Dict, List, Mapping, Optional, Union

from .models import (
    DEFAULT_DIST_CAP_M,
    DEFAULT_KNN_K,
    DEFAULT_WEIGHTS,
    Comparable,
    ConfigurationError,
    ScoreMethod,
    ScoreParams,
    SubjectRef,
    is_count,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Constants
# =============================================================================

# Distance at which the location term reaches zero (meters)
LOCATION_DECAY_M = 5000.0

# Term value for a known but unequal categorical attribute
MISMATCH_SCORE = 0.5


def _contribution_terms(
    a: Union[SubjectRef, Comparable],
    b: Comparable,
) -> Dict[str, float]:
    """Build the contribution term for every attribute both sides know."""
    terms: Dict[str, float] = {}

    if b.distance is not None:
        terms["location"] = max(0.0, 1 - b.distance / LOCATION_DECAY_M)

    if a.sqm and b.sqm:
        terms["sqm"] = 1 - abs(a.sqm - b.sqm) / max(a.sqm, b.sqm)

    if a.rooms is not None and b.rooms is not None:
        terms["rooms"] = 1.0 if a.rooms == b.rooms else MISMATCH_SCORE

    if a.baths is not None and b.baths is not None:
        terms["baths"] = 1.0 if a.baths == b.baths else MISMATCH_SCORE

    if a.condition and b.condition:
        terms["condition"] = 1.0 if a.condition == b.condition else MISMATCH_SCORE

    return terms


def cosine_similarity(
    a: Union[SubjectRef, Comparable],
    b: Comparable,
    weights: Optional[Mapping[str, float]] = None,
) -> float:
    """
    Weighted cosine similarity between a subject (or comparable) and a comparable.

    Args:
        a: Subject reference or another comparable
        b: Comparable, with distance annotated for the location term
        weights: Feature weights overriding DEFAULT_WEIGHTS

    Returns:
        Similarity, 0 when no attribute is comparable
    """
    w = {**DEFAULT_WEIGHTS, **(weights or {})}

    dot_product = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for key, score in _contribution_terms(a, b).items():
        squared = score * score
        dot_product += squared * w[key]
        norm_a += squared
        norm_b += squared

    if norm_a <= 0 or norm_b <= 0:
        return 0.0
    return dot_product / (math.sqrt(norm_a) * math.sqrt(norm_b))


def knn_weights(
    subject: SubjectRef,
    comps: List[Comparable],
    k: int,
    dist_cap_m: float = DEFAULT_DIST_CAP_M,
    weights: Optional[Mapping[str, float]] = None,
) -> Dict[str, float]:
    """
    Weighted k-nearest-neighbour selection.

    Candidates beyond dist_cap_m are dropped (unknown distance is never
    beyond the cap), the rest are ranked by similarity descending with ties
    in input order, and the top k receive similarity / sum(similarity).
    k larger than the candidate count reduces to the candidate count.

    Returns:
        Mapping of comparable id to weight for selected candidates only
    """
    if not is_count(k):
        raise ConfigurationError("k must be a positive integer")

    candidates = [
        (comp.id, cosine_similarity(subject, comp, weights))
        for comp in comps
        if comp.distance is None or comp.distance <= dist_cap_m
    ]
    ranked = sorted(candidates, key=lambda c: c[1], reverse=True)
    top_k = ranked[:k]

    total_similarity = sum(similarity for _, similarity in top_k)

    return {
        comp_id: (similarity / total_similarity if total_similarity > 0 else 0.0)
        for comp_id, similarity in top_k
    }


class SimilarityScorer:
    """Annotates comparables with similarity and KNN weight."""

    def __init__(self, default_k: int = DEFAULT_KNN_K, default_dist_cap_m: float = DEFAULT_DIST_CAP_M):
        self._default_k = default_k
        self._default_dist_cap_m = default_dist_cap_m

    def score(
        self,
        subject: SubjectRef,
        comps: List[Comparable],
        params: ScoreParams,
    ) -> List[Comparable]:
        """
        Score comparables against a subject.

        COSINE sets similarity on every comparable. KNN also sets weight on
        the selected neighbours; others keep weight None (not considered).

        Returns:
            New Comparable instances in input order
        """
        weights = params.resolved_weights
        scored = [
            comp.with_computed(similarity=cosine_similarity(subject, comp, weights))
            for comp in comps
        ]

        if params.method == ScoreMethod.COSINE:
            return [c.with_computed(weight=None) for c in scored]

        k = params.k if params.k is not None else self._default_k
        dist_cap_m = params.dist_cap_m if params.dist_cap_m is not None else self._default_dist_cap_m
        selected = knn_weights(subject, comps, k=k, dist_cap_m=dist_cap_m, weights=weights)

        logger.debug("KNN selected %d of %d comparables (k=%d)", len(selected), len(comps), k)

        return [c.with_computed(weight=selected.get(c.id)) for c in scored]
