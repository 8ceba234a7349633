"""
Search Orchestrator for the Comparables Engine

Pipeline order:
1. VALIDATE - Reject structurally invalid filters
2. FILTER - Attribute, date and price predicates
3. LOCATE - Distance to the search center, radius filter
4. ANNOTATE - ppsqm, quality, optional normalization and scoring
5. COUNT - Total and density over the filtered set
6. SORT - Stable sort on an enumerated field
7. PAGINATE - Page slice
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from .geo import haversine_m
from .models import (
    DEFAULT_DIST_CAP_M,
    DEFAULT_KNN_K,
    Comparable,
    ConfigurationError,
    NormalizeRules,
    ScoreParams,
    Source,
    SubjectRef,
)
from .normalize import NormalizationEngine
from .quality import QualityClassifier
from .similarity import SimilarityScorer


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Constants
# =============================================================================

DEFAULT_SORT = "distance-asc"
DEFAULT_PAGE_SIZE = 25

_QUALITY_RANK = {"A": 0, "B": 1, "C": 2}


class SortField(Enum):
    """Fields a search can be ordered by."""

    DATE = "date"
    PRICE = "price"
    SQM = "sqm"
    PPSQM = "ppsqm"
    ROOMS = "rooms"
    BATHS = "baths"
    FLOOR = "floor"
    DISTANCE = "distance"
    SIMILARITY = "similarity"
    WEIGHT = "weight"
    ADJ_TOTAL = "adj_total"
    QUALITY = "quality"


SORT_ACCESSORS: Dict[SortField, Callable[[Comparable], Any]] = {
    SortField.DATE: lambda c: c.date,
    SortField.PRICE: lambda c: c.price,
    SortField.SQM: lambda c: c.sqm,
    SortField.PPSQM: lambda c: c.ppsqm if c.ppsqm is not None else c.price_per_sqm,
    SortField.ROOMS: lambda c: c.rooms,
    SortField.BATHS: lambda c: c.baths,
    SortField.FLOOR: lambda c: c.floor,
    SortField.DISTANCE: lambda c: c.distance,
    SortField.SIMILARITY: lambda c: c.similarity,
    SortField.WEIGHT: lambda c: c.weight,
    SortField.ADJ_TOTAL: lambda c: c.adj_total,
    SortField.QUALITY: lambda c: _QUALITY_RANK[c.quality.value] if c.quality else None,
}


def parse_sort(sort: str) -> tuple[SortField, bool]:
    """
    Parse a "field-asc|desc" sort key.

    Returns:
        Tuple of (field, descending)

    Raises:
        ConfigurationError: If the field or direction is unknown
    """
    field_name, _, direction = sort.strip().rpartition("-")
    if not field_name:
        field_name, direction = direction, "asc"
    try:
        sort_field = SortField(field_name)
    except ValueError:
        raise ConfigurationError(f"Unknown sort field: {field_name}")
    if direction not in ("asc", "desc"):
        raise ConfigurationError(f"Unknown sort direction: {direction}")
    return sort_field, direction == "desc"


def sort_comparables(comps: List[Comparable], sort: str) -> List[Comparable]:
    """
    Stable sort; comparables with an unknown value go last in either direction.
    """
    sort_field, descending = parse_sort(sort)
    accessor = SORT_ACCESSORS[sort_field]

    known = [c for c in comps if accessor(c) is not None]
    unknown = [c for c in comps if accessor(c) is None]

    return sorted(known, key=accessor, reverse=descending) + unknown


@dataclass
class SearchFilters:
    """Search parameters for comparables. Unset filters are not applied."""

    # Geography
    lat: Optional[float] = None
    lng: Optional[float] = None
    radius_km: Optional[float] = None

    # Transaction date range (inclusive)
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    # Numeric ranges
    sqm_min: Optional[float] = None
    sqm_max: Optional[float] = None
    rooms_min: Optional[int] = None
    baths_min: Optional[int] = None
    floor_min: Optional[int] = None
    floor_max: Optional[int] = None
    terrace_min: Optional[float] = None
    price_min: Optional[float] = None
    price_max: Optional[float] = None

    # Flags and enums
    has_elevator: Optional[bool] = None
    parking: Optional[bool] = None
    condition: Optional[str] = None
    source: Optional[Source] = None

    # Ordering and paging
    sort: str = DEFAULT_SORT
    page: int = 0
    size: int = DEFAULT_PAGE_SIZE

    @property
    def has_center(self) -> bool:
        return self.lat is not None and self.lng is not None

    def validate(self) -> None:
        """
        Reject structurally invalid filters.

        Raises:
            ConfigurationError: On a radius without a center, a half-given
                center, negative radius, bad paging or unknown sort
        """
        if (self.lat is None) != (self.lng is None):
            raise ConfigurationError("lat and lng must be given together")
        if self.radius_km is not None and self.radius_km < 0:
            raise ConfigurationError("radius_km cannot be negative")
        if self.radius_km and not self.has_center:
            raise ConfigurationError("radius_km requires a search center (lat and lng)")
        if self.page < 0:
            raise ConfigurationError("page cannot be negative")
        if self.size <= 0:
            raise ConfigurationError("size must be positive")
        parse_sort(self.sort)

    def matches(self, comp: Comparable) -> bool:
        """Whether a comparable passes every attribute predicate."""
        if self.date_from and comp.date < self.date_from:
            return False
        if self.date_to and comp.date > self.date_to:
            return False

        if self.sqm_min is not None and comp.sqm < self.sqm_min:
            return False
        if self.sqm_max is not None and comp.sqm > self.sqm_max:
            return False
        if self.price_min is not None and comp.price < self.price_min:
            return False
        if self.price_max is not None and comp.price > self.price_max:
            return False

        # Unknown attributes cannot satisfy a minimum or range
        if self.rooms_min is not None and (comp.rooms is None or comp.rooms < self.rooms_min):
            return False
        if self.baths_min is not None and (comp.baths is None or comp.baths < self.baths_min):
            return False
        if self.floor_min is not None and (comp.floor is None or comp.floor < self.floor_min):
            return False
        if self.floor_max is not None and (comp.floor is None or comp.floor > self.floor_max):
            return False
        if self.terrace_min is not None and (comp.terrace is None or comp.terrace < self.terrace_min):
            return False

        if self.has_elevator is not None and comp.elevator != self.has_elevator:
            return False
        if self.parking is not None and comp.parking != self.parking:
            return False
        if self.condition and comp.condition != self.condition:
            return False
        if self.source and comp.source != self.source:
            return False

        return True


@dataclass
class SearchResult:
    """A page of ranked comparables plus pre-pagination aggregates."""

    items: List[Comparable] = field(default_factory=list)
    total: int = 0
    density: float = 0.0
    page: int = 0
    size: int = DEFAULT_PAGE_SIZE

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "items": [c.to_dict() for c in self.items],
            "total": self.total,
            "density": self.density,
            "page": self.page,
            "size": self.size,
        }


class SearchOrchestrator:
    """
    Composes filtering, distance, annotation, sorting and pagination.

    Works over an already-materialised collection; fetching it is the
    caller's responsibility.
    """

    def __init__(
        self,
        comparables: Sequence[Comparable],
        reference_date: date = None,
        default_k: int = DEFAULT_KNN_K,
        default_dist_cap_m: float = DEFAULT_DIST_CAP_M,
    ):
        """
        Initialize orchestrator.

        Args:
            comparables: Full comparable collection
            reference_date: Reference date for age calculations (default: today)
            default_k: KNN k used when ScoreParams leaves it unset
            default_dist_cap_m: KNN distance cap used when ScoreParams leaves it unset
        """
        self._comparables = list(comparables)
        self._reference_date = reference_date or date.today()
        self._normalizer = NormalizationEngine(reference_date=self._reference_date)
        self._classifier = QualityClassifier(reference_date=self._reference_date)
        self._scorer = SimilarityScorer(default_k=default_k, default_dist_cap_m=default_dist_cap_m)

    def get(self, comp_id: str) -> Optional[Comparable]:
        """Look up a comparable by id."""
        for comp in self._comparables:
            if comp.id == comp_id:
                return comp
        return None

    def search(
        self,
        filters: SearchFilters,
        subject: Optional[SubjectRef] = None,
        rules: Optional[NormalizeRules] = None,
        score_params: Optional[ScoreParams] = None,
    ) -> SearchResult:
        """
        Run the full search pipeline.

        Args:
            filters: Search filters, sort and paging
            subject: Subject for normalization and scoring (default: a
                subject at the search center)
            rules: Normalize when given
            score_params: Score when given

        Returns:
            SearchResult with the requested page, total and density

        Raises:
            ConfigurationError: If the filters are structurally invalid
        """
        # Step 1: Validate
        filters.validate()

        # Step 2: Attribute predicates
        candidates = [c.raw() for c in self._comparables if filters.matches(c)]

        # Step 3: Distance and radius
        if filters.has_center:
            candidates = self._locate(candidates, filters)

        # Step 4: Annotate
        candidates = [c.with_computed(ppsqm=c.price_per_sqm) for c in candidates]
        candidates = self._classifier.classify_all(candidates)

        if subject is None and filters.has_center:
            subject = SubjectRef(lat=filters.lat, lng=filters.lng)

        if rules is not None:
            candidates = self._normalizer.normalize_all(candidates, rules, subject)
        if score_params is not None:
            candidates = self._scorer.score(subject or SubjectRef(), candidates, score_params)

        # Step 5: Aggregates over the filtered set
        total = len(candidates)
        density = self._density(total, filters.radius_km)

        # Step 6: Sort
        ordered = sort_comparables(candidates, filters.sort)

        # Step 7: Paginate
        start = filters.page * filters.size
        items = ordered[start:start + filters.size]

        logger.debug(
            "Search matched %d comparables (page %d, %d items)",
            total,
            filters.page,
            len(items),
        )

        return SearchResult(
            items=items,
            total=total,
            density=density,
            page=filters.page,
            size=filters.size,
        )

    def _locate(
        self,
        candidates: List[Comparable],
        filters: SearchFilters,
    ) -> List[Comparable]:
        """Annotate distance to the center and apply the radius when set."""
        located = []
        for comp in candidates:
            distance = haversine_m(filters.lat, filters.lng, comp.lat, comp.lng)
            if filters.radius_km is not None and distance > filters.radius_km * 1000:
                continue
            located.append(comp.with_computed(distance=round(distance, 1)))
        return located

    @staticmethod
    def _density(total: int, radius_km: Optional[float]) -> float:
        """Comparables per km^2 of the search circle, or the total without one."""
        if not radius_km:
            return float(total)
        return total / (math.pi * radius_km ** 2)
