"""
Set statistics for the Comparables Engine

- Outlier detection by population z-score
- Grouping by cadastral reference
- Grid clustering for map display
- Totals over a comparable set
"""

import math
from dataclasses import dataclass
from typing import Dict, List

from .models import Comparable, ConfigurationError
from .search import SORT_ACCESSORS, SortField


# =============================================================================
# Configuration Constants
# =============================================================================

DEFAULT_OUTLIER_THRESHOLD = 2.0
MIN_VALUES_FOR_OUTLIERS = 3

# Grid cell size in degrees (~110 m of latitude)
DEFAULT_GRID_SIZE = 0.001


def z_score(value: float, mean: float, std_dev: float) -> float:
    return (value - mean) / std_dev if std_dev > 0 else 0.0


def detect_outliers(
    comps: List[Comparable],
    field: SortField = SortField.PPSQM,
    threshold: float = DEFAULT_OUTLIER_THRESHOLD,
) -> List[str]:
    """
    Ids of comparables whose value lies more than `threshold` standard
    deviations from the mean.

    Comparables with an unknown value are ignored; fewer than three known
    values never yields outliers.
    """
    if field == SortField.DATE:
        raise ConfigurationError("Outlier detection needs a numeric field")

    accessor = SORT_ACCESSORS[field]
    valued = [(c.id, accessor(c)) for c in comps if accessor(c) is not None]
    if len(valued) < MIN_VALUES_FOR_OUTLIERS:
        return []

    values = [float(v) for _, v in valued]
    mean = sum(values) / len(values)
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    std_dev = math.sqrt(variance)

    return [
        comp_id
        for comp_id, value in valued
        if abs(z_score(float(value), mean, std_dev)) > threshold
    ]


def group_by_cadastre(comps: List[Comparable]) -> Dict[str, List[Comparable]]:
    """Group comparables by cadastral reference; comparables without one are skipped."""
    groups: Dict[str, List[Comparable]] = {}
    for comp in comps:
        if comp.cadastral_ref:
            groups.setdefault(comp.cadastral_ref, []).append(comp)
    return groups


@dataclass
class MapCluster:
    """Comparables sharing one grid cell."""

    lat: float
    lng: float
    comps: List[Comparable]

    @property
    def count(self) -> int:
        return len(self.comps)

    @property
    def avg_price(self) -> float:
        return sum(c.price for c in self.comps) / len(self.comps)

    @property
    def avg_ppsqm(self) -> float:
        return sum(c.price_per_sqm for c in self.comps) / len(self.comps)


def cluster_by_grid(
    comps: List[Comparable],
    grid_size: float = DEFAULT_GRID_SIZE,
) -> List[MapCluster]:
    """Bucket comparables into grid cells anchored at the cell's south-west corner."""
    if grid_size <= 0:
        raise ValueError("grid_size must be positive")

    cells: Dict[tuple[int, int], List[Comparable]] = {}
    for comp in comps:
        cell = (math.floor(comp.lat / grid_size), math.floor(comp.lng / grid_size))
        cells.setdefault(cell, []).append(comp)

    return [
        MapCluster(lat=row * grid_size, lng=col * grid_size, comps=members)
        for (row, col), members in cells.items()
    ]


@dataclass
class SetSummary:
    """Totals shown beneath a comparables table."""

    count: int
    total_price: float
    total_adjusted: float
    total_weight: float
    avg_ppsqm: float

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "count": self.count,
            "total_price": self.total_price,
            "total_adjusted": self.total_adjusted,
            "total_weight": self.total_weight,
            "avg_ppsqm": self.avg_ppsqm,
        }


def summarize(comps: List[Comparable]) -> SetSummary:
    """
    Totals over a set. Unadjusted comparables contribute their raw price to
    the adjusted total; unweighted ones contribute nothing to the weight.
    """
    if not comps:
        return SetSummary(count=0, total_price=0.0, total_adjusted=0.0, total_weight=0.0, avg_ppsqm=0.0)

    return SetSummary(
        count=len(comps),
        total_price=sum(c.price for c in comps),
        total_adjusted=sum(c.adj_total if c.adj_total is not None else c.price for c in comps),
        total_weight=sum(c.weight or 0.0 for c in comps),
        avg_ppsqm=sum(c.price_per_sqm for c in comps) / len(comps),
    )
