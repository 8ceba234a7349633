"""
Quality Classifier for the Comparables Engine

Fixed decision table, evaluated in order:
- A: age <= 6 months, distance <= 500 m, complete attributes
- B: age <= 12 months, distance <= 1000 m
- C: otherwise

A comparable with unknown distance cannot reach A or B.
"""

from datetime import date
from typing import List

from .models import Comparable, Quality


# =============================================================================
# Configuration Constants
# =============================================================================

TIER_A_MAX_MONTHS = 6
TIER_A_MAX_DISTANCE_M = 500
TIER_B_MAX_MONTHS = 12
TIER_B_MAX_DISTANCE_M = 1000

DAYS_PER_MONTH = 30


class QualityClassifier:
    """Assigns a reliability tier from recency, proximity and completeness."""

    def __init__(self, reference_date: date = None):
        """
        Initialize classifier with reference date.

        Args:
            reference_date: Date to calculate age from (default: today)
        """
        self._reference_date = reference_date or date.today()

    def months_old(self, comp: Comparable) -> float:
        return (self._reference_date - comp.date).days / DAYS_PER_MONTH

    def classify(self, comp: Comparable) -> Quality:
        months = self.months_old(comp)
        distance = comp.distance

        if (
            months <= TIER_A_MAX_MONTHS
            and distance is not None
            and distance <= TIER_A_MAX_DISTANCE_M
            and comp.is_complete
        ):
            return Quality.A

        if (
            months <= TIER_B_MAX_MONTHS
            and distance is not None
            and distance <= TIER_B_MAX_DISTANCE_M
        ):
            return Quality.B

        return Quality.C

    def classify_all(self, comps: List[Comparable]) -> List[Comparable]:
        """Annotate each comparable with its quality tier."""
        return [comp.with_computed(quality=self.classify(comp)) for comp in comps]
