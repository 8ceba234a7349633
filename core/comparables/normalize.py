"""
Normalization Engine for the Comparables Engine

Derives an adjusted price for a comparable relative to a subject property
by applying the configured rule set in a fixed order:

1. Area (LINEAR or SQRT)
2. Condition multiplier
3. Floor bonus
4. Elevator multiplier
5. Terrace value
6. Parking value
7. Age depreciation
8. Micro-location bonus

Each step leaves the running price unchanged when its inputs are absent.
"""

import logging
import math
from dataclasses import dataclass
from datetime import date
from typing import Callable, List, Optional

from .geo import distance_to
from .models import Comparable, NormalizeRules, SqmRule, SubjectRef, ppsqm


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Constants
# =============================================================================

# Maximum micro-location bonus at zero distance
MICRO_LOCATION_MAX_BONUS = 0.05

DAYS_PER_YEAR = 365


@dataclass(frozen=True)
class AdjustmentContext:
    """Inputs shared by every adjustment step."""

    comp: Comparable
    rules: NormalizeRules
    subject: SubjectRef
    reference_date: date


Adjustment = Callable[[float, AdjustmentContext], float]


# =============================================================================
# Adjustment Steps
# =============================================================================


def adjust_area(price: float, ctx: AdjustmentContext) -> float:
    """Price the living area difference between subject and comparable."""
    subject_sqm = ctx.subject.sqm
    comp = ctx.comp
    if not subject_sqm or not comp.sqm or comp.sqm <= 0:
        return price

    if ctx.rules.sqm_rule == SqmRule.LINEAR:
        return price + (subject_sqm - comp.sqm) * ppsqm(comp.price, comp.sqm)

    return comp.price * math.sqrt(subject_sqm / comp.sqm)


def adjust_condition(price: float, ctx: AdjustmentContext) -> float:
    condition = ctx.comp.condition
    if not condition or condition not in ctx.rules.state_factors:
        return price
    return price * ctx.rules.state_factors[condition]


def adjust_floor(price: float, ctx: AdjustmentContext) -> float:
    if ctx.comp.floor is None or not ctx.rules.floor_bonus:
        return price
    return price + ctx.comp.floor * ctx.rules.floor_bonus


def adjust_elevator(price: float, ctx: AdjustmentContext) -> float:
    if not ctx.comp.elevator or not ctx.rules.elevator_factor:
        return price
    return price * ctx.rules.elevator_factor


def adjust_terrace(price: float, ctx: AdjustmentContext) -> float:
    if not ctx.comp.terrace or not ctx.rules.terrace_ppsqm:
        return price
    return price + ctx.comp.terrace * ctx.rules.terrace_ppsqm


def adjust_parking(price: float, ctx: AdjustmentContext) -> float:
    if not ctx.comp.parking or not ctx.rules.parking_value:
        return price
    return price + ctx.rules.parking_value


def adjust_age(price: float, ctx: AdjustmentContext) -> float:
    """Depreciate linearly by transaction age in years (future dates count as 0)."""
    pct = ctx.rules.age_depreciation_pct
    if not pct or ctx.comp.date is None:
        return price
    age_years = max(0.0, (ctx.reference_date - ctx.comp.date).days / DAYS_PER_YEAR)
    return price * (1 - (pct / 100) * age_years)


def adjust_micro_location(price: float, ctx: AdjustmentContext) -> float:
    """Bonus decaying linearly from 5% at the subject to 0 at the radius."""
    radius = ctx.rules.micro_loc_bonus_m
    if not radius or not ctx.subject.has_coordinates:
        return price

    distance = ctx.comp.distance
    if distance is None:
        distance = distance_to(ctx.subject, ctx.comp)
    if distance is None or distance >= radius:
        return price

    return price * (1 + (radius - distance) / radius * MICRO_LOCATION_MAX_BONUS)


ADJUSTMENT_PIPELINE: tuple[Adjustment, ...] = (
    adjust_area,
    adjust_condition,
    adjust_floor,
    adjust_elevator,
    adjust_terrace,
    adjust_parking,
    adjust_age,
    adjust_micro_location,
)


# =============================================================================
# Engine
# =============================================================================


class NormalizationEngine:
    """
    Applies a NormalizeRules set to comparables.

    Deterministic for a given (comparable, rules, subject, reference_date).
    """

    def __init__(self, reference_date: date = None):
        """
        Initialize engine with reference date.

        Args:
            reference_date: Date to calculate transaction age from (default: today)
        """
        self._reference_date = reference_date or date.today()

    def normalize(
        self,
        comp: Comparable,
        rules: NormalizeRules,
        subject: Optional[SubjectRef] = None,
    ) -> float:
        """
        Calculate the adjusted price of a comparable.

        A running price that an adjustment drives to zero or below is clamped
        to rules.price_floor.

        Args:
            comp: Comparable transaction
            rules: Adjustment rules
            subject: Subject property (unknown fields skip their steps)

        Returns:
            Adjusted price
        """
        ctx = AdjustmentContext(
            comp=comp,
            rules=rules,
            subject=subject or SubjectRef(),
            reference_date=self._reference_date,
        )

        price = float(comp.price)
        for step in ADJUSTMENT_PIPELINE:
            price = step(price, ctx)
            if price <= 0 and price != rules.price_floor:
                logger.warning(
                    "Adjustment %s drove comparable %s to %.2f; clamping to %.2f",
                    step.__name__,
                    comp.id,
                    price,
                    rules.price_floor,
                )
                price = rules.price_floor

        return price

    def normalize_all(
        self,
        comps: List[Comparable],
        rules: NormalizeRules,
        subject: Optional[SubjectRef] = None,
    ) -> List[Comparable]:
        """
        Annotate each comparable with its adjusted total and ppsqm.

        Returns:
            New Comparable instances in input order
        """
        return [
            comp.with_computed(
                adj_total=round(self.normalize(comp, rules, subject), 2),
                ppsqm=comp.price_per_sqm,
            )
            for comp in comps
        ]
