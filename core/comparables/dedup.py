"""
Deduplicator for the Comparables Engine

Groups comparables that likely describe the same underlying transaction.

Strategies:
- HASH: street token, street number, floor, bucketed sqm, bucketed date
- PORTAL_REF: external portal reference, falling back to HASH
- CADASTRE: cadastral reference, falling back to HASH

Within each group the first comparable (input order) is kept; the rest are
reported as duplicates.
"""

import logging
import re
from datetime import date
from typing import Dict, List

from .models import (
    Comparable,
    ConfigurationError,
    DedupGroup,
    DedupResult,
    DedupStrategy,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Constants
# =============================================================================

DEFAULT_SQM_MARGIN = 5
DEFAULT_WINDOW_DAYS = 30

_EPOCH = date(1970, 1, 1)
_NUMBER_RE = re.compile(r"\d+")
_WHITESPACE_RE = re.compile(r"\s+")


def street_token(address: str) -> str:
    """Normalised street name: text before the first comma, lower-cased."""
    street = address.split(",")[0]
    return _WHITESPACE_RE.sub(" ", street).strip().lower()


def street_number(address: str) -> str:
    """First numeric token of the address, empty when there is none."""
    match = _NUMBER_RE.search(address)
    return match.group(0) if match else ""


class Deduplicator:
    """
    Canonical-key grouping of comparables.

    Grouping is a pure function of input order.
    """

    def __init__(
        self,
        sqm_margin: int = DEFAULT_SQM_MARGIN,
        window_days: int = DEFAULT_WINDOW_DAYS,
    ):
        """
        Initialize deduplicator.

        Args:
            sqm_margin: Area bucket width in sqm
            window_days: Date bucket width in days

        Raises:
            ConfigurationError: If a bucket width is not positive
        """
        if sqm_margin <= 0:
            raise ConfigurationError("sqm_margin must be positive")
        if window_days <= 0:
            raise ConfigurationError("window_days must be positive")
        self._sqm_margin = sqm_margin
        self._window_days = window_days

    def hash_key(self, comp: Comparable) -> str:
        """
        Build the HASH canonical key.

        Without an address the key falls back to the external reference and
        then to the comparable's own id, which never collides.
        """
        if not comp.address:
            if comp.ref:
                return f"ref:{comp.ref}"
            return f"id:{comp.id}"

        street = street_token(comp.address)
        number = street_number(comp.address)
        floor = "" if comp.floor is None else str(comp.floor)
        sqm_bucket = int((comp.sqm or 0) // self._sqm_margin) * self._sqm_margin
        date_bucket = (comp.date - _EPOCH).days // self._window_days

        return f"{street}-{number}-{floor}-{sqm_bucket}-{date_bucket}"

    def key_for(self, comp: Comparable, strategy: DedupStrategy) -> str:
        """Canonical key for a comparable under the given strategy."""
        if strategy == DedupStrategy.PORTAL_REF and comp.ref:
            return f"ref:{comp.ref}"
        if strategy == DedupStrategy.CADASTRE and comp.cadastral_ref:
            return f"cad:{comp.cadastral_ref}"
        return self.hash_key(comp)

    def dedup(
        self,
        comps: List[Comparable],
        strategy: DedupStrategy = DedupStrategy.HASH,
    ) -> DedupResult:
        """
        Group comparables by canonical key.

        Args:
            comps: Comparables in their original order
            strategy: Key strategy

        Returns:
            DedupResult with groups in first-appearance order and the ids of
            every non-first member of a multi-member group
        """
        groups: Dict[str, List[Comparable]] = {}
        for comp in comps:
            groups.setdefault(self.key_for(comp, strategy), []).append(comp)

        duplicates = [
            comp.id
            for members in groups.values()
            if len(members) > 1
            for comp in members[1:]
        ]

        logger.info(
            "Dedup (%s) grouped %d comparables into %d groups, %d duplicates",
            strategy.value,
            len(comps),
            len(groups),
            len(duplicates),
        )

        return DedupResult(
            groups=[DedupGroup(key=key, comps=members) for key, members in groups.items()],
            duplicates=duplicates,
        )
