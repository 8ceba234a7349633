"""
Data models for the Comparables Engine

Defines the subject reference, observed comparable transactions, the
normalization and scoring configuration, and the result shapes returned by
the engine stages.

Optional attributes are always ``None`` when unknown, never zero.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Final, Mapping, Optional


# =============================================================================
# Exceptions
# =============================================================================


class ConfigurationError(ValueError):
    """Raised when a call is made with structurally invalid configuration."""

    pass


# =============================================================================
# Enums
# =============================================================================


class Source(Enum):
    """Where a comparable transaction was observed."""

    PORTAL = "PORTAL"
    REGISTRO = "REGISTRO"
    NOTARIA = "NOTARIA"
    INTERNO = "INTERNO"

    @classmethod
    def from_string(cls, value: str) -> Optional["Source"]:
        """Convert string to Source, case-insensitive."""
        normalised = value.upper().strip()
        for member in cls:
            if member.value == normalised:
                return member
        return None


class Quality(Enum):
    """
    Coarse reliability tier of a comparable.

    A: <= 6 months, <= 500 m, complete attributes
    B: <= 12 months, <= 1000 m
    C: everything else
    """

    A = "A"
    B = "B"
    C = "C"


class SqmRule(Enum):
    """How the living area difference is priced."""

    LINEAR = "LINEAR"
    SQRT = "SQRT"


class ScoreMethod(Enum):
    """Similarity scoring method."""

    COSINE = "COSINE"
    KNN = "KNN"


class DedupStrategy(Enum):
    """Key strategy used to group likely duplicate transactions."""

    HASH = "HASH"
    PORTAL_REF = "PORTAL_REF"
    CADASTRE = "CADASTRE"


class ExportFormat(Enum):
    """Supported export formats."""

    CSV = "CSV"
    JSON = "JSON"
    GEOJSON = "GeoJSON"

    @classmethod
    def from_string(cls, value: str) -> Optional["ExportFormat"]:
        """Convert string to ExportFormat, case-insensitive."""
        normalised = value.lower().strip()
        for member in cls:
            if member.value.lower() == normalised:
                return member
        return None


# =============================================================================
# Constants
# =============================================================================

FEATURE_KEYS: Final[tuple[str, ...]] = ("location", "sqm", "rooms", "baths", "condition")

DEFAULT_WEIGHTS: Final[dict[str, float]] = {
    "location": 0.30,
    "sqm": 0.25,
    "rooms": 0.15,
    "baths": 0.10,
    "condition": 0.10,
}

DEFAULT_KNN_K: Final[int] = 5
DEFAULT_DIST_CAP_M: Final[float] = 2000.0

COMPUTED_FIELDS: Final[tuple[str, ...]] = (
    "distance",
    "ppsqm",
    "adj_total",
    "similarity",
    "weight",
    "quality",
)


def ppsqm(price: float, sqm: Optional[float]) -> float:
    """Price per square meter; 0 when the area is missing or not positive."""
    if not sqm or sqm <= 0:
        return 0.0
    return price / sqm


def is_number(value: Any) -> bool:
    """Whether a value is a real number (booleans excluded)."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_count(value: Any) -> bool:
    """Whether a value is a positive integer (booleans excluded)."""
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _optional_int(data: Mapping[str, Any], name: str) -> Optional[int]:
    """Read an optional whole-number attribute; integral floats are accepted."""
    value = data.get(name)
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"{name} must be an integer: {value!r}")
    return value


# =============================================================================
# Subject and Comparable
# =============================================================================


@dataclass(frozen=True)
class SubjectRef:
    """
    The property being valued.

    Every attribute is optional; None means unknown.
    """

    address: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    property_type: Optional[str] = None
    sqm: Optional[float] = None
    rooms: Optional[int] = None
    baths: Optional[int] = None
    floor: Optional[int] = None
    elevator: Optional[bool] = None
    condition: Optional[str] = None

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON output."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SubjectRef":
        """Create from dictionary, ignoring unknown keys."""
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


@dataclass(frozen=True)
class Comparable:
    """
    An observed past transaction used as a market reference point.

    Computed fields (distance, ppsqm, adj_total, similarity, weight,
    quality) are populated by the engine stages and are never treated as
    authoritative input.
    """

    # Required fields
    id: str
    date: date
    source: Source
    lat: float
    lng: float
    price: float
    sqm: float

    # Optional attributes
    ref: Optional[str] = None
    address: Optional[str] = None
    cadastral_ref: Optional[str] = None
    rooms: Optional[int] = None
    baths: Optional[int] = None
    floor: Optional[int] = None
    elevator: Optional[bool] = None
    terrace: Optional[float] = None  # Terrace area in sqm
    parking: Optional[bool] = None
    condition: Optional[str] = None
    photos: tuple[str, ...] = ()

    # Computed fields
    distance: Optional[float] = None  # Meters to subject / search center
    ppsqm: Optional[float] = None
    adj_total: Optional[float] = None
    similarity: Optional[float] = None
    weight: Optional[float] = None
    quality: Optional[Quality] = None

    @property
    def price_per_sqm(self) -> float:
        """Price per sqm derived from source fields."""
        return ppsqm(self.price, self.sqm)

    @property
    def is_complete(self) -> bool:
        """Whether every attribute the quality tiering needs is known."""
        return (
            bool(self.sqm)
            and self.sqm > 0
            and self.rooms is not None
            and self.baths is not None
            and bool(self.condition)
            and self.floor is not None
        )

    def with_computed(self, **computed: Any) -> "Comparable":
        """Return a copy with the given computed fields set."""
        unknown = set(computed) - set(COMPUTED_FIELDS)
        if unknown:
            raise ConfigurationError(f"Not a computed field: {', '.join(sorted(unknown))}")
        return replace(self, **computed)

    def raw(self) -> "Comparable":
        """Return a copy with every computed field cleared."""
        return replace(self, **{name: None for name in COMPUTED_FIELDS})

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON output."""
        return {
            "id": self.id,
            "ref": self.ref,
            "date": self.date.isoformat(),
            "source": self.source.value,
            "lat": self.lat,
            "lng": self.lng,
            "address": self.address,
            "cadastral_ref": self.cadastral_ref,
            "price": self.price,
            "sqm": self.sqm,
            "rooms": self.rooms,
            "baths": self.baths,
            "floor": self.floor,
            "elevator": self.elevator,
            "terrace": self.terrace,
            "parking": self.parking,
            "condition": self.condition,
            "photos": list(self.photos),
            "distance": self.distance,
            "ppsqm": self.ppsqm,
            "adj_total": self.adj_total,
            "similarity": self.similarity,
            "weight": self.weight,
            "quality": self.quality.value if self.quality else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Comparable":
        """
        Create from a dictionary produced by to_dict.

        Raises:
            KeyError: If a required field is missing
            ValueError: If a field cannot be parsed
        """
        source = Source.from_string(str(data.get("source") or Source.INTERNO.value))
        if source is None:
            raise ValueError(f"Invalid source: {data.get('source')}")
        raw_date = data["date"]
        quality = data.get("quality")
        price = float(data["price"])
        sqm = float(data["sqm"])
        if price <= 0:
            raise ValueError(f"price must be positive: {data['price']}")
        if sqm <= 0:
            raise ValueError(f"sqm must be positive: {data['sqm']}")
        terrace = data.get("terrace")
        if terrace is not None and not is_number(terrace):
            raise ValueError(f"terrace must be a number: {terrace!r}")
        return cls(
            id=str(data["id"]),
            date=raw_date if isinstance(raw_date, date) else date.fromisoformat(str(raw_date)[:10]),
            source=source,
            lat=float(data["lat"]),
            lng=float(data["lng"]),
            price=price,
            sqm=sqm,
            ref=data.get("ref"),
            address=data.get("address"),
            cadastral_ref=data.get("cadastral_ref"),
            rooms=_optional_int(data, "rooms"),
            baths=_optional_int(data, "baths"),
            floor=_optional_int(data, "floor"),
            elevator=data.get("elevator"),
            terrace=terrace,
            parking=data.get("parking"),
            condition=data.get("condition"),
            photos=tuple(data.get("photos") or ()),
            distance=data.get("distance"),
            ppsqm=data.get("ppsqm"),
            adj_total=data.get("adj_total"),
            similarity=data.get("similarity"),
            weight=data.get("weight"),
            quality=Quality(quality) if quality else None,
        )


# =============================================================================
# Configuration
# =============================================================================


_OPTIONAL_RULE_NUMBERS: Final[tuple[str, ...]] = (
    "floor_bonus",
    "elevator_factor",
    "terrace_ppsqm",
    "parking_value",
    "age_depreciation_pct",
    "micro_loc_bonus_m",
)


@dataclass(frozen=True)
class NormalizeRules:
    """
    Adjustment rule set for price normalization.

    Immutable per invocation. Unset (None) adjustments are skipped.
    """

    sqm_rule: SqmRule = SqmRule.LINEAR
    state_factors: Mapping[str, float] = field(default_factory=dict)
    floor_bonus: Optional[float] = None  # Added per floor level
    elevator_factor: Optional[float] = None
    terrace_ppsqm: Optional[float] = None
    parking_value: Optional[float] = None
    age_depreciation_pct: Optional[float] = None  # Percent per year
    micro_loc_bonus_m: Optional[float] = None  # Bonus radius in meters
    price_floor: float = 0.0  # Clamp value when an adjustment hits <= 0

    def __post_init__(self):
        """Validate rules after initialization."""
        for label, factor in self.state_factors.items():
            if not is_number(factor):
                raise ConfigurationError(f"state factor for '{label}' must be a number")
            if factor < 0:
                raise ConfigurationError(f"state factor for '{label}' cannot be negative")
        for name in _OPTIONAL_RULE_NUMBERS:
            value = getattr(self, name)
            if value is not None and not is_number(value):
                raise ConfigurationError(f"{name} must be a number")
        if not is_number(self.price_floor):
            raise ConfigurationError("price_floor must be a number")
        if self.elevator_factor is not None and self.elevator_factor < 0:
            raise ConfigurationError("elevator_factor cannot be negative")
        if self.micro_loc_bonus_m is not None and self.micro_loc_bonus_m < 0:
            raise ConfigurationError("micro_loc_bonus_m cannot be negative")
        if self.price_floor < 0:
            raise ConfigurationError("price_floor cannot be negative")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NormalizeRules":
        """Create from dictionary."""
        try:
            sqm_rule = SqmRule(str(data.get("sqm_rule", SqmRule.LINEAR.value)).upper())
        except ValueError:
            raise ConfigurationError(f"Unknown sqm_rule: {data.get('sqm_rule')}")
        return cls(
            sqm_rule=sqm_rule,
            state_factors=dict(data.get("state_factors") or {}),
            floor_bonus=data.get("floor_bonus"),
            elevator_factor=data.get("elevator_factor"),
            terrace_ppsqm=data.get("terrace_ppsqm"),
            parking_value=data.get("parking_value"),
            age_depreciation_pct=data.get("age_depreciation_pct"),
            micro_loc_bonus_m=data.get("micro_loc_bonus_m"),
            price_floor=data.get("price_floor", 0.0),
        )


@dataclass(frozen=True)
class ScoreParams:
    """
    Similarity scoring parameters.

    Weights need not sum to 1; unset weights take DEFAULT_WEIGHTS.
    """

    method: ScoreMethod = ScoreMethod.COSINE
    k: Optional[int] = None
    dist_cap_m: Optional[float] = None
    weights: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self):
        """Validate parameters after initialization."""
        if self.k is not None and not is_count(self.k):
            raise ConfigurationError("k must be a positive integer")
        if self.dist_cap_m is not None:
            if not is_number(self.dist_cap_m):
                raise ConfigurationError("dist_cap_m must be a number")
            if self.dist_cap_m < 0:
                raise ConfigurationError("dist_cap_m cannot be negative")
        for key, value in self.weights.items():
            if key not in FEATURE_KEYS:
                raise ConfigurationError(f"Unknown feature weight: {key}")
            if not is_number(value):
                raise ConfigurationError(f"Weight for '{key}' must be a number")
            if value < 0:
                raise ConfigurationError(f"Weight for '{key}' cannot be negative")

    @property
    def resolved_weights(self) -> dict[str, float]:
        """Default weights overlaid with the configured ones."""
        return {**DEFAULT_WEIGHTS, **self.weights}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScoreParams":
        """Create from dictionary."""
        try:
            method = ScoreMethod(str(data.get("method", ScoreMethod.COSINE.value)).upper())
        except ValueError:
            raise ConfigurationError(f"Unknown scoring method: {data.get('method')}")
        return cls(
            method=method,
            k=data.get("k"),
            dist_cap_m=data.get("dist_cap_m"),
            weights=dict(data.get("weights") or {}),
        )


# =============================================================================
# Results
# =============================================================================


@dataclass
class DedupGroup:
    """Comparables sharing one canonical key, in input order."""

    key: str
    comps: list[Comparable]

    @property
    def is_duplicate_group(self) -> bool:
        return len(self.comps) > 1


@dataclass
class DedupResult:
    """Output of a deduplication run."""

    groups: list[DedupGroup]
    duplicates: list[str]  # Comparable ids reported as redundant

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "groups": [
                {"key": g.key, "comps": [c.to_dict() for c in g.comps]}
                for g in self.groups
            ],
            "duplicates": list(self.duplicates),
        }


@dataclass
class CompSet:
    """
    A named, persisted selection of comparable identifiers.

    At most one set is flagged as the default for the AVM at a time.
    """

    id: str
    name: str
    comps: list[str] = field(default_factory=list)
    client: Optional[str] = None
    notes: Optional[str] = None
    is_default_for_avm: bool = False
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "comps": list(self.comps),
            "client": self.client,
            "notes": self.notes,
            "is_default_for_avm": self.is_default_for_avm,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CompSet":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            name=data["name"],
            comps=list(data.get("comps") or []),
            client=data.get("client"),
            notes=data.get("notes"),
            is_default_for_avm=bool(data.get("is_default_for_avm", False)),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


@dataclass
class ImportRowError:
    """A rejected import row (1-based index)."""

    row: int
    error: str

    def to_dict(self) -> dict:
        return {"row": self.row, "error": self.error}


@dataclass
class ImportResult:
    """Outcome of an import batch; partial success is expected."""

    success: int
    errors: list[ImportRowError] = field(default_factory=list)
    comparables: list[Comparable] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "success": self.success,
            "errors": [e.to_dict() for e in self.errors],
        }
