"""
Comparable Import - Row Validation

Validates loosely-typed rows (spreadsheet uploads, JSON, re-imported
exports) into Comparable records. Invalid rows are reported with a 1-based
row index and reason; they never abort the batch.

Required fields: date, lat, lng, price, sqm
"""

from __future__ import annotations

import csv
import io
import json
import logging
import uuid
from datetime import date, datetime
from typing import Any, Final, Iterable, Mapping, Optional

from core.comparables.models import (
    Comparable,
    ImportResult,
    ImportRowError,
    Source,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

REQUIRED_IMPORT_FIELDS: Final[tuple[str, ...]] = ("date", "lat", "lng", "price", "sqm")

TRUE_VALUES: Final[frozenset[str]] = frozenset({"true", "1", "yes", "y", "sí", "si"})
FALSE_VALUES: Final[frozenset[str]] = frozenset({"false", "0", "no", "n"})


# =============================================================================
# Lenient Parsers
# =============================================================================


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_float(value: Any) -> Optional[float]:
    """Parse a float, returning None for blank or unparseable input."""
    if _is_blank(value) or isinstance(value, bool):
        return None
    try:
        return float(str(value).strip()) if isinstance(value, str) else float(value)
    except (ValueError, TypeError):
        return None


def parse_int(value: Any) -> Optional[int]:
    """Parse an integer (accepting "3.0"), returning None otherwise."""
    number = parse_float(value)
    if number is None or not number.is_integer():
        return None
    return int(number)


def parse_bool(value: Any) -> Optional[bool]:
    """Parse a flag; accepts booleans and common yes/no spellings."""
    if isinstance(value, bool):
        return value
    if _is_blank(value):
        return None
    normalised = str(value).strip().lower()
    if normalised in TRUE_VALUES:
        return True
    if normalised in FALSE_VALUES:
        return False
    return None


def parse_date(value: Any) -> Optional[date]:
    """Parse an ISO date or datetime string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if _is_blank(value):
        return None
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def _optional_text(value: Any) -> Optional[str]:
    return None if _is_blank(value) else str(value).strip()


# =============================================================================
# Row Validation
# =============================================================================


def validate_row(row: Mapping[str, Any]) -> tuple[Optional[dict[str, Any]], Optional[str]]:
    """
    Validate a single row.

    Returns:
        Tuple of (parsed fields, None) on success or (None, reason) on failure
    """
    missing = [name for name in REQUIRED_IMPORT_FIELDS if _is_blank(row.get(name))]
    if missing:
        return None, f"Missing required fields: {', '.join(missing)}"

    comp_date = parse_date(row.get("date"))
    if comp_date is None:
        return None, f"Invalid date: {row.get('date')}"

    lat = parse_float(row.get("lat"))
    lng = parse_float(row.get("lng"))
    if lat is None or lng is None:
        return None, "Invalid coordinates"
    if not (-90 <= lat <= 90) or not (-180 <= lng <= 180):
        return None, "Coordinates out of range"

    price = parse_float(row.get("price"))
    if price is None or price <= 0:
        return None, "price must be a positive number"

    sqm = parse_float(row.get("sqm"))
    if sqm is None or sqm <= 0:
        return None, "sqm must be a positive number"

    raw_source = row.get("source")
    if _is_blank(raw_source):
        source = Source.INTERNO
    else:
        source = Source.from_string(str(raw_source))
        if source is None:
            return None, f"Invalid source: {raw_source}"

    photos = row.get("photos") or ()
    if isinstance(photos, str):
        photos = [p for p in photos.split("|") if p]

    return {
        "date": comp_date,
        "lat": lat,
        "lng": lng,
        "price": price,
        "sqm": sqm,
        "source": source,
        "ref": _optional_text(row.get("ref")),
        "address": _optional_text(row.get("address")),
        "cadastral_ref": _optional_text(row.get("cadastral_ref")),
        "rooms": parse_int(row.get("rooms")),
        "baths": parse_int(row.get("baths")),
        "floor": parse_int(row.get("floor")),
        "elevator": parse_bool(row.get("elevator")),
        "terrace": parse_float(row.get("terrace")),
        "parking": parse_bool(row.get("parking")),
        "condition": _optional_text(row.get("condition")),
        "photos": tuple(photos),
    }, None


def import_rows(rows: Iterable[Mapping[str, Any]]) -> ImportResult:
    """
    Validate a batch of rows into comparables.

    Rows without an id get a generated one. Computed fields present in the
    rows are ignored; they are recomputed by the engine.

    Args:
        rows: Loosely-typed row mappings

    Returns:
        ImportResult with success count, per-row errors and parsed comparables
    """
    errors: list[ImportRowError] = []
    comparables: list[Comparable] = []

    for index, row in enumerate(rows, start=1):
        if not isinstance(row, Mapping):
            errors.append(ImportRowError(row=index, error="Row is not a record"))
            continue

        parsed, reason = validate_row(row)
        if parsed is None:
            errors.append(ImportRowError(row=index, error=reason))
            logger.warning("Rejected import row %d: %s", index, reason)
            continue

        comp_id = _optional_text(row.get("id")) or f"imp-{uuid.uuid4().hex[:12]}"
        comparables.append(Comparable(id=comp_id, **parsed))

    logger.info(
        "Imported %d comparables, %d rows rejected",
        len(comparables),
        len(errors),
    )

    return ImportResult(success=len(comparables), errors=errors, comparables=comparables)


def import_csv(text: str) -> ImportResult:
    """Import rows from delimited text with a header line."""
    reader = csv.DictReader(io.StringIO(text))
    return import_rows(list(reader))


def import_json(text: str) -> ImportResult:
    """
    Import rows from a JSON array of records or a GeoJSON FeatureCollection.

    Raises:
        ValueError: If the document is neither
    """
    data = json.loads(text)

    if isinstance(data, dict) and data.get("type") == "FeatureCollection":
        rows = []
        for feature in data.get("features") or []:
            if not isinstance(feature, Mapping):
                # Reported per row by import_rows
                rows.append(feature)
                continue
            properties = dict(feature.get("properties") or {})
            geometry = feature.get("geometry")
            coordinates = geometry.get("coordinates") if isinstance(geometry, Mapping) else None
            if isinstance(coordinates, (list, tuple)) and len(coordinates) >= 2:
                properties["lng"], properties["lat"] = coordinates[0], coordinates[1]
            rows.append(properties)
        return import_rows(rows)

    if not isinstance(data, list):
        raise ValueError("Expected a JSON array or a GeoJSON FeatureCollection")

    return import_rows(data)
