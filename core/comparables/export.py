"""
Comparable Export - CSV, JSON and GeoJSON

All three formats carry the same fields. The JSON form is lossless for raw
fields and re-imports through core.comparables.importer.import_json.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from dataclasses import dataclass
from typing import Any, Final, Iterable

from core.comparables.models import Comparable, ExportFormat


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

CSV_COLUMNS: Final[tuple[str, ...]] = (
    "id",
    "ref",
    "date",
    "lat",
    "lng",
    "address",
    "price",
    "sqm",
    "ppsqm",
    "rooms",
    "baths",
    "floor",
    "elevator",
    "terrace",
    "parking",
    "condition",
    "source",
    "quality",
    "distance",
    "weight",
    "similarity",
    "adj_total",
)

ADJUSTMENT_COLUMNS: Final[frozenset[str]] = frozenset({"adj_total"})
SCORE_COLUMNS: Final[frozenset[str]] = frozenset({"weight", "similarity"})
FLAG_COLUMNS: Final[frozenset[str]] = frozenset({"elevator", "parking"})

MEDIA_TYPES: Final[dict[ExportFormat, str]] = {
    ExportFormat.CSV: "text/csv",
    ExportFormat.JSON: "application/json",
    ExportFormat.GEOJSON: "application/geo+json",
}

EXTENSIONS: Final[dict[ExportFormat, str]] = {
    ExportFormat.CSV: "csv",
    ExportFormat.JSON: "json",
    ExportFormat.GEOJSON: "geojson",
}


@dataclass(frozen=True)
class ExportPayload:
    """Serialized export ready for download."""

    content: str
    media_type: str
    extension: str


def _excluded_fields(include_adjustments: bool, include_scores: bool) -> frozenset[str]:
    excluded: set[str] = set()
    if not include_adjustments:
        excluded |= ADJUSTMENT_COLUMNS
    if not include_scores:
        excluded |= SCORE_COLUMNS
    return frozenset(excluded)


def _csv_value(column: str, value: Any) -> str:
    """Render one CSV cell; unknown values are empty."""
    if value is None:
        return ""
    if column in FLAG_COLUMNS:
        return "Sí" if value else "No"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def export_csv(
    comps: Iterable[Comparable],
    include_adjustments: bool = True,
    include_scores: bool = True,
) -> str:
    """
    Export comparables as delimited text with a header line.

    Args:
        comps: Comparables to export
        include_adjustments: Include the adjusted total column
        include_scores: Include the weight and similarity columns

    Returns:
        CSV text
    """
    excluded = _excluded_fields(include_adjustments, include_scores)
    columns = [c for c in CSV_COLUMNS if c not in excluded]

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(columns)
    for comp in comps:
        data = comp.to_dict()
        writer.writerow([_csv_value(column, data[column]) for column in columns])

    return buffer.getvalue()


def _export_dict(
    comp: Comparable,
    excluded: frozenset[str],
) -> dict[str, Any]:
    return {k: v for k, v in comp.to_dict().items() if k not in excluded}


def export_json(
    comps: Iterable[Comparable],
    include_adjustments: bool = True,
    include_scores: bool = True,
) -> str:
    """Export comparables as a JSON array of records."""
    excluded = _excluded_fields(include_adjustments, include_scores)
    return json.dumps([_export_dict(c, excluded) for c in comps], indent=2, ensure_ascii=False)


def to_feature_collection(
    comps: Iterable[Comparable],
    include_adjustments: bool = True,
    include_scores: bool = True,
) -> dict[str, Any]:
    """Build a GeoJSON FeatureCollection with one Point feature per comparable."""
    excluded = _excluded_fields(include_adjustments, include_scores) | {"lat", "lng"}
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "geometry": {"type": "Point", "coordinates": [comp.lng, comp.lat]},
                "properties": _export_dict(comp, excluded),
            }
            for comp in comps
        ],
    }


def export_geojson(
    comps: Iterable[Comparable],
    include_adjustments: bool = True,
    include_scores: bool = True,
) -> str:
    """Export comparables as a GeoJSON FeatureCollection."""
    collection = to_feature_collection(comps, include_adjustments, include_scores)
    return json.dumps(collection, indent=2, ensure_ascii=False)


_EXPORTERS = {
    ExportFormat.CSV: export_csv,
    ExportFormat.JSON: export_json,
    ExportFormat.GEOJSON: export_geojson,
}


def export_comparables(
    comps: Iterable[Comparable],
    fmt: ExportFormat,
    include_adjustments: bool = True,
    include_scores: bool = True,
) -> ExportPayload:
    """
    Export comparables in the requested format.

    Returns:
        ExportPayload with content, media type and file extension
    """
    comps = list(comps)
    content = _EXPORTERS[fmt](comps, include_adjustments, include_scores)

    logger.info("Exported %d comparables as %s", len(comps), fmt.value)

    return ExportPayload(
        content=content,
        media_type=MEDIA_TYPES[fmt],
        extension=EXTENSIONS[fmt],
    )
