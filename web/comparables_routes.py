"""
Comparables Routes - JSON API over the Comparables Engine

Thin service layer: parses requests, calls the synchronous engine, and
serializes results. Holds the imported comparable collection, comp sets
and the audit trail for the process.

Configuration errors surface as HTTP 422; unknown ids as HTTP 404.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from pydantic import BaseModel, Field

from core.comparables import (
    AuditAction,
    AuditTrail,
    Comparable,
    CompSetRepository,
    ConfigurationError,
    DedupStrategy,
    Deduplicator,
    ExportFormat,
    NormalizationEngine,
    NormalizeRules,
    ScoreParams,
    SearchFilters,
    SearchOrchestrator,
    SimilarityScorer,
    Source,
    SubjectRef,
    export_comparables,
    import_rows,
    summarize,
)
from utils.config import Config


logger = logging.getLogger(__name__)


# =============================================================================
# Process State
# =============================================================================


class ComparablesState:
    """Imported comparables, comp sets and audit trail for this process."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config.load()
        self.audit = AuditTrail()
        self.sets = CompSetRepository(self.config.compsets_path, audit=self.audit)
        self._comparables: dict[str, Comparable] = {}

    def add(self, comps: list[Comparable]) -> None:
        for comp in comps:
            self._comparables[comp.id] = comp.raw()

    def all(self) -> list[Comparable]:
        return list(self._comparables.values())

    def orchestrator(self) -> SearchOrchestrator:
        return SearchOrchestrator(
            self.all(),
            default_k=self.config.knn_k,
            default_dist_cap_m=self.config.knn_dist_cap_m,
        )


_state_instance: Optional[ComparablesState] = None


def get_state() -> ComparablesState:
    """Get the process-wide comparables state singleton."""
    global _state_instance
    if _state_instance is None:
        _state_instance = ComparablesState()
    return _state_instance


# =============================================================================
# Request Models
# =============================================================================


class FiltersModel(BaseModel):
    lat: Optional[float] = None
    lng: Optional[float] = None
    radius_km: Optional[float] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    sqm_min: Optional[float] = None
    sqm_max: Optional[float] = None
    rooms_min: Optional[int] = None
    baths_min: Optional[int] = None
    floor_min: Optional[int] = None
    floor_max: Optional[int] = None
    terrace_min: Optional[float] = None
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    has_elevator: Optional[bool] = None
    parking: Optional[bool] = None
    condition: Optional[str] = None
    source: Optional[str] = None
    sort: str = "distance-asc"
    page: int = 0
    size: Optional[int] = None


class SearchRequest(BaseModel):
    filters: FiltersModel = Field(default_factory=FiltersModel)
    subject: Optional[dict[str, Any]] = None
    rules: Optional[dict[str, Any]] = None
    score: Optional[dict[str, Any]] = None
    user: str = "anonymous"


class NormalizeRequest(BaseModel):
    subject: dict[str, Any] = Field(default_factory=dict)
    comps: list[dict[str, Any]]
    rules: dict[str, Any] = Field(default_factory=dict)


class ScoreRequest(BaseModel):
    subject: dict[str, Any] = Field(default_factory=dict)
    comps: list[dict[str, Any]]
    params: dict[str, Any] = Field(default_factory=dict)


class DedupRequest(BaseModel):
    comps: list[dict[str, Any]]
    strategy: str = DedupStrategy.HASH.value
    user: str = "anonymous"


class ImportRequest(BaseModel):
    rows: list[Any]
    user: str = "anonymous"


class ExportRequest(BaseModel):
    comps: list[dict[str, Any]]
    format: str = ExportFormat.CSV.value
    include_adjustments: bool = True
    include_scores: bool = True
    user: str = "anonymous"


class CompSetCreate(BaseModel):
    name: str
    comps: list[str] = Field(default_factory=list)
    client: Optional[str] = None
    notes: Optional[str] = None
    is_default_for_avm: bool = False
    user: str = "anonymous"


class CompSetUpdate(BaseModel):
    name: Optional[str] = None
    comps: Optional[list[str]] = None
    client: Optional[str] = None
    notes: Optional[str] = None
    is_default_for_avm: Optional[bool] = None
    user: str = "anonymous"


class ExcludeRequest(BaseModel):
    comp_id: str
    reason: Optional[str] = None
    user: str = "anonymous"


# =============================================================================
# Parsing Helpers
# =============================================================================


def _parse_comps(items: list[dict[str, Any]]) -> list[Comparable]:
    try:
        return [Comparable.from_dict(item) for item in items]
    except (KeyError, TypeError, ValueError) as e:
        raise HTTPException(status_code=422, detail=f"Invalid comparable: {e}")


def _parse_subject(data: Optional[dict[str, Any]]) -> Optional[SubjectRef]:
    if data is None:
        return None
    try:
        return SubjectRef.from_dict(data)
    except TypeError as e:
        raise HTTPException(status_code=422, detail=f"Invalid subject: {e}")


def _build_rules(data: dict[str, Any], config: Config) -> NormalizeRules:
    return NormalizeRules.from_dict({"price_floor": config.price_floor, **data})


def _build_filters(model: FiltersModel, config: Config) -> SearchFilters:
    values = model.model_dump()
    if values["source"] is not None:
        source = Source.from_string(values["source"])
        if source is None:
            raise ConfigurationError(f"Unknown source: {values['source']}")
        values["source"] = source
    if values["size"] is None:
        values["size"] = config.page_size
    return SearchFilters(**values)


# =============================================================================
# Router Setup
# =============================================================================

router = APIRouter(prefix="/api/comparables", tags=["comparables"])


@router.post("/search")
def search_comparables(request: SearchRequest, state: ComparablesState = Depends(get_state)):
    """Filter, score and page the imported comparables."""
    try:
        filters = _build_filters(request.filters, state.config)
        rules = _build_rules(request.rules, state.config) if request.rules is not None else None
        score_params = ScoreParams.from_dict(request.score) if request.score is not None else None
        result = state.orchestrator().search(
            filters,
            subject=_parse_subject(request.subject),
            rules=rules,
            score_params=score_params,
        )
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    state.audit.log_event(
        AuditAction.FILTER_APPLIED,
        request.user,
        request.filters.model_dump(mode="json", exclude_none=True),
    )

    response = result.to_dict()
    response["summary"] = summarize(result.items).to_dict()
    return response


@router.post("/normalize")
def normalize_comparables(request: NormalizeRequest, state: ComparablesState = Depends(get_state)):
    """Annotate the given comparables with adjusted totals."""
    comps = _parse_comps(request.comps)
    try:
        rules = _build_rules(request.rules, state.config)
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    engine = NormalizationEngine()
    normalized = engine.normalize_all(comps, rules, _parse_subject(request.subject))
    return {"comps": [c.to_dict() for c in normalized]}


@router.post("/score")
def score_comparables(request: ScoreRequest, state: ComparablesState = Depends(get_state)):
    """Annotate the given comparables with similarity and KNN weight."""
    comps = _parse_comps(request.comps)
    try:
        params = ScoreParams.from_dict(request.params)
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    scorer = SimilarityScorer(
        default_k=state.config.knn_k,
        default_dist_cap_m=state.config.knn_dist_cap_m,
    )
    scored = scorer.score(_parse_subject(request.subject), comps, params)
    return {"comps": [c.to_dict() for c in scored]}


@router.post("/dedup")
def dedup_comparables(request: DedupRequest, state: ComparablesState = Depends(get_state)):
    """Group likely duplicate transactions."""
    comps = _parse_comps(request.comps)
    try:
        strategy = DedupStrategy(request.strategy.upper())
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown dedup strategy: {request.strategy}")

    deduplicator = Deduplicator(
        sqm_margin=state.config.dedup_sqm_margin,
        window_days=state.config.dedup_window_days,
    )
    result = deduplicator.dedup(comps, strategy)

    state.audit.log_event(
        AuditAction.DEDUP_RUN,
        request.user,
        {"strategy": strategy.value, "duplicates": len(result.duplicates)},
    )
    return result.to_dict()


@router.post("/import")
def import_comparables(request: ImportRequest, state: ComparablesState = Depends(get_state)):
    """Validate rows and add the valid ones to the searchable collection."""
    result = import_rows(request.rows)
    state.add(result.comparables)

    state.audit.log_event(
        AuditAction.IMPORT_COMPLETED,
        request.user,
        {"success": result.success, "errors": len(result.errors)},
    )
    return result.to_dict()


@router.post("/export")
def export_comparables_route(request: ExportRequest, state: ComparablesState = Depends(get_state)):
    """Serialize comparables as CSV, JSON or GeoJSON."""
    fmt = ExportFormat.from_string(request.format)
    if fmt is None:
        raise HTTPException(status_code=422, detail=f"Unknown export format: {request.format}")

    comps = _parse_comps(request.comps)
    payload = export_comparables(
        comps,
        fmt,
        include_adjustments=request.include_adjustments,
        include_scores=request.include_scores,
    )

    state.audit.log_event(
        AuditAction.EXPORT_GENERATED,
        request.user,
        {"format": fmt.value, "count": len(comps)},
    )

    filename = f"comparables-{datetime.utcnow().strftime('%Y%m%d%H%M%S')}.{payload.extension}"
    return Response(
        content=payload.content,
        media_type=payload.media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# =============================================================================
# Comp Sets
# =============================================================================


@router.get("/sets")
def list_comp_sets(state: ComparablesState = Depends(get_state)):
    return [s.to_dict() for s in state.sets.list_all()]


@router.post("/sets", status_code=201)
def create_comp_set(request: CompSetCreate, state: ComparablesState = Depends(get_state)):
    try:
        comp_set = state.sets.save(
            name=request.name,
            comps=request.comps,
            client=request.client,
            notes=request.notes,
            is_default_for_avm=request.is_default_for_avm,
            user=request.user,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return comp_set.to_dict()


@router.get("/sets/{set_id}")
def get_comp_set(set_id: str, state: ComparablesState = Depends(get_state)):
    comp_set = state.sets.get(set_id)
    if comp_set is None:
        raise HTTPException(status_code=404, detail="Comp set not found")
    return comp_set.to_dict()


@router.patch("/sets/{set_id}")
def update_comp_set(set_id: str, request: CompSetUpdate, state: ComparablesState = Depends(get_state)):
    updates = request.model_dump(exclude_unset=True, exclude={"user"})
    try:
        comp_set = state.sets.update(set_id, updates, user=request.user)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if comp_set is None:
        raise HTTPException(status_code=404, detail="Comp set not found")
    return comp_set.to_dict()


@router.post("/sets/{set_id}/exclude")
def exclude_from_comp_set(set_id: str, request: ExcludeRequest, state: ComparablesState = Depends(get_state)):
    """Drop one comparable from a comp set, recording the reason."""
    try:
        comp_set = state.sets.exclude(set_id, request.comp_id, reason=request.reason, user=request.user)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if comp_set is None:
        raise HTTPException(status_code=404, detail="Comp set not found")
    return comp_set.to_dict()


# =============================================================================
# Audit
# =============================================================================


@router.get("/audit")
def get_audit_trail(
    set_id: Optional[str] = Query(None),
    date_from: Optional[datetime] = Query(None, alias="from"),
    date_to: Optional[datetime] = Query(None, alias="to"),
    state: ComparablesState = Depends(get_state),
):
    events = state.audit.list_events(set_id=set_id, date_from=date_from, date_to=date_to)
    return [e.to_dict() for e in events]


# =============================================================================
# Single Comparable (declared last: catches any remaining path segment)
# =============================================================================


@router.get("/{comp_id}")
def get_comparable(comp_id: str, state: ComparablesState = Depends(get_state)):
    comp = state.orchestrator().get(comp_id)
    if comp is None:
        raise HTTPException(status_code=404, detail="Comparable not found")
    return comp.to_dict()


@router.get("/{comp_id}/photos")
def get_comparable_photos(comp_id: str, state: ComparablesState = Depends(get_state)):
    comp = state.orchestrator().get(comp_id)
    if comp is None:
        raise HTTPException(status_code=404, detail="Comparable not found")
    return {"photos": list(comp.photos)}
