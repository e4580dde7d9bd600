import calendar
from collections.abc import Iterable
from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any, Literal

import structlog
from fastapi import APIRouter, Body, FastAPI, HTTPException, Query, Request
from pydantic import BaseModel

from tour_admin.aggregator import (
    AggregationIndex,
    BuildResult,
    MarkerPolicy,
    bucket_for,
    build,
    marker_glyph,
    reference_zone,
    search,
    summarize,
)
from tour_admin.backend import BackendError, TourBackendClient
from tour_admin.config import settings
from tour_admin.database import InMemoryIndexRegistry
from tour_admin.logging import RequestIdMiddleware, setup_logging
from tour_admin.models import BookingStatus, Record

logger = structlog.get_logger(__name__)

router = APIRouter()

MONTHS = "JAN FEB MAR APR MAY JUN JUL AUG SEP OCT NOV DEC".split()


class Source(StrEnum):
    BOOKINGS = "bookings"
    SHIFTS = "shifts"
    GUIDE_APPLICATIONS = "guide_applications"
    BUS_ASSIGNMENTS = "bus_assignments"
    TOUR_STATUS = "tour_status"


RECORD_KINDS = {
    Source.BOOKINGS: "booking",
    Source.SHIFTS: "shift",
    Source.GUIDE_APPLICATIONS: "guide_application",
    Source.BUS_ASSIGNMENTS: "bus_assignment",
    Source.TOUR_STATUS: "tour_status",
}

SEARCH_FIELDS = {
    Source.BOOKINGS: ("confirmation_code", "customer_name", "customer_email"),
    Source.SHIFTS: ("id", "guide_name", "guide_id"),
    Source.GUIDE_APPLICATIONS: ("guide_name", "guide_id"),
    Source.BUS_ASSIGNMENTS: ("bus_name", "assigned_guide_name"),
    Source.TOUR_STATUS: ("message", "updated_by_name"),
}


def default_marker_policy(source: Source) -> MarkerPolicy:
    if source == Source.SHIFTS:
        return MarkerPolicy(
            mode="status-dots",
            max_dots=settings.shift_marker_max_dots,
            priority=tuple(settings.shift_marker_priority),
        )
    if source == Source.GUIDE_APPLICATIONS:
        return MarkerPolicy(
            mode="status-dots",
            max_dots=settings.guide_application_marker_max_dots,
            priority=tuple(settings.guide_application_marker_priority),
        )
    return MarkerPolicy(mode="single-count")


class TourStatusRequest(BaseModel):
    status: Literal["ON", "OFF"]
    message: str | None = None


def _today(request: Request) -> date:
    return request.app.state.now_fn().astimezone(request.app.state.reference_tz).date()


def _month_range(day: date) -> tuple[date, date]:
    last = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last)


def _resolve_range(
    request: Request, start: date | None, end: date | None
) -> tuple[date, date]:
    if start is None or end is None:
        month_start, month_end = _month_range(start or end or _today(request))
        start, end = start or month_start, end or month_end
    if end < start:
        raise HTTPException(status_code=422, detail="end must not be before start")
    return start, end


def _index(request: Request, source: Source) -> AggregationIndex:
    loaded: BuildResult | None = request.app.state.registry.get(source)
    if loaded is None:
        return AggregationIndex({}, request.app.state.reference_tz)
    return loaded.index


def _dump(records: Iterable[BaseModel]) -> list[dict[str, Any]]:
    return [r.model_dump(mode="json") for r in records]


async def _fetch(
    backend: TourBackendClient, source: Source, start: date, end: date
) -> list[Any]:
    match source:
        case Source.BOOKINGS:
            return await backend.get_bookings(start, end)
        case Source.SHIFTS:
            return await backend.get_shifts(start, end)
        case Source.GUIDE_APPLICATIONS:
            return await backend.get_guide_applications(start, end)
        case Source.BUS_ASSIGNMENTS:
            return await backend.get_bus_assignments(start, end)
        case Source.TOUR_STATUS:
            return await backend.get_tour_status_history()


def _install(
    request: Request, source: Source, generation: int, records: list[Any]
) -> dict[str, Any]:
    if source == Source.BOOKINGS and settings.hide_cancelled_bookings:
        records = [r for r in records if r.status != BookingStatus.CANCELLED]

    result = build(records, tz=request.app.state.reference_tz)
    installed = request.app.state.registry.replace_if_newer(
        source, generation, result
    )
    if not installed:
        logger.info("stale_result_discarded", source=source, generation=generation)

    return {
        "source": source,
        "status": "loaded" if installed else "discarded",
        "generation": generation,
        "days": len(result.index),
        "records": result.index.record_count,
        "rejected": len(result.rejected),
    }


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/sources/{source}/refresh")
async def refresh_source(
    source: Source,
    request: Request,
    start: date | None = None,
    end: date | None = None,
) -> dict:
    start, end = _resolve_range(request, start, end)
    registry: InMemoryIndexRegistry[Source, BuildResult] = request.app.state.registry

    # claim the generation before awaiting so a later refresh always wins
    generation = registry.next_generation(source)
    try:
        records = await _fetch(request.app.state.backend, source, start, end)
    except BackendError as exc:
        logger.error("source_refresh_failed", source=source, error=str(exc))
        raise HTTPException(
            status_code=502,
            detail=f"Failed to load {source.value.replace('_', ' ')}",
        ) from exc

    return _install(request, source, generation, records)


@router.put("/sources/{source}/records")
async def replace_records(
    source: Source, request: Request, records: list[Record] = Body(...)
) -> dict:
    expected = RECORD_KINDS[source]
    wrong = [r.id for r in records if r.kind != expected]
    if wrong:
        raise HTTPException(
            status_code=422,
            detail=f"Records {wrong} are not of kind '{expected}'",
        )
    generation = request.app.state.registry.next_generation(source)
    return _install(request, source, generation, records)


@router.get("/sources/{source}/days/{day}")
async def get_day(source: Source, day: date, request: Request) -> dict:
    records = bucket_for(_index(request, source), day)
    return {"source": source, "day": day.isoformat(), "records": _dump(records)}


@router.get("/sources/{source}/days/{day}/summary")
async def get_day_summary(source: Source, day: date, request: Request) -> dict:
    summary = summarize(_index(request, source), day)
    return {"source": source, "day": day.isoformat(), **summary.model_dump()}


@router.get("/sources/{source}/markers")
async def get_markers(
    source: Source,
    request: Request,
    start: date | None = None,
    end: date | None = None,
    mode: Literal["single-count", "status-dots"] | None = None,
    max_dots: int | None = Query(default=None, ge=0),
) -> dict:
    start, end = _resolve_range(request, start, end)
    policy = default_marker_policy(source)
    overrides = {}
    if mode is not None:
        overrides["mode"] = mode
    if max_dots is not None:
        overrides["max_dots"] = max_dots
    if overrides:
        policy = policy.model_copy(update=overrides)

    index = _index(request, source)
    markers = {
        day.isoformat(): marker_glyph(summarize(index, day), policy).model_dump(
            mode="json"
        )
        for day in index.days_between(start, end)
    }
    return {"source": source, "policy": policy.model_dump(mode="json"), "markers": markers}


@router.get("/sources/{source}/search")
async def search_records(
    source: Source,
    request: Request,
    q: str = "",
    fields: list[str] | None = Query(default=None),
) -> dict:
    allowed = SEARCH_FIELDS[source]
    unknown = [f for f in fields or () if f not in allowed]
    if unknown:
        raise HTTPException(
            status_code=422,
            detail=f"Fields {unknown} are not searchable; use {list(allowed)}",
        )
    matches = search(_index(request, source), q, fields or allowed)
    return {"source": source, "query": q, "results": _dump(matches)}


@router.get("/sources/{source}/rejected")
async def get_rejected(source: Source, request: Request) -> dict:
    loaded: BuildResult | None = request.app.state.registry.get(source)
    rejected = loaded.rejected if loaded is not None else ()
    return {
        "source": source,
        "rejected": [
            {
                "record_id": r.record_id,
                "value": None if r.error.value is None else str(r.error.value),
                "reason": r.error.reason,
            }
            for r in rejected
        ],
    }


@router.get("/sources/{source}/statistics")
async def get_statistics(source: Source, request: Request) -> dict:
    return {"source": source, **_index(request, source).totals().model_dump()}


@router.get("/tour-status/today")
async def get_today_tour_status(request: Request) -> dict:
    today = _today(request)
    display_date = f"{today.day}.{MONTHS[today.month - 1]}"
    records = bucket_for(_index(request, Source.TOUR_STATUS), today)
    if not records:
        return {
            "date": today.isoformat(),
            "display_date": display_date,
            "status": "UNKNOWN",
            "message": "Status not yet set for today",
            "updated_by_name": None,
            "updated_at": None,
        }

    current = records[-1]
    return {
        "date": today.isoformat(),
        "display_date": display_date,
        "status": str(current.status).upper(),
        "message": current.message,
        "updated_by_name": current.updated_by_name,
        "updated_at": current.updated_at.isoformat() if current.updated_at else None,
    }


@router.post("/tour-status")
async def set_tour_status(body: TourStatusRequest, request: Request) -> dict:
    backend: TourBackendClient = request.app.state.backend
    try:
        result = await backend.set_tour_status(body.status, body.message)
    except BackendError as exc:
        logger.error("tour_status_update_failed", status=body.status, error=str(exc))
        raise HTTPException(status_code=502, detail="Failed to set status") from exc

    # reload history so /tour-status/today reflects the change
    registry: InMemoryIndexRegistry[Source, BuildResult] = request.app.state.registry
    generation = registry.next_generation(Source.TOUR_STATUS)
    try:
        history = await backend.get_tour_status_history()
    except BackendError as exc:
        logger.warning("tour_status_reload_failed", error=str(exc))
    else:
        _install(request, Source.TOUR_STATUS, generation, history)

    return {
        "success": True,
        "status": result.get("status", body.status),
        "updated_by_name": result.get("updatedByName"),
    }


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)
    app.add_middleware(RequestIdMiddleware)

    registry: InMemoryIndexRegistry[Source, BuildResult] = InMemoryIndexRegistry()
    app.state.registry = registry
    app.state.backend = TourBackendClient()
    app.state.reference_tz = reference_zone(settings.reference_tz)
    app.state.now_fn = lambda: datetime.now(UTC)

    app.include_router(router)
    return app
