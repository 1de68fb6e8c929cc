from __future__ import annotations

import os
from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI, HTTPException, Path, Query
from fastapi.middleware.cors import CORSMiddleware

from . import config as settings
from .composer import ChartState, ChartType, StaleResultError
from .decoder import NoDataError, UnknownEntityError
from .logging_config import configure_logging
from .municipality_service import MunicipalityService, fetch_map, fetch_municipalities, filter_municipalities
from .queries import WHOLE_COUNTRY_CODE, MetricKind
from .schemas import (
    ChartResponse,
    EntitySelectionRequest,
    EntitySelectionResponse,
    ErrorResponse,
    MetricSelectionRequest,
    Municipality,
    PopupSummary,
)
from .statfin_service import UpstreamAPIError

logger = structlog.get_logger()

service = MunicipalityService()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL)
    try:
        async with httpx.AsyncClient(follow_redirects=True) as client:
            await service.crime.load(client, config=service.config)
    except (UpstreamAPIError, NoDataError) as exc:
        logger.error("crime_cache_load_failed", error=str(exc))
    yield


app = FastAPI(title="Municipality Statistics API", version="0.1.0", lifespan=lifespan)

raw_origins = os.getenv("CORS_ORIGINS", "*")
allow_origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]
if not allow_origins:
    allow_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

COMPOSITION_ERRORS = (UnknownEntityError, NoDataError, StaleResultError, UpstreamAPIError)
UPSTREAM_RESPONSES = {502: {"model": ErrorResponse}}
COMPOSITION_RESPONSES = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    **UPSTREAM_RESPONSES,
}


def _http_error(exc: Exception) -> HTTPException:
    logger.warning("composition_failed", error_type=type(exc).__name__, error=str(exc))
    if isinstance(exc, UnknownEntityError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, NoDataError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, StaleResultError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=502, detail=str(exc))


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/municipalities", responses=UPSTREAM_RESPONSES)
async def municipalities(q: str | None = Query(None, max_length=120)) -> list[Municipality]:
    """Dropdown entries; ``q`` narrows them to names starting with the typed text."""
    try:
        async with httpx.AsyncClient(follow_redirects=True) as client:
            items = await fetch_municipalities(client, config=service.config)
    except UpstreamAPIError as exc:
        raise _http_error(exc) from exc
    if q is not None:
        items = filter_municipalities(items, q)
    return [Municipality(code=item.code, name=item.name) for item in items]


@app.get("/api/map", responses=UPSTREAM_RESPONSES)
async def map_boundaries() -> dict:
    """Municipality boundaries as GeoJSON, each feature tagged with its entity code."""
    try:
        async with httpx.AsyncClient(follow_redirects=True) as client:
            return await fetch_map(client, config=service.config)
    except UpstreamAPIError as exc:
        raise _http_error(exc) from exc


@app.get("/api/municipalities/{code}/summary", responses=COMPOSITION_RESPONSES)
async def municipality_summary(
    code: str = Path(..., min_length=1, max_length=20),
    name: str | None = Query(None, max_length=120),
    session: str = Query("default", min_length=1, max_length=64),
) -> PopupSummary:
    try:
        async with httpx.AsyncClient(follow_redirects=True) as client:
            summary = await service.summary(client, code, name, target=f"{session}:popup")
    except COMPOSITION_ERRORS as exc:
        raise _http_error(exc) from exc
    return PopupSummary.from_summary(summary)


@app.get("/api/chart", responses=COMPOSITION_RESPONSES)
async def chart(
    session: str = Query("default", min_length=1, max_length=64),
    metric: MetricKind = Query(MetricKind.POPULATION),
    chart_type: ChartType = Query(ChartType.LINE),
    entity: str = Query(WHOLE_COUNTRY_CODE, min_length=1, max_length=20),
    name: str = Query(settings.COUNTRY_NAME, min_length=1, max_length=120),
) -> ChartResponse:
    state = ChartState(metric=metric, chart_type=chart_type, entity_code=entity, entity_name=name)
    try:
        async with httpx.AsyncClient(follow_redirects=True) as client:
            view = await service.render(client, session, state)
    except COMPOSITION_ERRORS as exc:
        raise _http_error(exc) from exc
    return ChartResponse.from_view(view)


@app.post("/api/chart/{session}/entity", responses=COMPOSITION_RESPONSES)
async def chart_select_entity(
    body: EntitySelectionRequest,
    session: str = Path(..., min_length=1, max_length=64),
) -> EntitySelectionResponse:
    try:
        async with httpx.AsyncClient(follow_redirects=True) as client:
            view, summary = await service.change_entity(client, session, body.code, body.name)
    except COMPOSITION_ERRORS as exc:
        raise _http_error(exc) from exc
    return EntitySelectionResponse(
        chart=ChartResponse.from_view(view),
        summary=PopupSummary.from_summary(summary),
    )


@app.post("/api/chart/{session}/metric", responses=COMPOSITION_RESPONSES)
async def chart_select_metric(
    body: MetricSelectionRequest,
    session: str = Path(..., min_length=1, max_length=64),
) -> ChartResponse:
    try:
        async with httpx.AsyncClient(follow_redirects=True) as client:
            view = await service.change_metric(client, session, body.metric)
    except COMPOSITION_ERRORS as exc:
        raise _http_error(exc) from exc
    return ChartResponse.from_view(view)


@app.post("/api/chart/{session}/type", responses=COMPOSITION_RESPONSES)
async def chart_toggle_type(session: str = Path(..., min_length=1, max_length=64)) -> ChartResponse:
    """Switch line/bar; the series is re-used unless nothing was composed yet."""
    try:
        async with httpx.AsyncClient(follow_redirects=True) as client:
            view = await service.toggle_type(client, session)
    except COMPOSITION_ERRORS as exc:
        raise _http_error(exc) from exc
    return ChartResponse.from_view(view)
