from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from typing import Any

import httpx
import structlog

from . import config as settings
from . import statfin_service
from .composer import (
    ChartState,
    ChartView,
    PopupSummary,
    RequestSequencer,
    compose_popup,
    compose_series,
    select_entity,
    select_metric,
    toggle_chart_type,
)
from .decoder import (
    DecodedSeries,
    Number,
    check_length,
    crime_latest,
    crime_series,
    employment_rates,
    population_series,
)
from .queries import (
    CRIME_TEMPLATE,
    POPULATION_TEMPLATE,
    ROLE_ENTITY,
    MetricKind,
    MetricQuery,
    build_query,
    municipality_code,
)
from .statfin_service import ApiConfig, UpstreamAPIError, extract_values, extract_variable

WHOLE_COUNTRY_LABEL = "WHOLE COUNTRY"

logger = structlog.get_logger()


@dataclass(frozen=True)
class Municipality:
    code: str
    name: str


def table_url(table: str) -> str:
    return f"{settings.STATFIN_BASE_URL}/{table}"


async def fetch_municipalities(client: httpx.AsyncClient, *, config: ApiConfig) -> list[Municipality]:
    stage = "municipalities"
    payload = await statfin_service.request_json(
        client, table_url(POPULATION_TEMPLATE.table), stage=stage, config=config
    )
    codes, texts = extract_variable(payload, POPULATION_TEMPLATE.position_of(ROLE_ENTITY), stage)
    return [
        Municipality(code=code, name=settings.COUNTRY_NAME if text == WHOLE_COUNTRY_LABEL else text)
        for code, text in zip(codes, texts)
    ]


def filter_municipalities(municipalities: list[Municipality], prefix: str) -> list[Municipality]:
    """Case-insensitive prefix match on the display name; blank input matches nothing."""
    needle = prefix.strip().lower()
    if not needle:
        return []
    return [item for item in municipalities if item.name.lower().startswith(needle)]


async def fetch_map(client: httpx.AsyncClient, *, config: ApiConfig) -> dict[str, Any]:
    """Boundary GeoJSON with an ``entity_code`` added to every feature."""
    geojson = await statfin_service.request_json(
        client, settings.MAP_GEOJSON_URL, stage="map", config=config
    )
    features = geojson.get("features")
    if geojson.get("type") != "FeatureCollection" or not isinstance(features, list):
        raise UpstreamAPIError("map", "Boundary data is not a GeoJSON FeatureCollection.")
    for feature in features:
        properties = feature.setdefault("properties", {}) or {}
        kunta = properties.get("kunta")
        properties["entity_code"] = municipality_code(kunta) if kunta is not None else None
        feature["properties"] = properties
    return geojson


async def _run_query(
    client: httpx.AsyncClient,
    query: MetricQuery,
    *,
    stage: str,
    config: ApiConfig,
) -> list[Number | None]:
    payload = await statfin_service.post_query(
        client, table_url(query.table), query=query.to_payload(), stage=stage, config=config
    )
    return extract_values(payload, stage)


async def fetch_population(client: httpx.AsyncClient, code: str, *, config: ApiConfig) -> DecodedSeries:
    query = build_query(MetricKind.POPULATION, code)
    flat = await _run_query(client, query, stage="population", config=config)
    return population_series(flat, query, code)


async def fetch_employment(client: httpx.AsyncClient, code: str, *, config: ApiConfig) -> DecodedSeries:
    query = build_query(MetricKind.EMPLOYMENT, code)
    flat = await _run_query(client, query, stage="employment", config=config)
    return employment_rates(flat, query, code)


class CrimeDataCache:
    """Crime counts for every area, fetched once and read-only afterwards."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._query: MetricQuery | None = None
        self._flat: tuple[Number | None, ...] | None = None

    @property
    def loaded(self) -> bool:
        return self._flat is not None

    async def load(self, client: httpx.AsyncClient, *, config: ApiConfig) -> None:
        """Fetch the area list and the crime table. A failed load leaves the cache empty and the next read tries again."""
        if self.loaded:
            return
        async with self._lock:
            if self.loaded:
                return
            metadata = await statfin_service.request_json(
                client, table_url(CRIME_TEMPLATE.table), stage="crime_areas", config=config
            )
            codes, _ = extract_variable(metadata, CRIME_TEMPLATE.position_of(ROLE_ENTITY), "crime_areas")
            query = build_query(MetricKind.CRIME, codes)
            flat = await _run_query(client, query, stage="crime", config=config)
            check_length(flat, query)
            self._query, self._flat = query, tuple(flat)
            logger.info(
                "crime_cache_loaded",
                areas=query.dimension(ROLE_ENTITY).cardinality,
                periods=len(query.periods),
            )

    async def series(self, client: httpx.AsyncClient, code: str, *, config: ApiConfig) -> DecodedSeries:
        await self.load(client, config=config)
        return crime_series(self._flat, self._query, code)

    async def latest(self, client: httpx.AsyncClient, code: str, *, config: ApiConfig) -> Number | None:
        await self.load(client, config=config)
        return crime_latest(self._flat, self._query, code)


async def _gather_or_cancel(*aws):
    """Like ``asyncio.gather``, but a failure cancels and awaits the siblings."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class MunicipalityService:
    """Chart sessions and popup summaries on top of the statistics API.

    Each session has two states. The intended state is the user's latest
    choice and is set as soon as a request starts. The committed view is the
    last series that composed successfully. Transitions build on the
    intended state. A request that fails while still current puts the
    intended state back to the committed one.
    """

    def __init__(self, config: ApiConfig | None = None) -> None:
        self.config = config or statfin_service.default_api_config()
        self.crime = CrimeDataCache()
        self.sequencer = RequestSequencer()
        self._intended: dict[str, ChartState] = {}
        self._views: dict[str, ChartView] = {}

    def state(self, session: str) -> ChartState:
        if session in self._intended:
            return self._intended[session]
        view = self._views.get(session)
        return view.state if view else ChartState()

    def _begin(self, session: str, state: ChartState) -> int:
        token = self.sequencer.begin(session)
        self._intended[session] = state
        logger.info(
            "chart_requested",
            session=session,
            metric=state.metric.value,
            entity=state.entity_code,
            chart_type=state.chart_type.value,
            generation=token,
        )
        return token

    def _rollback(self, session: str, token: int) -> None:
        if not self.sequencer.is_current(session, token):
            return
        view = self._views.get(session)
        if view is None:
            self._intended.pop(session, None)
        else:
            self._intended[session] = view.state
        logger.info("chart_request_rolled_back", session=session, generation=token)

    def _commit(self, session: str, token: int, state: ChartState, decoded: DecodedSeries) -> ChartView:
        self.sequencer.ensure_current(session, token)
        view = ChartView(state=state, series=compose_series(state, decoded))
        self._views[session] = view
        return view

    async def fetch_metric(self, client: httpx.AsyncClient, state: ChartState) -> DecodedSeries:
        if state.metric == MetricKind.POPULATION:
            return await fetch_population(client, state.entity_code, config=self.config)
        if state.metric == MetricKind.CRIME:
            return await self.crime.series(client, state.entity_code, config=self.config)
        return await fetch_employment(client, state.entity_code, config=self.config)

    async def summary(
        self,
        client: httpx.AsyncClient,
        code: str,
        name: str | None = None,
        *,
        target: str = "popup",
    ) -> PopupSummary:
        token = self.sequencer.begin(target)
        population, crime_count, employment = await _gather_or_cancel(
            fetch_population(client, code, config=self.config),
            self.crime.latest(client, code, config=self.config),
            fetch_employment(client, code, config=self.config),
        )
        self.sequencer.ensure_current(target, token)
        return compose_popup(name or code, population, crime_count, employment)

    async def render(self, client: httpx.AsyncClient, session: str, state: ChartState) -> ChartView:
        token = self._begin(session, state)
        try:
            decoded = await self.fetch_metric(client, state)
        except BaseException:
            self._rollback(session, token)
            raise
        return self._commit(session, token, state, decoded)

    async def change_entity(
        self,
        client: httpx.AsyncClient,
        session: str,
        code: str,
        name: str,
    ) -> tuple[ChartView, PopupSummary]:
        """Switch entity; the chart and the popup summary succeed or fail together."""
        state = select_entity(self.state(session), code, name)
        token = self._begin(session, state)
        try:
            decoded, summary = await _gather_or_cancel(
                self.fetch_metric(client, state),
                self.summary(client, code, name, target=f"{session}:popup"),
            )
        except BaseException:
            self._rollback(session, token)
            raise
        return self._commit(session, token, state, decoded), summary

    async def change_metric(self, client: httpx.AsyncClient, session: str, metric: MetricKind) -> ChartView:
        return await self.render(client, session, select_metric(self.state(session), metric))

    async def toggle_type(self, client: httpx.AsyncClient, session: str) -> ChartView:
        """Flip line/bar.

        The committed series is re-used when it already shows the intended
        metric and entity. Otherwise that view is still pending or was never
        composed, and it is fetched with the new chart type.
        """
        state = toggle_chart_type(self.state(session))
        current = self._views.get(session)
        if current is None or replace(current.state, chart_type=state.chart_type) != state:
            return await self.render(client, session, state)
        self._begin(session, state)
        view = ChartView(state=state, series=current.series)
        self._views[session] = view
        return view
