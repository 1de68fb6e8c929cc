"""Chart state, its transitions, and series composition.

State is an explicit frozen value: every transition takes a state and
returns a new one, so callers own where it lives.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

import structlog

from . import config as settings
from .decoder import DecodedSeries, format_percent
from .queries import WHOLE_COUNTRY_CODE, MetricKind

logger = structlog.get_logger()


class ChartType(str, Enum):
    LINE = "line"
    BAR = "bar"


@dataclass(frozen=True)
class ChartState:
    metric: MetricKind = MetricKind.POPULATION
    chart_type: ChartType = ChartType.LINE
    entity_code: str = WHOLE_COUNTRY_CODE
    entity_name: str = settings.COUNTRY_NAME

    @property
    def title(self) -> str:
        return f"{self.entity_name} statistics chart"


@dataclass(frozen=True)
class LabeledSeries:
    labels: tuple[str, ...]
    values: tuple[float | int | None, ...]


@dataclass(frozen=True)
class ChartView:
    state: ChartState
    series: LabeledSeries


@dataclass(frozen=True)
class PopupSummary:
    name: str
    latest_population: float | int | None
    latest_crime_count: float | int | None
    latest_employment_rate_percent: str | None


def select_entity(state: ChartState, code: str, name: str) -> ChartState:
    """New entity: back to the population view, chart type kept."""
    return replace(state, entity_code=code, entity_name=name, metric=MetricKind.POPULATION)


def select_metric(state: ChartState, metric: MetricKind) -> ChartState:
    return replace(state, metric=metric)


def toggle_chart_type(state: ChartState) -> ChartState:
    flipped = ChartType.BAR if state.chart_type == ChartType.LINE else ChartType.LINE
    return replace(state, chart_type=flipped)


def compose_series(state: ChartState, decoded: DecodedSeries) -> LabeledSeries:
    """Label a decoded series with the periods of the query that produced it."""
    if decoded.metric != state.metric:
        raise ValueError(f"Series is {decoded.metric.value}, chart shows {state.metric.value}")
    if decoded.entity != state.entity_code:
        raise ValueError(f"Series is for {decoded.entity!r}, chart shows {state.entity_code!r}")
    return LabeledSeries(labels=decoded.periods, values=decoded.values)


def compose_popup(
    name: str,
    population: DecodedSeries,
    crime_count: float | int | None,
    employment: DecodedSeries,
) -> PopupSummary:
    return PopupSummary(
        name=name,
        latest_population=population.latest,
        latest_crime_count=crime_count,
        latest_employment_rate_percent=format_percent(employment.latest),
    )


class StaleResultError(RuntimeError):
    def __init__(self, target: str, token: int, current: int):
        super().__init__(f"Result for {target!r} superseded (generation {token} < {current})")
        self.target = target
        self.token = token
        self.current = current


class RequestSequencer:
    """Generation counter per target; only the newest request may publish."""

    def __init__(self) -> None:
        self._generations: dict[str, int] = {}

    def begin(self, target: str) -> int:
        token = self._generations.get(target, 0) + 1
        self._generations[target] = token
        return token

    def is_current(self, target: str, token: int) -> bool:
        return self._generations.get(target, 0) == token

    def ensure_current(self, target: str, token: int) -> None:
        current = self._generations.get(target, 0)
        if current != token:
            logger.info("stale_result_discarded", target=target, token=token, current=current)
            raise StaleResultError(target, token, current)
