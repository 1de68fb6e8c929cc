"""Decode flat PxWeb result arrays into per-entity time series.

A result carries no labels. Its layout is fixed by the query that produced
it: one value per combination of selected values, first dimension slowest.
Every offset here is computed from the dimension lists of that query, never
from assumed constants.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence

from .queries import (
    EMPLOYED,
    ROLE_ENTITY,
    ROLE_PERIOD,
    ROLE_STATUS,
    UNEMPLOYED,
    MetricKind,
    MetricQuery,
)

Number = float | int


class DecodeError(RuntimeError):
    pass


class NoDataError(DecodeError):
    pass


class UnknownEntityError(DecodeError):
    def __init__(self, code: str, dimension: str):
        super().__init__(f"Entity {code!r} is not selected in dimension {dimension!r}")
        self.code = code
        self.dimension = dimension


class DivisionByZeroError(DecodeError):
    def __init__(self, period: str):
        super().__init__(f"Employed and unemployed sum to zero for period {period!r}")
        self.period = period


@dataclass(frozen=True)
class DecodedSeries:
    entity: str
    metric: MetricKind
    periods: tuple[str, ...]
    values: tuple[Number | None, ...]

    @property
    def latest(self) -> Number | None:
        return self.values[-1]


def round_half_away(value: Number, places: int = 2) -> float:
    """Round half away from zero (``round`` would round half to even)."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def entity_index(query: MetricQuery, code: str) -> int:
    dimension = query.dimension(ROLE_ENTITY)
    try:
        return dimension.values.index(code)
    except ValueError:
        raise UnknownEntityError(code, dimension.code) from None


def strides(query: MetricQuery) -> list[int]:
    """Distance in the flat array between neighbouring values of each dimension."""
    out = [1] * len(query.dimensions)
    for position in range(len(query.dimensions) - 2, -1, -1):
        out[position] = out[position + 1] * query.dimensions[position + 1].cardinality
    return out


def check_length(flat: Sequence[Number | None], query: MetricQuery) -> None:
    if not flat:
        raise NoDataError(f"Empty {query.kind.value} result")
    expected = query.expected_length
    if len(flat) != expected:
        raise NoDataError(
            f"{query.kind.value} result has {len(flat)} values, query layout needs {expected}"
        )


def select_series(
    flat: Sequence[Number | None],
    query: MetricQuery,
    coordinates: dict[str, int],
) -> list[Number | None]:
    """Walk the period dimension with every other dimension pinned.

    ``coordinates`` maps a dimension role to a position within that
    dimension's selected values. Roles left out must have a single value.
    """
    check_length(flat, query)
    steps = strides(query)
    period_position = query.position_of(ROLE_PERIOD)

    base = 0
    for position, dimension in enumerate(query.dimensions):
        if position == period_position:
            continue
        index = coordinates.get(dimension.role)
        if index is None:
            if dimension.cardinality != 1:
                raise ValueError(f"No position given for {dimension.role} dimension {dimension.code!r}")
            index = 0
        base += index * steps[position]

    period_step = steps[period_position]
    period_count = query.dimensions[period_position].cardinality
    return [flat[base + i * period_step] for i in range(period_count)]


def _decoded(query: MetricQuery, code: str, values: Sequence[Number | None]) -> DecodedSeries:
    return DecodedSeries(entity=code, metric=query.kind, periods=query.periods, values=tuple(values))


def population_series(flat: Sequence[Number | None], query: MetricQuery, code: str) -> DecodedSeries:
    index = entity_index(query, code)
    return _decoded(query, code, select_series(flat, query, {ROLE_ENTITY: index}))


def crime_series(flat: Sequence[Number | None], query: MetricQuery, code: str) -> DecodedSeries:
    index = entity_index(query, code)
    return _decoded(query, code, select_series(flat, query, {ROLE_ENTITY: index}))


def crime_latest(flat: Sequence[Number | None], query: MetricQuery, code: str) -> Number | None:
    """Value of the final period: ``flat[(periods - 1) * stride + offset]``."""
    check_length(flat, query)
    index = entity_index(query, code)
    steps = strides(query)
    period_position = query.position_of(ROLE_PERIOD)
    last_period = query.dimensions[period_position].cardinality - 1
    return flat[last_period * steps[period_position] + index * steps[query.position_of(ROLE_ENTITY)]]


def employment_rate(employed: Number | None, unemployed: Number | None, period: str) -> float | None:
    if employed is None or unemployed is None:
        return None
    total = Decimal(str(employed)) + Decimal(str(unemployed))
    if total == 0:
        raise DivisionByZeroError(period)
    rate = Decimal(str(employed)) / total * 100
    return float(rate.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def employment_rates(flat: Sequence[Number | None], query: MetricQuery, code: str) -> DecodedSeries:
    """Per-period employment rate in percent; ``None`` where it is undefined."""
    index = entity_index(query, code)
    statuses = query.dimension(ROLE_STATUS).values
    try:
        employed_at, unemployed_at = statuses.index(EMPLOYED), statuses.index(UNEMPLOYED)
    except ValueError:
        raise NoDataError("Employment query must select both employed and unemployed") from None

    employed = select_series(flat, query, {ROLE_ENTITY: index, ROLE_STATUS: employed_at})
    unemployed = select_series(flat, query, {ROLE_ENTITY: index, ROLE_STATUS: unemployed_at})

    rates: list[float | None] = []
    for period, working, idle in zip(query.periods, employed, unemployed):
        try:
            rates.append(employment_rate(working, idle, period))
        except DivisionByZeroError:
            rates.append(None)
    return _decoded(query, code, rates)


def format_percent(rate: float | None) -> str | None:
    if rate is None:
        return None
    return f"{round_half_away(rate):.2f}"
