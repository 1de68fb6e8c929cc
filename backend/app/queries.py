"""Statistics Finland (PxWeb) query templates and the query builder.

A PxWeb table answers a query with one number per combination of the
selected values, laid out with the first dimension varying slowest. The
templates below pin down every dimension except the mutable entity
dimension; ``build_query`` fills that in and returns a new descriptor,
leaving the template untouched.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Iterable

ROLE_PERIOD = "period"
ROLE_ENTITY = "entity"
ROLE_STATUS = "status"
ROLE_BREAKDOWN = "breakdown"

WHOLE_COUNTRY_CODE = "SSS"
MUNICIPALITY_CODE_PREFIX = "KU"

EMPLOYED = "11"
UNEMPLOYED = "12"


class MetricKind(str, Enum):
    POPULATION = "population"
    CRIME = "crime"
    EMPLOYMENT = "employment"


@dataclass(frozen=True)
class Dimension:
    code: str
    role: str
    values: tuple[str, ...]
    filter: str = "item"

    @property
    def cardinality(self) -> int:
        return len(self.values)

    def to_payload(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "selection": {"filter": self.filter, "values": list(self.values)},
        }


@dataclass(frozen=True)
class MetricQuery:
    kind: MetricKind
    table: str
    dimensions: tuple[Dimension, ...]
    response_format: str = "json-stat2"

    def position_of(self, role: str) -> int:
        for position, dimension in enumerate(self.dimensions):
            if dimension.role == role:
                return position
        raise KeyError(f"{self.kind.value} query has no {role} dimension")

    def dimension(self, role: str) -> Dimension:
        return self.dimensions[self.position_of(role)]

    @property
    def periods(self) -> tuple[str, ...]:
        return self.dimension(ROLE_PERIOD).values

    @property
    def expected_length(self) -> int:
        total = 1
        for dimension in self.dimensions:
            total *= dimension.cardinality
        return total

    def to_payload(self) -> dict[str, Any]:
        return {
            "query": [dimension.to_payload() for dimension in self.dimensions],
            "response": {"format": self.response_format},
        }


def _years(first: int, last: int) -> tuple[str, ...]:
    return tuple(str(year) for year in range(first, last + 1))


def municipality_code(kunta: str | int) -> str:
    """Map a boundary feature's ``kunta`` number to the API area code (``KU091``)."""
    text = str(kunta).strip()
    if text.startswith(MUNICIPALITY_CODE_PREFIX):
        return text
    return f"{MUNICIPALITY_CODE_PREFIX}{text.zfill(3)}"


POPULATION_TEMPLATE = MetricQuery(
    kind=MetricKind.POPULATION,
    table="vaerak/statfin_vaerak_pxt_11ra.px",
    dimensions=(
        Dimension("Vuosi", ROLE_PERIOD, _years(1990, 2023)),
        Dimension("Alue", ROLE_ENTITY, (WHOLE_COUNTRY_CODE,)),
    ),
)

# The area list is taken from the table metadata at start-up, see
# municipality_service.CrimeDataCache.
CRIME_TEMPLATE = MetricQuery(
    kind=MetricKind.CRIME,
    table="polrik/statfin_polrik_pxt_13it.px",
    dimensions=(
        Dimension("Vuosi", ROLE_PERIOD, _years(2000, 2022)),
        Dimension("Alue", ROLE_ENTITY, ()),
    ),
)

EMPLOYMENT_TEMPLATE = MetricQuery(
    kind=MetricKind.EMPLOYMENT,
    table="tyokay/statfin_tyokay_pxt_115b.px",
    dimensions=(
        Dimension("Alue", ROLE_ENTITY, (WHOLE_COUNTRY_CODE,)),
        Dimension("Pääasiallinen toiminta", ROLE_STATUS, (EMPLOYED, UNEMPLOYED)),
        Dimension("Sukupuoli", ROLE_BREAKDOWN, (WHOLE_COUNTRY_CODE,)),
        Dimension("Vuosi", ROLE_PERIOD, _years(1987, 2022)),
    ),
)

TEMPLATES: dict[MetricKind, MetricQuery] = {
    MetricKind.POPULATION: POPULATION_TEMPLATE,
    MetricKind.CRIME: CRIME_TEMPLATE,
    MetricKind.EMPLOYMENT: EMPLOYMENT_TEMPLATE,
}


def _dedupe(codes: Iterable[str]) -> tuple[str, ...]:
    seen: set[str] = set()
    out: list[str] = []
    for code in codes:
        code = str(code).strip()
        if code and code not in seen:
            seen.add(code)
            out.append(code)
    return tuple(out)


def build_query(kind: MetricKind, entities: str | Iterable[str]) -> MetricQuery:
    """Return a fresh query for ``kind`` with its entity dimension set to ``entities``.

    Only the entity dimension changes; every other dimension is carried over
    from the template as-is. The template itself is frozen and never modified.
    """
    codes = _dedupe([entities] if isinstance(entities, str) else entities)
    if not codes:
        raise ValueError(f"{kind.value} query needs at least one entity code")

    template = TEMPLATES[kind]
    position = template.position_of(ROLE_ENTITY)
    dimensions = list(template.dimensions)
    dimensions[position] = replace(dimensions[position], values=codes)
    return replace(template, dimensions=tuple(dimensions))
