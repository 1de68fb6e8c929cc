"""Tests for flat-array decoding of PxWeb results."""
from __future__ import annotations

import pytest

from backend.app.decoder import (
    DivisionByZeroError,
    NoDataError,
    UnknownEntityError,
    crime_latest,
    crime_series,
    employment_rate,
    employment_rates,
    format_percent,
    population_series,
    round_half_away,
    select_series,
    strides,
)
from backend.app.queries import (
    EMPLOYED,
    EMPLOYMENT_TEMPLATE,
    ROLE_BREAKDOWN,
    ROLE_ENTITY,
    ROLE_PERIOD,
    ROLE_STATUS,
    UNEMPLOYED,
    Dimension,
    MetricKind,
    MetricQuery,
    build_query,
)


def _crime_query(periods: tuple[str, ...], areas: tuple[str, ...]) -> MetricQuery:
    return MetricQuery(
        kind=MetricKind.CRIME,
        table="polrik/test.px",
        dimensions=(
            Dimension("Vuosi", ROLE_PERIOD, periods),
            Dimension("Alue", ROLE_ENTITY, areas),
        ),
    )


def _employment_query(periods: tuple[str, ...], statuses=(EMPLOYED, UNEMPLOYED)) -> MetricQuery:
    return MetricQuery(
        kind=MetricKind.EMPLOYMENT,
        table="tyokay/test.px",
        dimensions=(
            Dimension("Alue", ROLE_ENTITY, ("KU091",)),
            Dimension("Pääasiallinen toiminta", ROLE_STATUS, statuses),
            Dimension("Sukupuoli", ROLE_BREAKDOWN, ("SSS",)),
            Dimension("Vuosi", ROLE_PERIOD, periods),
        ),
    )


# ---------------------------------------------------------------------------
# Crime: entity nested inside period
# ---------------------------------------------------------------------------


def test_crime_example_latest_and_series():
    query = _crime_query(("2021", "2022"), ("KU005", "KU009", "KU091"))
    flat = [10, 20, 30, 40, 50, 60]

    assert crime_latest(flat, query, "KU009") == 50
    series = crime_series(flat, query, "KU009")
    assert list(series.values) == [20, 50]
    assert series.periods == ("2021", "2022")


def test_crime_latest_matches_flat_offset_for_every_entity():
    periods = tuple(str(year) for year in range(2000, 2023))
    areas = tuple(f"KU{n:03d}" for n in range(1, 8))
    flat = list(range(len(periods) * len(areas)))
    query = _crime_query(periods, areas)

    for index, code in enumerate(areas):
        assert crime_latest(flat, query, code) == flat[(len(periods) - 1) * len(areas) + index]


def test_crime_series_takes_every_entity_count_th_value():
    periods = ("2019", "2020", "2021", "2022")
    areas = ("SSS", "KU005", "KU009")
    flat = [p * 100 + a for p in range(len(periods)) for a in range(len(areas))]
    query = _crime_query(periods, areas)

    for index, code in enumerate(areas):
        series = crime_series(flat, query, code)
        assert len(series.values) == len(periods)
        expected = [flat[i] for i in range(len(flat)) if i % len(areas) == index]
        assert list(series.values) == expected
        assert series.latest == crime_latest(flat, query, code)


def test_crime_layout_follows_sent_entity_order():
    flat = [1, 2, 3, 4]
    forward = _crime_query(("2021", "2022"), ("KU005", "KU009"))
    reverse = _crime_query(("2021", "2022"), ("KU009", "KU005"))

    assert list(crime_series(flat, forward, "KU005").values) == [1, 3]
    assert list(crime_series(flat, reverse, "KU005").values) == [2, 4]


def test_unknown_entity_raises_without_result():
    query = _crime_query(("2021", "2022"), ("KU005", "KU009", "KU091"))
    flat = [10, 20, 30, 40, 50, 60]

    with pytest.raises(UnknownEntityError) as exc_info:
        crime_series(flat, query, "KU999")
    assert exc_info.value.code == "KU999"
    assert exc_info.value.dimension == "Alue"

    with pytest.raises(UnknownEntityError):
        crime_latest(flat, query, "KU999")


def test_empty_result_is_no_data():
    query = _crime_query(("2021", "2022"), ("KU005", "KU009"))
    with pytest.raises(NoDataError):
        crime_latest([], query, "KU005")
    with pytest.raises(NoDataError):
        employment_rates([], _employment_query(("2022",)), "KU091")


def test_short_result_is_no_data():
    query = _crime_query(("2021", "2022"), ("KU005", "KU009"))
    with pytest.raises(NoDataError, match="needs 4"):
        crime_series([1, 2, 3], query, "KU005")


# ---------------------------------------------------------------------------
# Population
# ---------------------------------------------------------------------------


def test_population_series_is_the_flat_result():
    query = build_query(MetricKind.POPULATION, "KU091")
    flat = list(range(600000, 600000 + len(query.periods)))

    series = population_series(flat, query, "KU091")
    assert list(series.values) == flat
    assert series.periods == query.periods
    assert series.latest == flat[-1]
    assert series.metric == MetricKind.POPULATION


# ---------------------------------------------------------------------------
# Employment: employed half then unemployed half
# ---------------------------------------------------------------------------


def test_employment_example_rate():
    series = employment_rates([80, 20], _employment_query(("2022",)), "KU091")
    assert series.values == (80.0,)
    assert format_percent(series.latest) == "80.00"


def test_employment_rates_per_period():
    query = _employment_query(("2020", "2021", "2022"))
    flat = [1, 2, 1, 2, 1, 799]

    series = employment_rates(flat, query, "KU091")
    assert list(series.values) == [33.33, 66.67, 0.13]


def test_employment_rates_are_idempotent():
    query = _employment_query(("2020", "2021", "2022"))
    flat = [700, 650, 690, 300, 350, 310]

    assert employment_rates(flat, query, "KU091") == employment_rates(flat, query, "KU091")


def test_employment_rates_stay_within_percent_range():
    query = _employment_query(tuple(str(year) for year in range(2010, 2016)))
    flat = [0, 5, 100, 3, 999, 1] + [7, 0, 1, 3, 1, 999]

    for rate in employment_rates(flat, query, "KU091").values:
        assert 0 <= rate <= 100


def test_zero_denominator_only_blanks_that_period():
    query = _employment_query(("2020", "2021", "2022"))
    flat = [5, 0, 3, 5, 0, 1]

    series = employment_rates(flat, query, "KU091")
    assert list(series.values) == [50.0, None, 75.0]


def test_employment_rate_raises_division_by_zero():
    with pytest.raises(DivisionByZeroError) as exc_info:
        employment_rate(0, 0, "2021")
    assert exc_info.value.period == "2021"


def test_employment_status_order_comes_from_query():
    query = _employment_query(("2022",), statuses=(UNEMPLOYED, EMPLOYED))
    assert employment_rates([20, 80], query, "KU091").values == (80.0,)


def test_employment_query_without_both_statuses_is_no_data():
    query = _employment_query(("2022",), statuses=(EMPLOYED,))
    with pytest.raises(NoDataError):
        employment_rates([80], query, "KU091")


# ---------------------------------------------------------------------------
# Layout helpers
# ---------------------------------------------------------------------------


def test_strides_from_template_cardinalities():
    query = build_query(MetricKind.EMPLOYMENT, "KU091")
    period_count = len(EMPLOYMENT_TEMPLATE.periods)
    assert strides(query) == [2 * period_count, period_count, period_count, 1]


def test_select_series_requires_position_for_wide_dimensions():
    query = _crime_query(("2021", "2022"), ("KU005", "KU009"))
    with pytest.raises(ValueError):
        select_series([1, 2, 3, 4], query, {})


@pytest.mark.parametrize(
    ("value", "expected"),
    [(2.675, 2.68), (-2.675, -2.68), (0.125, 0.13), (80, 80.0), (33.3349, 33.33)],
)
def test_round_half_away_from_zero(value, expected):
    assert round_half_away(value) == expected


def test_format_percent_keeps_two_decimals():
    assert format_percent(70.5) == "70.50"
    assert format_percent(None) is None
