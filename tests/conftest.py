"""Shared fakes for the Statistics Finland API; no test touches the network."""
from __future__ import annotations

import copy

import pytest

from backend.app.statfin_service import UpstreamAPIError

AREA_CODES = ["SSS", "KU005", "KU009", "KU091"]
AREA_TEXTS = ["WHOLE COUNTRY", "Alajärvi", "Alavieska", "Helsinki"]

_MAP_PAYLOAD = {
    "type": "FeatureCollection",
    "features": [
        {
            "type": "Feature",
            "geometry": {"type": "Polygon", "coordinates": [[[24.8, 60.1], [25.0, 60.1], [25.0, 60.3], [24.8, 60.1]]]},
            "properties": {"kunta": "091", "name": "Helsinki"},
        },
        {
            "type": "Feature",
            "geometry": {"type": "Polygon", "coordinates": [[[23.6, 63.0], [23.9, 63.0], [23.9, 63.2], [23.6, 63.0]]]},
            "properties": {"kunta": 5, "name": "Alajärvi"},
        },
    ],
}


def crime_value(period_index: int, area_index: int) -> int:
    return 1000 * period_index + area_index


def population_value(area_index: int, period_index: int) -> int:
    return 5000 * (area_index + 1) + period_index


def _metadata_payload() -> dict:
    return {
        "title": "fake table",
        "variables": [
            {"code": "Vuosi", "values": ["2022"], "valueTexts": ["2022"]},
            {"code": "Alue", "values": list(AREA_CODES), "valueTexts": list(AREA_TEXTS)},
        ],
    }


class FakeStatfin:
    """Answers by request stage, the way the real tables lay out their values."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.bodies: list[tuple[str, dict]] = []
        self.employment = (80, 20)
        self.empty_stages: set[str] = set()
        self.failing_stages: set[str] = set()

    def _check_failure(self, stage: str) -> None:
        if stage in self.failing_stages:
            raise UpstreamAPIError(stage, "HTTP 503: Service Unavailable")

    async def request_json(self, client, url, *, stage, config):  # type: ignore[no-untyped-def]
        self.calls.append(stage)
        self._check_failure(stage)
        if stage in ("municipalities", "crime_areas"):
            return _metadata_payload()
        if stage == "map":
            return copy.deepcopy(_MAP_PAYLOAD)
        raise AssertionError(f"Unexpected stage: {stage}")

    async def post_query(self, client, url, *, query, stage, config):  # type: ignore[no-untyped-def]
        self.calls.append(stage)
        self.bodies.append((stage, query))
        self._check_failure(stage)
        if stage in self.empty_stages:
            return {"value": []}

        selected = {item["code"]: item["selection"]["values"] for item in query["query"]}
        years = selected["Vuosi"]
        if stage == "population":
            area = selected["Alue"][0]
            area_index = AREA_CODES.index(area) if area in AREA_CODES else 0
            return {"value": [population_value(area_index, i) for i in range(len(years))]}
        if stage == "crime":
            areas = selected["Alue"]
            return {"value": [crime_value(p, a) for p in range(len(years)) for a in range(len(areas))]}
        if stage == "employment":
            employed, unemployed = self.employment
            return {"value": [employed] * len(years) + [unemployed] * len(years)}
        raise AssertionError(f"Unexpected stage: {stage}")


@pytest.fixture()
def fake_statfin(monkeypatch):
    import backend.app.statfin_service as statfin_service

    fake = FakeStatfin()
    monkeypatch.setattr(statfin_service, "request_json", fake.request_json)
    monkeypatch.setattr(statfin_service, "post_query", fake.post_query)
    return fake
