from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .composer import ChartState, ChartType, ChartView, PopupSummary as PopupSummaryData
from .queries import MetricKind


class ErrorResponse(BaseModel):
    detail: str


class Municipality(BaseModel):
    code: str
    name: str


class LabeledSeries(BaseModel):
    labels: list[str]
    values: list[int | float | None]


class ChartStateModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    metric: MetricKind = MetricKind.POPULATION
    chart_type: ChartType = ChartType.LINE
    entity_code: str = Field(default="SSS", min_length=1, max_length=20)
    entity_name: str = Field(default="Finland", min_length=1, max_length=120)

    @classmethod
    def from_state(cls, state: ChartState) -> "ChartStateModel":
        return cls(
            metric=state.metric,
            chart_type=state.chart_type,
            entity_code=state.entity_code,
            entity_name=state.entity_name,
        )


class PopupSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    latest_population: int | float | None = Field(None, alias="latestPopulation")
    latest_crime_count: int | float | None = Field(None, alias="latestCrimeCount")
    latest_employment_rate_percent: str | None = Field(None, alias="latestEmploymentRatePercent")

    @classmethod
    def from_summary(cls, summary: PopupSummaryData) -> "PopupSummary":
        return cls(
            name=summary.name,
            latest_population=summary.latest_population,
            latest_crime_count=summary.latest_crime_count,
            latest_employment_rate_percent=summary.latest_employment_rate_percent,
        )


class ChartResponse(BaseModel):
    state: ChartStateModel
    title: str
    series: LabeledSeries

    @classmethod
    def from_view(cls, view: ChartView) -> "ChartResponse":
        return cls(
            state=ChartStateModel.from_state(view.state),
            title=view.state.title,
            series=LabeledSeries(labels=list(view.series.labels), values=list(view.series.values)),
        )


class EntitySelectionRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    code: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=120)

    @field_validator("code", "name")
    @classmethod
    def strip_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class MetricSelectionRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    metric: MetricKind


class EntitySelectionResponse(BaseModel):
    chart: ChartResponse
    summary: PopupSummary
