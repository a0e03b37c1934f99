"""
Pydantic models for the analysis context, the final report and the API payload.

Rationale:
- The context threaded through the stages is validated against an explicit
  shape before it replaces the previous one.
- Only the known report leaf fields are strict; `thinking` and the rest of
  `results` stay open mappings for the model's commentary.
- Response models mirror the JSON the frontend consumes, so field names keep
  their camelCase wire spelling.
"""

from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr


class SchemaInfo(BaseModel):
    inferred: StrictBool
    fields: List[StrictStr]


class ContextHeader(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    task: StrictStr
    data_source: StrictStr
    schema_: SchemaInfo = Field(alias="schema")


class AnalysisContext(BaseModel):
    """Shape every stage output must have before it becomes the current context."""

    model_config = ConfigDict(extra="allow")

    context: ContextHeader
    thinking: Dict[str, Any]
    results: Dict[str, Any]


class Recommendation(BaseModel):
    recommendation: StrictStr
    steps: List[StrictStr]


class Report(BaseModel):
    summary: StrictStr
    insights: List[StrictStr]
    recommendations: List[Recommendation]
    strategic_impact: StrictStr
    future_opportunities: StrictStr


# ---------- chart aggregates ----------

class SeriesTotals(BaseModel):
    labels: List[str] = Field(default_factory=list)
    values: List[float] = Field(default_factory=list)


class ScatterPoint(BaseModel):
    x: Any
    y: float
    size: float


class ScatterDataset(BaseModel):
    label: str
    data: List[ScatterPoint]
    backgroundColor: str


class ScatterData(BaseModel):
    datasets: List[ScatterDataset] = Field(default_factory=list)


class TimeSeriesDataset(BaseModel):
    label: str
    data: List[float]
    borderColor: str
    fill: bool = False


class TimeSeries(BaseModel):
    labels: List[str] = Field(default_factory=list)
    datasets: List[TimeSeriesDataset] = Field(default_factory=list)


class ChartData(BaseModel):
    regionSales: SeriesTotals
    productSales: SeriesTotals
    scatterData: ScatterData
    timeSeries: TimeSeries


# ---------- API payload ----------

class StagePrompt(BaseModel):
    stage: str
    prompt: str


class StageResult(BaseModel):
    stage: str
    result: Dict[str, Any]


class AnalysisResponse(BaseModel):
    prompts: List[StagePrompt]
    intermediateResults: List[StageResult]
    reportData: Dict[str, Any]
    chartData: ChartData


class ErrorResponse(BaseModel):
    error: str
