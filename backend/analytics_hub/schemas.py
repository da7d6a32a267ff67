# backend/analytics_hub/schemas.py

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


# ---------------- Data profile ----------------
class ColumnProfile(BaseModel):
    name: str
    type: Literal["numeric", "date", "text"]
    sample_values: List[Any] = Field(default_factory=list)
    null_count: int = 0
    unique_count: int = 0
    min: Optional[float] = None
    max: Optional[float] = None
    mean: Optional[float] = None


class DataSummary(BaseModel):
    total_rows: int
    total_columns: int


class DataProfile(BaseModel):
    columns: Dict[str, ColumnProfile]
    summary: DataSummary
    sample_rows: List[List[Any]] = Field(default_factory=list)


# ---------------- Model configuration ----------------
TrainingSplit = Literal["80-20", "70-30", "90-10"]
ValidationMethod = Literal["holdout", "cv", "stratified"]


class _Config(BaseModel):
    model_config = ConfigDict(extra="forbid")


class SupervisedConfig(_Config):
    target_column: str
    feature_columns: Optional[List[str]] = None
    training_split: TrainingSplit = "80-20"
    validation_method: ValidationMethod = "holdout"
    random_state: int = 42

    @property
    def test_size(self) -> float:
        return int(self.training_split.split("-")[1]) / 100.0

    @model_validator(mode="after")
    def _target_not_feature(self):
        if self.feature_columns and self.target_column in self.feature_columns:
            raise ValueError("target_column must not be listed in feature_columns")
        return self


class ClassificationConfig(SupervisedConfig):
    algorithm: Literal["random_forest", "logistic_regression"] = "random_forest"


class RegressionConfig(SupervisedConfig):
    algorithm: Literal["linear", "random_forest"] = "linear"


class ClusteringConfig(_Config):
    feature_columns: Optional[List[str]] = None
    n_clusters: int = Field(default=3, ge=2, le=20)
    max_iter: int = Field(default=300, ge=10, le=5000)
    random_state: int = 42


class ForecastConfig(_Config):
    target_column: str
    date_column: str
    forecast_horizon: int = Field(default=30, ge=1, le=365)


class RecommendationConfig(_Config):
    user_column: str
    item_column: str
    rating_column: str
    top_k: int = Field(default=10, ge=1, le=100)


CONFIG_TYPES: Dict[str, Type[_Config]] = {
    "classification": ClassificationConfig,
    "regression": RegressionConfig,
    "clustering": ClusteringConfig,
    "forecast": ForecastConfig,
    "recommendation": RecommendationConfig,
}

PROBLEM_SUBTYPES: Dict[str, Dict[str, str]] = {
    "classification": {
        "churn": "Customer Churn Prediction",
        "fraud": "Fraud Detection",
        "sentiment": "Sentiment Analysis",
        "quality": "Quality Assessment",
    },
    "regression": {
        "revenue": "Revenue Forecasting",
        "pricing": "Price Optimization",
        "demand": "Demand Prediction",
        "ltv": "Customer Lifetime Value",
    },
    "clustering": {
        "segmentation": "Customer Segmentation",
        "market": "Market Segmentation",
        "product": "Product Clustering",
        "user": "User Behavior Clustering",
    },
    "forecast": {
        "time_series": "Time Series Forecast",
    },
    "recommendation": {
        "collaborative_filtering": "Collaborative Filtering",
    },
}

ProblemType = Literal["classification", "regression", "clustering", "forecast", "recommendation"]


def parse_configuration(problem_type: str, raw: Optional[Dict[str, Any]]) -> _Config:
    cls = CONFIG_TYPES.get(problem_type)
    if cls is None:
        raise ValueError(f"unsupported problem_type: {problem_type}")
    return cls.model_validate(raw or {})


# ---------------- Requests ----------------
class ProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    company: Optional[str] = None


class PreviewRequest(BaseModel):
    limit: int = Field(default=50, ge=1, le=1000)


class ChartRequest(BaseModel):
    x_column: str
    y_column: str
    chart_type: Literal["bar", "line", "area", "scatter", "pie"] = "bar"
    limit: Optional[int] = Field(default=None, ge=1)


class ModelCreate(BaseModel):
    dataset_id: str
    problem_type: ProblemType
    problem_subtype: Optional[str] = None
    name: Optional[str] = None
    configuration: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check(self):
        subtypes = PROBLEM_SUBTYPES[self.problem_type]
        if self.problem_subtype is None:
            self.problem_subtype = next(iter(subtypes))
        elif self.problem_subtype not in subtypes:
            raise ValueError(
                f"problem_subtype '{self.problem_subtype}' is not valid for {self.problem_type}; "
                f"expected one of {sorted(subtypes)}"
            )
        cfg = parse_configuration(self.problem_type, self.configuration)
        self.configuration = cfg.model_dump()
        if not self.name:
            self.name = f"{subtypes[self.problem_subtype]} Model"
        return self


class TrainRequest(BaseModel):
    idempotency_key: Optional[str] = None
    force: bool = False

    @field_validator("idempotency_key")
    @classmethod
    def _strip(cls, v: Optional[str]) -> Optional[str]:
        v = (v or "").strip()
        return v or None


# ---------------- Assistant ----------------
class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(min_length=1)


class ChatRequest(BaseModel):
    messages: List[ChatMessage] = Field(min_length=1)


class AnalyzeRequest(BaseModel):
    content: str = Field(min_length=1)
    analysis_type: Literal["summarize", "analyze", "simplify"] = Field(
        "summarize", validation_alias=AliasChoices("analysis_type", "analysisType"),
    )

    @field_validator("content")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("content must not be blank")
        return v


# ---------------- Responses ----------------
class ChartData(BaseModel):
    labels: List[str]
    values: List[float]
    chart_type: str
    x_column: str
    y_column: str


class RunStatus(BaseModel):
    id: str
    model_id: Optional[str] = None
    status: str
    progress: float = 0.0
    message: str = ""
    attempts: int = 0
    cancel_requested: bool = False
    metrics: Dict[str, Any] = Field(default_factory=dict)


class ChatResponse(BaseModel):
    message: str


class AnalyzeResponse(BaseModel):
    result: str
