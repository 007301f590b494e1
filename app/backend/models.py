from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, field_validator
from pydantic.alias_generators import to_camel

from .constants import MAX_COLUMN_INT, MAX_TOP_INVESTORS


# Strict so that "12" or true never pass as a number. NaN and Infinity do not
# survive a JSON round trip.
StrictFloat = Annotated[float, Field(strict=True, allow_inf_nan=False)]
# Stored in INTEGER columns.
Count = Annotated[int, Field(strict=True, ge=0, le=MAX_COLUMN_INT)]

SCORE_KEYS = (
    "marketPotential",
    "teamStrength",
    "productInnovation",
    "competitiveAdvantage",
    "financialViability",
)
SWOT_KEYS = ("strengths", "weaknesses", "opportunities", "threats")
RISK_LEVELS = ("low", "medium", "high")
INVESTMENT_POTENTIALS = ("strong", "moderate", "weak")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StartupRecord:
    id: int
    submission_key: str
    status: str
    created_at: datetime
    organization_name: Optional[str] = None
    url: Optional[str] = None
    location: Optional[str] = None
    industries: Optional[List[str]] = None
    industry_groups: Optional[List[str]] = None
    funding_rounds: Optional[int] = None
    last_funding: Optional[float] = None
    last_funding_type: Optional[str] = None
    equity: Optional[float] = None
    total_funding: Optional[float] = None
    valuation: Optional[float] = None
    last_valuation_date: Optional[date] = None
    revenue: Optional[float] = None
    growth: Optional[float] = None
    founders_count: Optional[int] = None
    employees_count: Optional[int] = None
    founders: Optional[List[dict]] = None
    top_investors: Optional[List[str]] = None
    monthly_metrics: Optional[List[dict]] = None
    key_metrics: Optional[List[dict]] = None
    ai_analysis: Optional[dict] = None
    analysis_error: Optional[str] = None


@dataclass
class UserRecord:
    id: str
    username: str
    created_at: datetime


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProfileModel(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class Founder(ProfileModel):
    name: StrictStr
    role: Optional[StrictStr] = None
    linked_in: Optional[StrictStr] = None
    education: Optional[StrictStr] = None
    experience: Optional[StrictStr] = None
    previous_companies: List[StrictStr] = Field(default_factory=list)
    achievements: List[StrictStr] = Field(default_factory=list)


class MonthlyMetric(ProfileModel):
    date: StrictStr
    revenue: Optional[StrictFloat] = None
    users: Optional[StrictInt] = None
    growth: Optional[StrictFloat] = None
    burn: Optional[StrictFloat] = None


class KeyMetric(ProfileModel):
    metric: StrictStr
    value: Union[StrictInt, StrictFloat, StrictStr]
    change: Optional[StrictFloat] = None
    timeframe: Optional[StrictStr] = None


class StartupProfile(ProfileModel):
    """Editable business fields of a submission. Every field is optional."""

    organization_name: Optional[StrictStr] = None
    url: Optional[StrictStr] = None
    location: Optional[StrictStr] = None
    industries: Optional[List[StrictStr]] = None
    industry_groups: Optional[List[StrictStr]] = None
    funding_rounds: Optional[Count] = None
    last_funding: Optional[StrictFloat] = None
    last_funding_type: Optional[StrictStr] = None
    equity: Optional[StrictFloat] = None
    total_funding: Optional[StrictFloat] = None
    valuation: Optional[StrictFloat] = None
    last_valuation_date: Optional[date] = None
    revenue: Optional[StrictFloat] = None
    growth: Optional[StrictFloat] = None
    founders_count: Optional[Count] = None
    employees_count: Optional[Count] = None
    founders: Optional[List[Founder]] = None
    top_investors: Optional[List[StrictStr]] = Field(default=None, max_length=MAX_TOP_INVESTORS)
    monthly_metrics: Optional[List[MonthlyMetric]] = None
    key_metrics: Optional[List[KeyMetric]] = None

    @field_validator("last_valuation_date", mode="before")
    @classmethod
    def _keep_date_part(cls, value: Any) -> Any:
        # Browsers post the date as a full ISO timestamp.
        if isinstance(value, str) and len(value) > 10 and value[10] in ("T", " "):
            return value[:10]
        return value


PROFILE_FIELDS = tuple(StartupProfile.model_fields.keys())


class EvaluationScores(CamelModel):
    market_potential: int
    team_strength: int
    product_innovation: int
    competitive_advantage: int
    financial_viability: int


class SwotAnalysis(CamelModel):
    strengths: List[str]
    weaknesses: List[str]
    opportunities: List[str]
    threats: List[str]


class Evaluation(CamelModel):
    scores: EvaluationScores
    analysis: SwotAnalysis
    recommendations: List[str]
    risk_level: Literal["low", "medium", "high"]
    investment_potential: Literal["strong", "moderate", "weak"]


class CreateSubmissionResponse(BaseModel):
    key: str


class FieldError(BaseModel):
    path: str
    message: str
    type: str


class StartupResponse(CamelModel):
    id: int
    submission_key: str
    status: str
    created_at: datetime
    organization_name: Optional[str] = None
    url: Optional[str] = None
    location: Optional[str] = None
    industries: Optional[List[str]] = None
    industry_groups: Optional[List[str]] = None
    funding_rounds: Optional[int] = None
    last_funding: Optional[float] = None
    last_funding_type: Optional[str] = None
    equity: Optional[float] = None
    total_funding: Optional[float] = None
    valuation: Optional[float] = None
    last_valuation_date: Optional[date] = None
    revenue: Optional[float] = None
    growth: Optional[float] = None
    founders_count: Optional[int] = None
    employees_count: Optional[int] = None
    founders: Optional[List[Dict[str, Any]]] = None
    top_investors: Optional[List[str]] = None
    monthly_metrics: Optional[List[Dict[str, Any]]] = None
    key_metrics: Optional[List[Dict[str, Any]]] = None
    ai_analysis: Optional[Evaluation] = None
    analysis_error: Optional[str] = None


class Credentials(BaseModel):
    username: str = Field(min_length=3)
    password: str = Field(min_length=6)


class UserResponse(BaseModel):
    id: str
    username: str


class SessionResponse(CamelModel):
    user: UserResponse
    access_token: Optional[str] = None


class ScoreBar(BaseModel):
    key: str
    label: str
    score: int
    percent: int


class DashboardResponse(CamelModel):
    submission_key: str
    organization_name: Optional[str] = None
    industries: List[str] = Field(default_factory=list)
    location: Optional[str] = None
    url: Optional[str] = None
    total_funding: Optional[float] = None
    investment_potential: str
    risk_level: str
    score_bars: List[ScoreBar]
    revenue_series: List[Dict[str, Any]] = Field(default_factory=list)
    key_metrics: List[Dict[str, Any]] = Field(default_factory=list)
    founders: List[Dict[str, Any]] = Field(default_factory=list)
    swot: Dict[str, List[str]]
    recommendations: List[str] = Field(default_factory=list)


def startup_to_response(record: StartupRecord) -> StartupResponse:
    return StartupResponse(
        id=record.id,
        submission_key=record.submission_key,
        status=record.status,
        created_at=record.created_at,
        **{field: getattr(record, field) for field in PROFILE_FIELDS},
        ai_analysis=record.ai_analysis,
        analysis_error=record.analysis_error,
    )
