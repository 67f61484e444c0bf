"""Pydantic v2 schemas for scoring-engine I/O and API request/response validation."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """API model serialized with camelCase keys, accepting either form on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Transcript
# ---------------------------------------------------------------------------


class Utterance(BaseModel):
    """One labeled, time-stamped unit of transcript text (times in ms)."""

    speaker: str
    start: int
    end: int
    text: str


class TranscriptJson(BaseModel):
    """Structured transcript consumed by the scoring engine."""

    utterances: list[Utterance] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Scoring engine output
# ---------------------------------------------------------------------------


class CategoryScore(BaseModel):
    """Score and supporting detail for one of value / trust / fit / logistics."""

    model_config = ConfigDict(extra="allow")

    score: float
    summary: str = ""
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)


class CoachingRecommendation(BaseModel):
    priority: str = "medium"  # high, medium, low
    category: str
    issue: str
    explanation: str = ""
    action: str = ""


class TimestampedFeedback(BaseModel):
    model_config = ConfigDict(extra="allow")

    timestamp: int  # ms into the call
    type: str = "note"  # strength, weakness, note
    message: str


class ProspectDifficulty(BaseModel):
    """How hard the prospect was; execution_resistance is 1 (blocked) to 10 (able)."""

    model_config = ConfigDict(extra="allow")

    execution_resistance: int | None = None
    difficulty_index: int | None = None
    difficulty_tier: str | None = None


class OutcomeExtraction(BaseModel):
    """Business outcome the engine read from the conversation, if any."""

    result: str | None = None
    qualified: bool | None = None
    cash_collected: float | None = None
    revenue_generated: float | None = None
    reason_for_outcome: str | None = None


class SkillScore(BaseModel):
    skill: str
    score: float  # 0-10


class AnalysisResult(BaseModel):
    """Full scoring-engine result for one transcript."""

    overall_score: float
    value: CategoryScore
    trust: CategoryScore
    fit: CategoryScore
    logistics: CategoryScore
    skill_scores: list[SkillScore] = Field(default_factory=list)
    coaching_recommendations: list[CoachingRecommendation] = Field(default_factory=list)
    timestamped_feedback: list[TimestampedFeedback] = Field(default_factory=list)
    prospect_difficulty: ProspectDifficulty | None = None
    outcome: OutcomeExtraction | None = None

    @field_validator("skill_scores", mode="before")
    @classmethod
    def _skill_map_to_list(cls, value):
        # Stored analyses keep skills as a {skill: score} map
        if isinstance(value, dict):
            return [{"skill": k, "score": v} for k, v in value.items()]
        return value

    def skill_map(self) -> dict[str, float]:
        return {s.skill: s.score for s in self.skill_scores}


# ---------------------------------------------------------------------------
# Calls API
# ---------------------------------------------------------------------------


class ManualCallCreate(CamelModel):
    """Structured outcome fields for a manually logged call."""

    date: str | None = None
    offer_id: str | None = None
    offer_type: str | None = None
    call_type: str | None = None
    result: str | None = None
    qualified: bool | None = None
    cash_collected: float | None = None
    revenue_generated: float | None = None
    deposit_taken: bool | None = None
    reason_for_outcome: str | None = None
    objections: list[Any] | None = None


class CallAcceptedResponse(CamelModel):
    call_id: str
    status: str
    message: str


class CallAnalysisResponse(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    overall_score: float
    value_score: float | None = None
    trust_score: float | None = None
    fit_score: float | None = None
    logistics_score: float | None = None
    value_details: dict | None = None
    trust_details: dict | None = None
    fit_details: dict | None = None
    logistics_details: dict | None = None
    skill_scores: dict | None = None
    coaching_recommendations: list | None = None
    timestamped_feedback: list | None = None
    prospect_difficulty: dict | None = None
    created_at: datetime | None = None


class CallResponse(CamelModel):
    """Call record as returned to pollers."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    organization_id: str
    user_id: str
    origin: str
    file_name: str
    status: str
    analysis_intent: str | None = None
    duration: float | None = None
    result: str | None = None
    qualified: bool | None = None
    cash_collected: float | None = None
    revenue_generated: float | None = None
    reason_for_outcome: str | None = None
    call_date: datetime | None = None
    original_call_id: str | None = None
    created_at: datetime
    completed_at: datetime | None = None
    analysis: CallAnalysisResponse | None = None


# ---------------------------------------------------------------------------
# Figures
# ---------------------------------------------------------------------------


class FiguresSummary(CamelModel):
    """Monthly sales figures for one rep."""

    month: str
    calls_booked: int = 0
    calls_showed: int = 0
    calls_qualified: int = 0
    sales_made: int = 0
    close_rate: float = 0
    show_rate: float = 0
    qualified_rate: float = 0
    cash_collected: float = 0
    revenue_generated: float = 0
    cash_collected_pct: float = 0


# ---------------------------------------------------------------------------
# Roleplay
# ---------------------------------------------------------------------------


class RoleplayScoreResponse(CamelModel):
    analysis: CallAnalysisResponse
    overall_score: float
    message: str
