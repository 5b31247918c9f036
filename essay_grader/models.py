"""
Pydantic models for the Essay Grader system.

These models define the schemas for:
- Questions, rubrics and their scoring points
- Per-point match results and the holistic AI critique
- Grading results and the background job that produces them

Model output is untrusted, so the holistic feedback records coerce
whatever the model returned instead of rejecting it.
"""

import math
import re
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)


TERM_SEPARATOR = re.compile(r"[,，、]")


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def round_score(value: float) -> float:
    """Round a score to one decimal place, halves away from zero."""
    return float(Decimal(str(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def _coerce_float(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return number


def _coerce_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _coerce_text_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if not isinstance(value, (list, tuple)):
        return []
    return [_coerce_text(item) for item in value if item is not None and _coerce_text(item).strip()]


def _only_mappings(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, (list, tuple)):
        return []
    return [item for item in value if isinstance(item, dict)]


# ==============================================================================
# Enumerations
# ==============================================================================


class MatchType(str, Enum):
    """How a scoring point was credited."""

    KEYWORD = "keyword"
    SEMANTIC = "semantic"
    PARTIAL = "partial"
    NONE = "none"


class PointStatus(str, Enum):
    """Per-point verdict reported by the holistic critique."""

    FULL = "full"
    PARTIAL = "partial"
    MISSED = "missed"


class SourceType(str, Enum):
    """Provenance of a reference answer."""

    OFFICIAL = "official"
    EXPERT = "expert"
    USER = "user"


class JobStatus(str, Enum):
    """Lifecycle state of a grading job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.ERROR)


# A job that fails before it is picked up goes straight from pending to error.
JOB_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING, JobStatus.ERROR}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.ERROR}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.ERROR: frozenset(),
}


# ==============================================================================
# Question and Rubric Models
# ==============================================================================


class Question(BaseModel):
    """
    An exam question as seen by the grading pipeline.

    ``question_type`` only toggles the document-format check and
    ``exam_level`` is passed to the model as strictness context.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)

    title: str = Field(
        ...,
        min_length=1,
        description="Prompt text of the question",
    )

    max_score: float = Field(
        default=10.0,
        ge=0,
        validation_alias=AliasChoices("max_score", "score"),
        description="Overall maximum score of the question",
    )

    question_type: str = Field(
        default="归纳概括",
        description="Question type tag (e.g. 归纳概括, 贯彻执行, 申发论述)",
    )

    exam_level: str | None = Field(
        default=None,
        description="Exam level tag (e.g. 副省级, 地市级, 行政执法)",
    )

    word_limit: int | None = Field(
        default=None,
        ge=1,
        description="Word limit stated in the question, if any",
    )


class ScoringPoint(BaseModel):
    """
    One gradable unit of content worth a fixed maximum score.

    Keywords define the denominator of the keyword match ratio; synonyms
    only ever add to the numerator. Every must-contain phrase has to be
    present before any keyword credit is given.
    """

    model_config = ConfigDict(frozen=True)

    point_order: int = Field(..., ge=1)

    content: str = Field(
        ...,
        min_length=1,
        description="What the answer has to express to earn this point",
    )

    max_score: float = Field(
        ...,
        ge=0,
        validation_alias=AliasChoices("max_score", "score"),
    )

    keywords: tuple[str, ...] = Field(default=())
    synonyms: tuple[str, ...] = Field(default=())
    must_contain: tuple[str, ...] = Field(default=())

    semantic_threshold: float | None = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Similarity needed for a semantic match; None uses the configured default",
    )

    @field_validator("keywords", "synonyms", "must_contain", mode="before")
    @classmethod
    def drop_blank_terms(cls, v: Any) -> Any:
        """Remove empty terms, which would otherwise match every answer."""
        if v is None:
            return ()
        if isinstance(v, str):
            v = TERM_SEPARATOR.split(v)
        if isinstance(v, (list, tuple)):
            return tuple(str(term).strip() for term in v if term is not None and str(term).strip())
        return v


class Rubric(BaseModel):
    """
    The reference answer for a question plus its ordered scoring points.

    A rubric without scoring points (or whose points are all worth zero)
    is valid; the grader falls back to hybrid scoring for it.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    question_id: str = Field(..., min_length=1)

    full_answer: str = Field(
        default="",
        description="Full reference answer text",
    )

    scoring_points: tuple[ScoringPoint, ...] = Field(default=())

    source_type: SourceType = Field(default=SourceType.EXPERT)
    source_name: str | None = Field(default=None)

    @field_validator("scoring_points", mode="after")
    @classmethod
    def order_points(cls, v: tuple[ScoringPoint, ...]) -> tuple[ScoringPoint, ...]:
        return tuple(sorted(v, key=lambda p: p.point_order))

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_max_score(self) -> float:
        """Sum of all scoring point maxima (may be 0)."""
        return sum((p.max_score for p in self.scoring_points), 0.0)


class CustomRubric(BaseModel):
    """
    A caller-supplied rubric for ad-hoc grading.

    Nothing is persisted; the engine builds a transient question and
    rubric from it for one grading run.
    """

    model_config = ConfigDict(frozen=True)

    title: str = Field(..., min_length=1)
    reference_answer: str = Field(default="")
    word_limit: int | None = Field(default=None, ge=1)
    scoring_points: tuple[ScoringPoint, ...] = Field(default=())

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_max_score(self) -> float:
        return sum((p.max_score for p in self.scoring_points), 0.0)


# ==============================================================================
# Point Match Models
# ==============================================================================


class PointMatch(BaseModel):
    """The credit awarded to one scoring point."""

    model_config = ConfigDict(frozen=True)

    point_order: int
    point_content: str
    max_score: float = Field(..., ge=0)
    earned_score: float = Field(..., ge=0)
    is_matched: bool
    match_type: MatchType
    matched_text: str | None = None
    similarity_score: float | None = Field(default=None, ge=0.0, le=1.0)
    feedback: str | None = None

    @model_validator(mode="after")
    def validate_points_range(self) -> "PointMatch":
        """Ensure earned score doesn't exceed max score."""
        if self.earned_score > self.max_score:
            raise ValueError(
                f"Earned score ({self.earned_score}) cannot exceed "
                f"max score ({self.max_score})"
            )
        return self


# ==============================================================================
# Holistic Feedback Models
# ==============================================================================


class ScoringDetail(BaseModel):
    """The model's own verdict on one scoring point."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    point: str = ""
    score: float = 0.0
    earned: float = 0.0
    status: PointStatus = PointStatus.MISSED
    evidence: str = ""
    missing_keywords: list[str] = Field(default_factory=list)

    @field_validator("point", "evidence", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        return _coerce_text(v)

    @field_validator("score", "earned", mode="before")
    @classmethod
    def coerce_non_negative(cls, v: Any) -> float:
        return max(0.0, _coerce_float(v))

    @field_validator("status", mode="before")
    @classmethod
    def coerce_status(cls, v: Any) -> PointStatus:
        try:
            return PointStatus(str(v).strip().lower())
        except ValueError:
            return PointStatus.MISSED

    @field_validator("missing_keywords", mode="before")
    @classmethod
    def coerce_keywords(cls, v: Any) -> list[str]:
        return _coerce_text_list(v)


class LogicAnalysis(BaseModel):
    """Comparison of the answer's reasoning chain with an ideal one."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    user_logic_chain: list[str] = Field(default_factory=list)
    master_logic_chain: list[str] = Field(default_factory=list)
    gaps: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)

    @field_validator("*", mode="before")
    @classmethod
    def coerce_lists(cls, v: Any) -> list[str]:
        return _coerce_text_list(v)


class SentenceUpgrade(BaseModel):
    """A single sentence rewritten in a more formal register."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    original: str = ""
    upgraded: str = ""
    reason: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        return _coerce_text(v)


class FeedbackDimensions(BaseModel):
    """Four dimension scores, each nominally out of 25."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    understanding: float = 0.0
    logic: float = 0.0
    language: float = 0.0
    norm: float = 0.0

    @field_validator("*", mode="before")
    @classmethod
    def coerce_number(cls, v: Any) -> float:
        return _coerce_float(v)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> float:
        """Sum of all dimensions, nominally out of 100."""
        return self.understanding + self.logic + self.language + self.norm


class HolisticFeedback(BaseModel):
    """
    The multi-dimensional critique produced by one model call.

    Every field is optional in practice: any of them may be absent or
    malformed in the model's reply, in which case the default is used.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    analysis_thought: str = ""
    dimensions: FeedbackDimensions = Field(default_factory=FeedbackDimensions)
    overall_comment: str = ""
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    scoring_details: list[ScoringDetail] = Field(default_factory=list)
    logic_analysis: LogicAnalysis | None = None
    polished_with_marks: str | None = None
    polished_clean: str | None = None
    sentence_upgrades: list[SentenceUpgrade] = Field(default_factory=list)

    @field_validator("analysis_thought", "overall_comment", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        return _coerce_text(v)

    @field_validator("polished_with_marks", "polished_clean", mode="before")
    @classmethod
    def coerce_optional_text(cls, v: Any) -> str | None:
        return None if v is None else _coerce_text(v)

    @field_validator("strengths", "weaknesses", "suggestions", mode="before")
    @classmethod
    def coerce_lists(cls, v: Any) -> list[str]:
        return _coerce_text_list(v)

    @field_validator("dimensions", mode="before")
    @classmethod
    def coerce_dimensions(cls, v: Any) -> Any:
        return v if isinstance(v, (dict, FeedbackDimensions)) else {}

    @field_validator("scoring_details", "sentence_upgrades", mode="before")
    @classmethod
    def coerce_records(cls, v: Any) -> Any:
        if isinstance(v, (list, tuple)) and all(isinstance(i, BaseModel) for i in v):
            return list(v)
        return _only_mappings(v)

    @field_validator("logic_analysis", mode="before")
    @classmethod
    def coerce_logic(cls, v: Any) -> Any:
        return v if isinstance(v, (dict, LogicAnalysis)) else None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def ai_earned_total(self) -> float:
        """Sum of the points the model says the answer earned."""
        return sum((d.earned for d in self.scoring_details), 0.0)


# ==============================================================================
# Peripheral Analysis Models
# ==============================================================================


class FormatCheck(BaseModel):
    """Document-format check for official-writing questions."""

    model_config = ConfigDict(frozen=True)

    has_title: bool
    has_greeting: bool
    has_body: bool
    has_signature: bool
    format_score: float = Field(..., ge=0)
    issues: list[str] = Field(default_factory=list)


class LanguageAnalysis(BaseModel):
    """Language quality ratings, each between 0 and 1."""

    model_config = ConfigDict(frozen=True)

    fluency_score: float = Field(..., ge=0.0, le=1.0)
    accuracy_score: float = Field(..., ge=0.0, le=1.0)
    professionalism_score: float = Field(..., ge=0.0, le=1.0)
    issues: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


class StructureAnalysis(BaseModel):
    """Paragraph-level structure of the answer."""

    model_config = ConfigDict(frozen=True)

    has_introduction: bool
    has_body: bool
    has_conclusion: bool
    paragraph_count: int = Field(..., ge=0)
    structure_score: float = Field(..., ge=0)
    issues: list[str] = Field(default_factory=list)


# ==============================================================================
# Grading Result Models
# ==============================================================================


class GradingResult(BaseModel):
    """
    Complete grading result for one answer.

    Created once per completed job and never modified afterwards.
    """

    model_config = ConfigDict(frozen=True)

    total_score: float = Field(..., ge=0)
    max_score: float = Field(..., ge=0)

    content_score: float = Field(..., ge=0)
    content_max_score: float = Field(..., ge=0)
    format_score: float = Field(default=0.0, ge=0)
    format_max_score: float = Field(default=0.0, ge=0)
    language_score: float = Field(default=0.0, ge=0)
    language_max_score: float = Field(default=0.0, ge=0)

    word_count: int = Field(..., ge=0)
    word_count_deduction: float = Field(default=0.0, ge=0)

    point_matches: tuple[PointMatch, ...] = Field(default=())
    format_check: FormatCheck | None = None
    language_analysis: LanguageAnalysis | None = None
    structure_analysis: StructureAnalysis | None = None
    feedback: HolisticFeedback = Field(default_factory=HolisticFeedback)
    score_explanation: str = ""

    points_hit: int = Field(..., ge=0)
    points_total: int = Field(..., ge=0)
    hit_rate: float = Field(..., ge=0.0, le=1.0)

    graded_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def validate_total_range(self) -> "GradingResult":
        """Ensure the total never exceeds the maximum."""
        if self.total_score > self.max_score:
            raise ValueError(
                f"Total score ({self.total_score}) cannot exceed max score ({self.max_score})"
            )
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def percentage_score(self) -> float:
        """Calculate overall percentage score."""
        if self.max_score == 0:
            return 0.0
        return self.total_score / self.max_score * 100


# ==============================================================================
# Job Models
# ==============================================================================


class JobError(BaseModel):
    """Why a job ended in the error state."""

    model_config = ConfigDict(frozen=True)

    message: str
    trace: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


class GradingJob(BaseModel):
    """
    One asynchronous grading request and its lifecycle state.

    Only the job manager changes a job, by storing an updated copy.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    question_id: str
    content: str
    word_count: int = Field(..., ge=0)
    time_spent: int | None = Field(default=None, ge=0)
    user_id: str | None = None

    status: JobStatus = JobStatus.PENDING
    result: GradingResult | None = None
    error: JobError | None = None

    created_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None


class JobStatusView(BaseModel):
    """What a polling client sees for a job."""

    model_config = ConfigDict(frozen=True)

    status: JobStatus
    progress: int = Field(..., ge=0, le=100)
    message: str
    result: GradingResult | None = None
    error: str | None = None


class JobSummary(BaseModel):
    """One row of the grading history."""

    model_config = ConfigDict(frozen=True)

    id: str
    question_id: str
    user_id: str | None
    status: JobStatus
    progress: int
    word_count: int
    total_score: float | None
    max_score: float | None
    created_at: datetime
    completed_at: datetime | None
