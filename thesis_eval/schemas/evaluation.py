"""
thesis_eval/schemas/evaluation.py
Pydantic schemas for the evaluation workflow

Covers the unified evaluation record, the feedback form schema,
score summaries, assignment reports and request bodies.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


EvaluationKindLiteral = Literal["panelist", "student"]
StatusLiteral = Literal["pending", "submitted", "locked"]
FilterStatusLiteral = Literal["all", "pending", "submitted", "locked"]


# ============================================================================
# Caller identity
# ============================================================================

class Caller(BaseModel):
    """Already-authenticated acting party, supplied by the gateway."""
    id: Optional[str] = None
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_staff_or_admin(self) -> bool:
        return self.role in ("admin", "staff")


# ============================================================================
# Unified evaluation record
# ============================================================================

class EvaluationRecord(BaseModel):
    """
    One logical evaluation, whichever table it lives in.

    `evaluator_id` holds the panelist user id for kind=panelist and the
    student user id for kind=student. Identity is (kind, id).
    """
    id: str
    kind: EvaluationKindLiteral
    assignee_role: EvaluationKindLiteral
    schedule_id: str
    evaluator_id: str
    status: str
    submitted_at: Optional[datetime] = None
    locked_at: Optional[datetime] = None
    created_at: datetime

    # Student feedback only
    form_id: Optional[str] = None
    answers: Optional[Dict[str, Any]] = None
    updated_at: Optional[datetime] = None

    @property
    def ref(self) -> tuple:
        return (self.kind, self.id)


# ============================================================================
# Feedback form schema
# ============================================================================

class FormQuestionScale(BaseModel):
    model_config = ConfigDict(extra="allow")

    min: Optional[float] = None
    max: Optional[float] = None


class FormQuestion(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    label: Optional[str] = None
    type: str = "text"
    required: bool = False
    min: Optional[float] = None
    max: Optional[float] = None
    weight: Optional[float] = None
    options: Optional[List[Any]] = None
    scale: Optional[FormQuestionScale] = None


class FormSection(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    title: Optional[str] = None
    questions: List[FormQuestion] = Field(default_factory=list)


class FormSchema(BaseModel):
    model_config = ConfigDict(extra="allow")

    version: int = 1
    key: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    sections: List[FormSection] = Field(default_factory=list)


class FeedbackFormCreate(BaseModel):
    key: str = Field(..., min_length=1, max_length=120)
    version: int = Field(1, ge=1)
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    schema_: FormSchema = Field(..., alias="schema")
    active: bool = False

    model_config = ConfigDict(populate_by_name=True)


# ============================================================================
# Scoring
# ============================================================================

class BreakdownEntry(BaseModel):
    value: Any = None
    max: Optional[float] = None
    weight: Optional[float] = None
    scored: bool = True


class ScoreSummary(BaseModel):
    total_score: float = 0.0
    max_score: float = 0.0
    percentage: float = 0.0
    breakdown: Dict[str, BreakdownEntry] = Field(default_factory=dict)


class RequiredAnswersCheck(BaseModel):
    ok: bool
    missing: List[str] = Field(default_factory=list)


# ============================================================================
# Assignment
# ============================================================================

class AssignmentMode(str, Enum):
    ALL = "all"
    PARTICULAR = "particular"


class AssignmentOutcome(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    NOTHING_TO_DO = "nothing_to_do"
    NO_ELIGIBLE = "no_eligible"


class AssignmentFailure(BaseModel):
    evaluator_id: str
    message: str


class AssignmentCounts(BaseModel):
    targeted: int = 0
    created: int = 0
    updated: int = 0
    existing: int = 0
    failed: int = 0
    invalid: int = 0


class AssignmentResult(BaseModel):
    """Report of one bulk assignment call. Never persisted."""
    schedule_id: str
    role: EvaluationKindLiteral
    outcome: AssignmentOutcome
    targeted_ids: List[str] = Field(default_factory=list)
    created: List[EvaluationRecord] = Field(default_factory=list)
    updated: List[EvaluationRecord] = Field(default_factory=list)
    existing: List[EvaluationRecord] = Field(default_factory=list)
    failures: List[AssignmentFailure] = Field(default_factory=list)
    invalid_ids: List[str] = Field(default_factory=list)
    counts: AssignmentCounts = Field(default_factory=AssignmentCounts)
    message: str = ""


class AssignmentRequest(BaseModel):
    schedule_id: str
    role: EvaluationKindLiteral
    mode: AssignmentMode = AssignmentMode.ALL
    evaluator_id: Optional[str] = None
    evaluator_ids: Optional[List[str]] = None
    status: StatusLiteral = "pending"
    overwrite_pending: bool = False
    seed_answers: Optional[Dict[str, Any]] = None


# ============================================================================
# Lifecycle requests
# ============================================================================

class TransitionRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class AnswersPatchRequest(BaseModel):
    answers: Dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Unified view
# ============================================================================

class EvaluationStats(BaseModel):
    total: int = 0
    pending: int = 0
    submitted: int = 0
    locked: int = 0


class GroupedEvaluationBucket(BaseModel):
    key: str
    group_name: str
    items: List[EvaluationRecord] = Field(default_factory=list)
    pending: int = 0
    submitted: int = 0
    locked: int = 0
