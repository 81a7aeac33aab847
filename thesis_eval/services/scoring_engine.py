"""
thesis_eval/services/scoring_engine.py
Schema-Driven Scoring Engine for student feedback

Interprets a versioned feedback form schema to:
- compute a weighted total / max / percentage over numeric questions
- check that every required question has a non-blank answer

The schema arrives as semi-structured JSON (a dict, or a FormSchema model).
It is normalized into a flat list of NormalizedQuestion before any scoring,
so the algorithms below never depend on the raw document shape.

Pure functions only: no I/O, no persistence. Callers decide when to cache.
"""
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel

from thesis_eval.schemas.evaluation import (
    BreakdownEntry, FormSchema, RequiredAnswersCheck, ScoreSummary
)

logger = logging.getLogger(__name__)

NUMERIC_QUESTION_TYPES = frozenset({"rating", "scale", "number"})

DEFAULT_QUESTION_MAX = 5.0
DEFAULT_QUESTION_WEIGHT = 1.0

# Plain decimal notation, optional sign and exponent. No hex, no underscores,
# no inf/nan.
_DECIMAL_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")


@dataclass(frozen=True)
class NormalizedQuestion:
    id: str
    type: str
    required: bool
    max: float
    weight: float
    section_id: Optional[str] = None
    label: Optional[str] = None

    @property
    def is_numeric(self) -> bool:
        return self.type in NUMERIC_QUESTION_TYPES


# =============================================================================
# Coercion helpers
# =============================================================================

def to_finite_number(value: Any) -> Optional[float]:
    """
    Numeric coercion used for every answer and schema number.

    A value is numeric if it is already a finite number (booleans excluded)
    or a non-empty string holding a finite decimal. Anything else is None.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None
    if isinstance(value, str):
        text = value.strip()
        if not text or not _DECIMAL_RE.match(text):
            return None
        number = float(text)
        return number if math.isfinite(number) else None
    return None


def _positive_or(value: Any, default: float) -> float:
    number = to_finite_number(value)
    if number is None or number <= 0:
        return default
    return number


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


# =============================================================================
# Schema normalization
# =============================================================================

def _schema_as_dict(schema: Union[Mapping[str, Any], BaseModel, None]) -> Dict[str, Any]:
    if schema is None:
        return {}
    if isinstance(schema, BaseModel):
        return schema.model_dump(by_alias=True)
    if isinstance(schema, Mapping):
        return dict(schema)
    return {}


def normalize_questions(schema: Union[Mapping[str, Any], FormSchema, None]) -> List[NormalizedQuestion]:
    """
    Flatten sections -> questions into a strict question list.

    Malformed sections and questions (non-objects, missing or blank ids) are
    skipped. A question's max is its own `max`, else its `scale.max`, else 5;
    weight defaults to 1. Non-positive values fall back to the defaults.
    Duplicate question ids keep their first occurrence.
    """
    raw = _schema_as_dict(schema)
    sections = raw.get("sections")
    if not isinstance(sections, list):
        return []

    questions: List[NormalizedQuestion] = []
    seen = set()

    for section in sections:
        if not isinstance(section, Mapping):
            continue
        section_id = section.get("id") if isinstance(section.get("id"), str) else None
        items = section.get("questions")
        if not isinstance(items, list):
            continue

        for item in items:
            if not isinstance(item, Mapping):
                continue
            qid = item.get("id")
            if not isinstance(qid, str) or not qid.strip():
                logger.debug(f"Skipping question without id in section {section_id}")
                continue
            qid = qid.strip()
            if qid in seen:
                continue
            seen.add(qid)

            qtype = item.get("type")
            qtype = qtype.strip().lower() if isinstance(qtype, str) and qtype.strip() else "text"

            scale = item.get("scale") if isinstance(item.get("scale"), Mapping) else {}
            q_max = _positive_or(item.get("max"), 0.0) or _positive_or(scale.get("max"), DEFAULT_QUESTION_MAX)

            questions.append(NormalizedQuestion(
                id=qid,
                type=qtype,
                required=_as_bool(item.get("required", False)),
                max=q_max,
                weight=_positive_or(item.get("weight"), DEFAULT_QUESTION_WEIGHT),
                section_id=section_id,
                label=item.get("label") if isinstance(item.get("label"), str) else None,
            ))

    return questions


# =============================================================================
# Scoring
# =============================================================================

def compute_score_summary(
    answers: Optional[Mapping[str, Any]],
    schema: Union[Mapping[str, Any], FormSchema, None],
) -> ScoreSummary:
    """
    Weighted score over numeric questions (rating, scale, number).

    For each numeric question, qMax * weight always counts toward max_score;
    a numeric answer is clamped to [0, qMax] and contributes value * weight.
    Missing or non-numeric answers contribute 0, so they lower the
    percentage instead of shrinking the denominator. Other question types
    are recorded in the breakdown unscored.
    """
    answers = answers or {}
    total_score = 0.0
    max_score = 0.0
    breakdown: Dict[str, BreakdownEntry] = {}

    for question in normalize_questions(schema):
        raw_value = answers.get(question.id)

        if not question.is_numeric:
            breakdown[question.id] = BreakdownEntry(value=raw_value, scored=False)
            continue

        max_score += question.max * question.weight
        number = to_finite_number(raw_value)

        if number is None:
            breakdown[question.id] = BreakdownEntry(
                value=None, max=question.max, weight=question.weight
            )
            continue

        clamped = min(max(number, 0.0), question.max)
        total_score += clamped * question.weight
        breakdown[question.id] = BreakdownEntry(
            value=clamped, max=question.max, weight=question.weight
        )

    percentage = (total_score / max_score) * 100 if max_score > 0 else 0.0

    return ScoreSummary(
        total_score=total_score,
        max_score=max_score,
        percentage=percentage,
        breakdown=breakdown,
    )


# =============================================================================
# Validation
# =============================================================================

def is_blank_answer(value: Any) -> bool:
    """None, whitespace-only strings and empty lists count as unanswered."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def validate_required_answers(
    answers: Optional[Mapping[str, Any]],
    schema: Union[Mapping[str, Any], FormSchema, None],
) -> RequiredAnswersCheck:
    """
    Report required questions lacking an answer, in schema order.

    Non-required questions are never reported.
    """
    answers = answers or {}
    missing = [
        question.id
        for question in normalize_questions(schema)
        if question.required and is_blank_answer(answers.get(question.id))
    ]
    return RequiredAnswersCheck(ok=not missing, missing=missing)


def seed_answers_template(schema: Union[Mapping[str, Any], FormSchema, None]) -> Dict[str, Any]:
    """Initial answers for a new feedback: every question unanswered."""
    return {
        question.id: [] if question.type == "checkbox" else None
        for question in normalize_questions(schema)
    }
