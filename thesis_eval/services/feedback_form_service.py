"""
thesis_eval/services/feedback_form_service.py
Student feedback form versions: activation, resolution and pinning

At most one stored form is active at a time. When nothing is stored the
built-in default form below is used, so scoring always has a schema.

Resolution order for a student evaluation:
    evaluation.form_id -> active form -> built-in default
For a schedule (at assignment time):
    pinned form -> active form (pinned to the schedule on first use)
"""
import copy
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from thesis_eval.config.settings import settings
from thesis_eval.schemas.evaluation import EvaluationRecord, FeedbackFormCreate
from thesis_eval.services.scoring_engine import seed_answers_template

logger = logging.getLogger(__name__)


def _rating(qid: str, label: str, min_label: str, max_label: str) -> Dict[str, Any]:
    return {
        "id": qid,
        "type": "rating",
        "label": label,
        "scale": {"min": 1, "max": 5, "minLabel": min_label, "maxLabel": max_label},
        "required": True,
    }


def _text(qid: str, label: str, placeholder: str) -> Dict[str, Any]:
    return {
        "id": qid,
        "type": "text",
        "label": label,
        "placeholder": placeholder,
        "required": False,
        "maxLength": 1000,
    }


DEFAULT_FEEDBACK_FORM_SCHEMA: Dict[str, Any] = {
    "version": 1,
    "key": "student-feedback-v1",
    "title": "Student Feedback Form",
    "description": "Your feedback helps improve the thesis defense experience. Please answer honestly.",
    "sections": [
        {
            "id": "overall",
            "title": "Overall Experience",
            "questions": [
                _rating("overall_satisfaction", "Overall satisfaction with the defense process", "Poor", "Excellent"),
                _rating("schedule_clarity", "Clarity of schedule, venue, and instructions", "Unclear", "Very clear"),
                _rating("time_management", "Time management during the defense", "Poor", "Excellent"),
            ],
        },
        {
            "id": "panel",
            "title": "Panel & Feedback Quality",
            "questions": [
                _rating("feedback_helpfulness", "Helpfulness of panel feedback", "Not helpful", "Very helpful"),
                _rating("feedback_fairness", "Fairness and professionalism of evaluation", "Unfair", "Very fair"),
                _rating("feedback_clarity", "Clarity of comments and recommendations", "Unclear", "Very clear"),
            ],
        },
        {
            "id": "facilities",
            "title": "Facilities & Logistics",
            "questions": [
                _rating("venue_readiness", "Venue readiness (room, equipment, setup)", "Poor", "Excellent"),
                _rating("audio_visual", "Audio/visual support and presentation setup", "Poor", "Excellent"),
            ],
        },
        {
            "id": "open_ended",
            "title": "Suggestions",
            "questions": [
                _text("what_went_well", "What went well during the defense?", "Share what worked best..."),
                _text("what_to_improve", "What should be improved?", "Share suggestions..."),
                _text("other_comments", "Other comments", "Anything else you want to add..."),
            ],
        },
    ],
}


class FeedbackFormError(Exception):
    """Base exception for feedback form management"""

    def __init__(self, message: str, code: str = "FEEDBACK_FORM_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class FeedbackFormNotFoundError(FeedbackFormError):
    def __init__(self, form_id: str):
        super().__init__(f"Feedback form {form_id} not found", "NOT_FOUND")


class DuplicateFeedbackFormError(FeedbackFormError):
    def __init__(self, key: str, version: int):
        super().__init__(
            f"Feedback form '{key}' version {version} already exists", "DUPLICATE_FORM"
        )


def default_form() -> Dict[str, Any]:
    """The built-in form, shaped like a stored form row (without an id)."""
    schema = copy.deepcopy(DEFAULT_FEEDBACK_FORM_SCHEMA)
    return {
        "id": None,
        "key": schema["key"],
        "version": schema["version"],
        "title": schema["title"],
        "description": schema["description"],
        "schema": schema,
        "active": True,
    }


class FeedbackFormService:
    """Form management on top of the EvaluationStore."""

    def __init__(self, store):
        self.store = store

    async def list_forms(self) -> List[Dict[str, Any]]:
        return await self.store.list_forms()

    async def get_form(self, form_id: str) -> Dict[str, Any]:
        form = await self.store.find_form_by_id(form_id)
        if not form:
            raise FeedbackFormNotFoundError(form_id)
        return form

    async def get_active_form(self) -> Dict[str, Any]:
        """Highest-version active form, or the built-in default."""
        form = await self.store.get_active_form()
        if form is None:
            logger.debug("[FORMS] No active form stored, using built-in default")
            return default_form()
        return form

    async def get_active_schema(self) -> Dict[str, Any]:
        form = await self.get_active_form()
        return form["schema"]

    async def create_form(self, payload: FeedbackFormCreate) -> Dict[str, Any]:
        try:
            form = await self.store.create_form(
                key=payload.key.strip(),
                version=payload.version,
                title=payload.title.strip(),
                description=payload.description,
                schema=payload.schema_.model_dump(exclude_none=True),
            )
        except IntegrityError as e:
            if "unique" in str(e).lower() or "duplicate key" in str(e).lower():
                raise DuplicateFeedbackFormError(payload.key, payload.version) from e
            raise

        logger.info(f"[FORMS] Created form {form['id']} ({form['key']} v{form['version']})")

        if payload.active:
            form = await self.activate_form(form["id"])
        return form

    async def activate_form(self, form_id: str) -> Dict[str, Any]:
        """Make one form active and every other inactive."""
        form = await self.store.activate_form(form_id)
        if not form:
            raise FeedbackFormNotFoundError(form_id)
        logger.info(f"[FORMS] Activated form {form_id} ({form['key']} v{form['version']})")
        return form

    async def resolve_schedule_form(
        self,
        schedule: Mapping[str, Any]
    ) -> Tuple[Optional[str], Dict[str, Any]]:
        """
        Form used for new student evaluations of a schedule.

        With pinning enabled, an already-pinned form wins; otherwise the
        active form is pinned so later assignments use the same version.
        """
        pinned_id = schedule.get("student_feedback_form_id")
        if settings.FEATURE_PIN_FEEDBACK_FORM_PER_SCHEDULE and pinned_id:
            pinned = await self.store.find_form_by_id(pinned_id)
            if pinned:
                return pinned["id"], pinned["schema"]
            logger.warning(
                f"[FORMS] Schedule {schedule['id']} pins missing form {pinned_id}, using active form"
            )

        active = await self.get_active_form()
        form_id = active["id"]

        if settings.FEATURE_PIN_FEEDBACK_FORM_PER_SCHEDULE and form_id and not pinned_id:
            pinned_now = await self.store.pin_schedule_form(schedule["id"], form_id)
            if pinned_now and pinned_now != form_id:
                # Another assignment pinned a different version first
                pinned = await self.store.find_form_by_id(pinned_now)
                if pinned:
                    return pinned["id"], pinned["schema"]
            logger.info(f"[FORMS] Pinned form {form_id} to schedule {schedule['id']}")

        return form_id, active["schema"]

    async def resolve_evaluation_form(
        self,
        evaluation: EvaluationRecord
    ) -> Tuple[Optional[str], Dict[str, Any]]:
        """Schema a student evaluation is scored against."""
        if evaluation.form_id:
            form = await self.store.find_form_by_id(evaluation.form_id)
            if form:
                return form["id"], form["schema"]
            logger.warning(
                f"[FORMS] Evaluation {evaluation.id} references missing form {evaluation.form_id}"
            )
        active = await self.get_active_form()
        return active["id"], active["schema"]


def build_seed_answers(
    schema: Mapping[str, Any],
    seed: Optional[Mapping[str, Any]] = None
) -> Dict[str, Any]:
    """Caller-supplied seed answers, else the schema's blank template."""
    if seed:
        return dict(seed)
    return seed_answers_template(schema)
