"""
Evaluation Lifecycle State Machine

State Flow: pending → submitted → locked

- submit: pending only. Student feedback must also pass the required-answer gate.
- lock: from pending or submitted; locking a locked record is a no-op.
- set_pending: admin override from any state; clears submitted_at/locked_at.
- edit_answers: student feedback only, while pending; shallow key-wise merge.

Every write is a single conditional row update on the expected source
status plus one audit row, committed together. Student feedback writes
also carry the recomputed score summary in that same transaction. Losing
that compare-and-set raises ConcurrentModificationError instead of
overwriting someone else's transition. Guard violations always raise a
typed error carrying a code.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from thesis_eval.config.settings import settings
from thesis_eval.orm.evaluation import EvaluationKind, EvaluationStatus
from thesis_eval.schemas.evaluation import Caller, EvaluationRecord, ScoreSummary
from thesis_eval.services.assignment_service import normalize_id
from thesis_eval.services.feedback_form_service import FeedbackFormService
from thesis_eval.services.scoring_engine import compute_score_summary, validate_required_answers

logger = logging.getLogger(__name__)

PENDING = EvaluationStatus.PENDING.value
SUBMITTED = EvaluationStatus.SUBMITTED.value
LOCKED = EvaluationStatus.LOCKED.value

# set_pending is an admin override and bypasses this table
TRANSITIONS = {
    PENDING: {SUBMITTED, LOCKED},
    SUBMITTED: {LOCKED},
    LOCKED: set(),
}


class EvaluationStateError(Exception):
    """Base exception for illegal lifecycle operations."""
    def __init__(self, message: str, code: str = "STATE_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class LockedStateError(EvaluationStateError):
    def __init__(self, message: str = "Evaluation is locked and can no longer be changed."):
        super().__init__(message, "LOCKED")


class SubmittedStateError(EvaluationStateError):
    def __init__(self, message: str = "Evaluation was already submitted; answers can no longer be edited."):
        super().__init__(message, "SUBMITTED")


class AlreadySubmittedError(EvaluationStateError):
    """Submit called on a submitted record. Distinct from a successful submit."""
    def __init__(self, evaluation_id: str):
        super().__init__(f"Evaluation {evaluation_id} is already submitted.", "SUBMITTED")


class InvalidTransitionError(EvaluationStateError):
    def __init__(self, from_status: str, to_status: str):
        super().__init__(
            f"Invalid transition: {from_status} → {to_status}",
            "STATE_TRANSITION_INVALID"
        )


class EvaluationValidationError(Exception):
    """Raised when answers fail validation; `missing` lists required question ids."""
    def __init__(self, message: str, missing: Optional[List[str]] = None):
        self.message = message
        self.code = "INVALID"
        self.missing = list(missing or [])
        super().__init__(message)


class EvaluationNotFoundError(Exception):
    def __init__(self, kind: str, evaluation_id: str):
        self.message = f"{kind.title()} evaluation {evaluation_id} not found"
        self.code = "NOT_FOUND"
        super().__init__(self.message)


class TransitionForbiddenError(Exception):
    def __init__(self, message: str):
        self.message = message
        self.code = "FORBIDDEN"
        super().__init__(message)


class ConcurrentModificationError(Exception):
    """Raised when the record changed between read and conditional write."""
    def __init__(self, kind: str, evaluation_id: str):
        self.message = f"{kind.title()} evaluation {evaluation_id} was modified concurrently. Reload and retry."
        self.code = "CONCURRENT_MODIFICATION"
        super().__init__(self.message)


def is_locked(record: EvaluationRecord) -> bool:
    return record.status == LOCKED or record.locked_at is not None


def is_submitted(record: EvaluationRecord) -> bool:
    return record.status == SUBMITTED or record.submitted_at is not None


class EvaluationLifecycle:
    """Lifecycle transitions and score computation over an EvaluationStore."""

    def __init__(
        self,
        store,
        form_service: Optional[FeedbackFormService] = None,
        require_answers_on_submit: Optional[bool] = None
    ):
        self.store = store
        self.form_service = form_service or FeedbackFormService(store)
        if require_answers_on_submit is None:
            require_answers_on_submit = settings.FEATURE_REQUIRE_ANSWERS_ON_SUBMIT
        self.require_answers_on_submit = require_answers_on_submit

    async def get(self, kind: str, evaluation_id: str) -> EvaluationRecord:
        if kind not in (EvaluationKind.PANELIST.value, EvaluationKind.STUDENT.value):
            raise EvaluationNotFoundError(str(kind), evaluation_id)
        record = await self.store.find_evaluation(kind, normalize_id(evaluation_id))
        if record is None:
            raise EvaluationNotFoundError(kind, evaluation_id)
        return record

    # =========================================================================
    # Transitions
    # =========================================================================

    async def submit(
        self,
        kind: str,
        evaluation_id: str,
        caller: Optional[Caller] = None,
        reason: Optional[str] = None
    ) -> EvaluationRecord:
        """
        pending → submitted.

        Raises:
            LockedStateError: record is locked
            AlreadySubmittedError: record is already submitted
            EvaluationValidationError: required feedback answers are missing
        """
        record = await self.get(kind, evaluation_id)
        self._check_owner_or_staff(record, caller)

        if is_locked(record):
            raise LockedStateError("Evaluation is locked; it can no longer be submitted.")
        if is_submitted(record):
            raise AlreadySubmittedError(evaluation_id)

        form_id = None
        summary = None
        if kind == EvaluationKind.STUDENT.value:
            form_id, schema = await self.form_service.resolve_evaluation_form(record)
            if self.require_answers_on_submit:
                check = validate_required_answers(record.answers, schema)
                if not check.ok:
                    logger.info(f"[LIFECYCLE] Submit refused for {kind} {evaluation_id}: missing {check.missing}")
                    raise EvaluationValidationError(
                        "Please answer all required questions before submitting.",
                        missing=check.missing
                    )
            summary = compute_score_summary(record.answers, schema)

        return await self._write(
            record, SUBMITTED, {"submitted_at": datetime.utcnow()},
            action="submit", caller=caller, reason=reason,
            score=summary, score_form_id=form_id
        )

    async def lock(
        self,
        kind: str,
        evaluation_id: str,
        caller: Optional[Caller] = None,
        reason: Optional[str] = None
    ) -> EvaluationRecord:
        """pending|submitted → locked. Idempotent on locked records."""
        if caller is not None and not caller.is_staff_or_admin:
            raise TransitionForbiddenError("Only staff or administrators can lock evaluations.")

        record = await self.get(kind, evaluation_id)
        if is_locked(record):
            logger.debug(f"[LIFECYCLE] {kind} {evaluation_id} already locked")
            return record

        return await self._write(
            record, LOCKED, {"locked_at": datetime.utcnow()},
            action="lock", caller=caller, reason=reason
        )

    async def set_pending(
        self,
        kind: str,
        evaluation_id: str,
        caller: Caller,
        reason: Optional[str] = None
    ) -> EvaluationRecord:
        """Admin override: any state → pending, timestamps cleared, actor audited."""
        if caller is None or not caller.is_admin:
            raise TransitionForbiddenError("Only administrators can reopen evaluations.")

        record = await self.get(kind, evaluation_id)
        updated = await self.store.update_evaluation_status(
            kind,
            record.id,
            {"status": PENDING, "submitted_at": None, "locked_at": None},
            audit=self._audit("set_pending", record.status, PENDING, caller, reason),
        )
        if updated is None:
            raise EvaluationNotFoundError(kind, evaluation_id)

        logger.info(
            f"[LIFECYCLE] {kind} {evaluation_id}: {record.status} → pending "
            f"(admin override by {caller.id})"
        )
        return updated

    async def edit_answers(
        self,
        evaluation_id: str,
        patch: Mapping[str, Any],
        caller: Optional[Caller] = None
    ) -> EvaluationRecord:
        """
        Shallow-merge `patch` into a pending student evaluation's answers.

        Raises:
            LockedStateError: record is locked
            SubmittedStateError: record is submitted
        """
        kind = EvaluationKind.STUDENT.value
        record = await self.get(kind, evaluation_id)
        self._check_owner_or_staff(record, caller)
        self._check_editable(record)

        merged = {**(record.answers or {}), **dict(patch or {})}
        form_id, schema = await self.form_service.resolve_evaluation_form(record)
        updated = await self.store.update_answers(
            record.id, merged, expected_status=PENDING,
            score=compute_score_summary(merged, schema), score_form_id=form_id
        )
        if updated is None:
            current = await self.get(kind, record.id)
            self._check_editable(current)
            raise ConcurrentModificationError(kind, record.id)
        return updated

    # =========================================================================
    # Scoring
    # =========================================================================

    async def compute_score(self, evaluation_id: str) -> ScoreSummary:
        """Recompute a student evaluation's score and refresh the cache."""
        record = await self.get(EvaluationKind.STUDENT.value, evaluation_id)
        form_id, schema = await self.form_service.resolve_evaluation_form(record)
        return await self._refresh_score(record, form_id, schema)

    async def _refresh_score(
        self,
        record: EvaluationRecord,
        form_id: Optional[str],
        schema: Dict[str, Any]
    ) -> ScoreSummary:
        summary = compute_score_summary(record.answers, schema)
        await self.store.upsert_score(record, summary, form_id=form_id)
        return summary

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _write(
        self,
        record: EvaluationRecord,
        to_status: str,
        extra: Dict[str, Any],
        action: str,
        caller: Optional[Caller],
        reason: Optional[str],
        score: Optional[ScoreSummary] = None,
        score_form_id: Optional[str] = None
    ) -> EvaluationRecord:
        if to_status not in TRANSITIONS.get(record.status, set()):
            raise InvalidTransitionError(record.status, to_status)

        updated = await self.store.update_evaluation_status(
            record.kind,
            record.id,
            {"status": to_status, **extra},
            expected_status=record.status,
            audit=self._audit(action, record.status, to_status, caller, reason),
            score=score,
            score_form_id=score_form_id,
        )
        if updated is None:
            logger.warning(f"[LIFECYCLE] {action} lost a concurrent update on {record.kind} {record.id}")
            raise ConcurrentModificationError(record.kind, record.id)

        logger.info(f"[LIFECYCLE] {record.kind} {record.id}: {record.status} → {to_status}")
        return updated

    @staticmethod
    def _audit(
        action: str,
        from_status: str,
        to_status: str,
        caller: Optional[Caller],
        reason: Optional[str]
    ) -> Dict[str, Any]:
        return {
            "action": action,
            "from_status": from_status,
            "to_status": to_status,
            "actor_id": caller.id if caller else None,
            "actor_role": caller.role if caller else None,
            "reason": reason,
        }

    @staticmethod
    def _check_editable(record: EvaluationRecord) -> None:
        if is_locked(record):
            raise LockedStateError()
        if is_submitted(record):
            raise SubmittedStateError()

    @staticmethod
    def _check_owner_or_staff(record: EvaluationRecord, caller: Optional[Caller]) -> None:
        if caller is None or caller.is_staff_or_admin:
            return
        if (caller.id or "").strip().lower() != record.evaluator_id.lower():
            raise TransitionForbiddenError("You can only act on evaluations assigned to you.")
