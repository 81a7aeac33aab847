"""
Evaluation Assignment Service

Assigns evaluation work for a defense schedule, either to one particular
evaluator or to every eligible evaluator of a role.

Core Principles:
- At most one evaluation per (schedule, role, evaluator)
- Validation happens before any write
- Bulk creations run concurrently and settle independently: one failing
  target never rolls back or blocks another
- A unique-constraint violation during bulk assignment means another caller
  won the race; the row is re-fetched and reported as existing
- Particular assignment of an existing triple is a hard DuplicateAssignmentError
"""
import asyncio
import logging
import re
from typing import Any, Dict, List, Optional, Tuple, Union

from thesis_eval.config.settings import settings
from thesis_eval.orm.evaluation import EvaluationKind, EvaluationStatus
from thesis_eval.schemas.evaluation import (
    AssignmentCounts, AssignmentFailure, AssignmentMode, AssignmentOutcome,
    AssignmentRequest, AssignmentResult, EvaluationRecord
)
from thesis_eval.services.evaluation_store import UniqueConstraintViolation
from thesis_eval.services.feedback_form_service import FeedbackFormService, build_seed_answers

logger = logging.getLogger(__name__)

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE
)

ASSIGNABLE_ROLES = {EvaluationKind.PANELIST.value, EvaluationKind.STUDENT.value}


class AssignmentError(Exception):
    """Base exception for assignment errors."""
    def __init__(self, message: str, code: str = "ASSIGNMENT_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class InvalidIdentifierError(AssignmentError):
    """Raised when an id is not a well-formed UUID."""
    def __init__(self, field: str, value: Any):
        self.field = field
        super().__init__(f"Invalid {field}: {value!r}", "INVALID_FORMAT")


class ScheduleNotFoundError(AssignmentError):
    def __init__(self, schedule_id: str):
        super().__init__(f"Schedule {schedule_id} not found", "SCHEDULE_NOT_FOUND")


class EvaluatorNotFoundError(AssignmentError):
    """Raised when the evaluator does not exist or has another role."""
    def __init__(self, evaluator_id: str, role: str):
        super().__init__(
            f"No {role} with id {evaluator_id} exists",
            "EVALUATOR_NOT_FOUND"
        )


class DuplicateAssignmentError(AssignmentError):
    """Raised when a particular assignment already exists."""
    def __init__(self, schedule_id: str, evaluator_id: str, role: str):
        self.schedule_id = schedule_id
        self.evaluator_id = evaluator_id
        self.role = role
        super().__init__(
            f"{role.title()} {evaluator_id} is already assigned to schedule {schedule_id}",
            "DUPLICATE_ASSIGNMENT"
        )


def is_uuid_like(value: Any) -> bool:
    return isinstance(value, str) and bool(_UUID_RE.match(value.strip()))


def normalize_id(value: Any) -> str:
    return str(value or "").strip().lower()


def _require_uuid(field: str, value: Any) -> str:
    if not is_uuid_like(value):
        raise InvalidIdentifierError(field, value)
    return normalize_id(value)


def _require_role(role: str) -> str:
    normalized = (role or "").strip().lower()
    if normalized not in ASSIGNABLE_ROLES:
        raise AssignmentError(f"Unsupported evaluation role: {role!r}", "INVALID_ROLE")
    return normalized


class AssignmentService:
    """Assignment engine over an EvaluationStore."""

    def __init__(
        self,
        store,
        form_service: Optional[FeedbackFormService] = None,
        max_concurrency: Optional[int] = None
    ):
        self.store = store
        self.form_service = form_service or FeedbackFormService(store)
        self.max_concurrency = max(1, max_concurrency or settings.ASSIGNMENT_MAX_CONCURRENCY)

    async def assign(self, request: AssignmentRequest) -> Union[EvaluationRecord, AssignmentResult]:
        """Dispatch an API request to particular or bulk assignment."""
        if request.mode == AssignmentMode.PARTICULAR:
            if not request.evaluator_id:
                raise InvalidIdentifierError("evaluator_id", request.evaluator_id)
            return await self.assign_particular(
                request.schedule_id,
                request.evaluator_id,
                request.role,
                status=request.status,
                seed_answers=request.seed_answers,
            )
        return await self.assign_all(
            request.schedule_id,
            request.role,
            evaluator_ids=request.evaluator_ids,
            status=request.status,
            overwrite_pending=request.overwrite_pending,
            seed_answers=request.seed_answers,
        )

    # =========================================================================
    # Particular
    # =========================================================================

    async def assign_particular(
        self,
        schedule_id: str,
        evaluator_id: str,
        role: str,
        status: str = EvaluationStatus.PENDING.value,
        seed_answers: Optional[Dict[str, Any]] = None
    ) -> EvaluationRecord:
        """
        Assign exactly one evaluator to one schedule.

        Raises:
            InvalidIdentifierError: malformed schedule or evaluator id
            ScheduleNotFoundError: schedule does not exist
            EvaluatorNotFoundError: evaluator missing or role mismatch
            DuplicateAssignmentError: the triple already exists
        """
        role = _require_role(role)
        schedule_id = _require_uuid("schedule_id", schedule_id)
        evaluator_id = _require_uuid("evaluator_id", evaluator_id)

        logger.info(f"[ASSIGN ONE START] schedule={schedule_id} role={role} evaluator={evaluator_id}")

        schedule = await self.store.find_schedule_by_id(schedule_id)
        if not schedule:
            raise ScheduleNotFoundError(schedule_id)

        evaluator = await self.store.find_user_by_id(evaluator_id)
        if not evaluator or str(evaluator.get("role", "")).strip().lower() != role:
            raise EvaluatorNotFoundError(evaluator_id, role)

        if await self.store.find_assignment(schedule_id, role, evaluator_id):
            raise DuplicateAssignmentError(schedule_id, evaluator_id, role)

        form_id, answers = await self._student_defaults(role, schedule, seed_answers)

        try:
            record = await self.store.create_evaluation(
                schedule_id, evaluator_id, role, status, answers=answers, form_id=form_id
            )
        except UniqueConstraintViolation as e:
            logger.warning(f"[RACE] {role} {evaluator_id} assigned concurrently to {schedule_id}")
            raise DuplicateAssignmentError(schedule_id, evaluator_id, role) from e

        logger.info(f"[ASSIGN ONE SUCCESS] {role} evaluation {record.id} created")
        return record

    # =========================================================================
    # Bulk
    # =========================================================================

    async def assign_all(
        self,
        schedule_id: str,
        role: str,
        evaluator_ids: Optional[List[str]] = None,
        status: str = EvaluationStatus.PENDING.value,
        overwrite_pending: bool = False,
        seed_answers: Optional[Dict[str, Any]] = None
    ) -> AssignmentResult:
        """
        Assign every eligible evaluator of a role to a schedule.

        Panelists: every active panelist. Students: every active member of
        the schedule's thesis group. `evaluator_ids` narrows the target set.

        Only validation errors raise. Per-target failures are reported in the
        result so a caller can see exactly which targets did not land.
        """
        role = _require_role(role)
        schedule_id = _require_uuid("schedule_id", schedule_id)

        logger.info(f"[ASSIGN ALL START] schedule={schedule_id} role={role}")

        schedule = await self.store.find_schedule_by_id(schedule_id)
        if not schedule:
            raise ScheduleNotFoundError(schedule_id)

        eligible = await self._eligible_evaluators(role, schedule)
        invalid_ids: List[str] = []

        if evaluator_ids is not None:
            wanted = []
            for raw in evaluator_ids:
                if is_uuid_like(raw):
                    wanted.append(normalize_id(raw))
                else:
                    invalid_ids.append(str(raw))
            wanted_set = set(wanted)
            eligible = [user for user in eligible if normalize_id(user["id"]) in wanted_set]

        targets: List[str] = []
        seen = set()
        for user in eligible:
            if not is_uuid_like(user.get("id")):
                invalid_ids.append(str(user.get("id")))
                continue
            user_id = normalize_id(user["id"])
            if user_id not in seen:
                seen.add(user_id)
                targets.append(user_id)

        if invalid_ids:
            logger.warning(f"[ASSIGN ALL] Skipping {len(invalid_ids)} invalid {role} id(s)")

        if not targets:
            logger.info(f"[ASSIGN ALL] No eligible {role}s for schedule {schedule_id}")
            return self._result(
                schedule_id, role, AssignmentOutcome.NO_ELIGIBLE,
                invalid_ids=invalid_ids,
                message=f"No eligible {role}s found for this schedule."
            )

        # Best-effort pre-check; the unique constraint is the real guard
        assigned = {
            normalize_id(record.evaluator_id): record
            for record in await self.store.find_evaluations_by_schedule(schedule_id, role)
        }

        existing: List[EvaluationRecord] = []
        to_create: List[str] = []
        to_reset: List[EvaluationRecord] = []

        for target in targets:
            record = assigned.get(target)
            if record is None:
                to_create.append(target)
            elif (overwrite_pending and role == EvaluationKind.STUDENT.value
                  and record.status == EvaluationStatus.PENDING.value):
                to_reset.append(record)
            else:
                existing.append(record)

        created: List[EvaluationRecord] = []
        updated: List[EvaluationRecord] = []
        failures: List[AssignmentFailure] = []

        if to_create or to_reset:
            form_id, answers = await self._student_defaults(role, schedule, seed_answers)
            semaphore = asyncio.Semaphore(self.max_concurrency)

            async def bounded(coro):
                async with semaphore:
                    return await coro

            jobs: List[Tuple[str, Any]] = [
                (target, self._create_one(schedule_id, target, role, status, answers, form_id))
                for target in to_create
            ] + [
                (record.evaluator_id, self._reset_one(record, status, answers))
                for record in to_reset
            ]

            outcomes = await asyncio.gather(
                *(bounded(job) for _, job in jobs),
                return_exceptions=True
            )

            for (target, _), outcome in zip(jobs, outcomes):
                if isinstance(outcome, Exception):
                    logger.warning(f"[ASSIGN FAILED] {role} {target}: {outcome}")
                    failures.append(AssignmentFailure(
                        evaluator_id=target,
                        message=str(outcome) or outcome.__class__.__name__
                    ))
                    continue
                if isinstance(outcome, BaseException):
                    raise outcome
                kind, record = outcome
                if kind == "created":
                    created.append(record)
                elif kind == "updated":
                    updated.append(record)
                else:
                    existing.append(record)

        written = len(created) + len(updated)
        if written == 0 and not failures:
            outcome = AssignmentOutcome.NOTHING_TO_DO
            message = f"No new assignments. All eligible {role}s are already assigned."
        elif written == 0:
            outcome = AssignmentOutcome.FAILED
            message = f"Assignment failed for all {len(failures)} {role}(s): {failures[0].message}"
        elif failures:
            outcome = AssignmentOutcome.PARTIAL
            message = (
                f"Partial assignment: {written} assigned, {len(failures)} failed "
                f"(e.g. {failures[0].message})"
            )
        else:
            outcome = AssignmentOutcome.SUCCESS
            message = f"Assigned {len(created)} new {role} evaluation(s)"
            if updated:
                message += f", reset {len(updated)} pending"
            if existing:
                message += f"; {len(existing)} already assigned"
            message += "."

        if invalid_ids:
            message += f" Skipped {len(invalid_ids)} invalid id(s)."

        logger.info(
            f"[ASSIGN ALL DONE] schedule={schedule_id} role={role} outcome={outcome.value} "
            f"created={len(created)} updated={len(updated)} existing={len(existing)} "
            f"failed={len(failures)} invalid={len(invalid_ids)}"
        )

        return self._result(
            schedule_id, role, outcome,
            targeted_ids=targets,
            created=created,
            updated=updated,
            existing=existing,
            failures=failures,
            invalid_ids=invalid_ids,
            message=message,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _eligible_evaluators(self, role: str, schedule: Dict[str, Any]) -> List[Dict[str, Any]]:
        if role == EvaluationKind.PANELIST.value:
            return await self.store.find_eligible_evaluators(role)
        group_id = schedule.get("group_id")
        if not group_id:
            return []
        return await self.store.find_eligible_evaluators(role, group_id=group_id)

    async def _student_defaults(
        self,
        role: str,
        schedule: Dict[str, Any],
        seed_answers: Optional[Dict[str, Any]]
    ) -> Tuple[Optional[str], Optional[Dict[str, Any]]]:
        """Form id and initial answers for new student evaluations."""
        if role != EvaluationKind.STUDENT.value:
            return None, None
        form_id, schema = await self.form_service.resolve_schedule_form(schedule)
        return form_id, build_seed_answers(schema, seed_answers)

    async def _create_one(
        self,
        schedule_id: str,
        evaluator_id: str,
        role: str,
        status: str,
        answers: Optional[Dict[str, Any]],
        form_id: Optional[str]
    ) -> Tuple[str, EvaluationRecord]:
        try:
            record = await self.store.create_evaluation(
                schedule_id, evaluator_id, role, status, answers=answers, form_id=form_id
            )
            return "created", record
        except UniqueConstraintViolation:
            logger.warning(f"[RACE] {role} {evaluator_id} already assigned to {schedule_id}, re-fetching")
            record = await self.store.find_assignment(schedule_id, role, evaluator_id)
            if record is None:
                raise
            return "existing", record

    async def _reset_one(
        self,
        record: EvaluationRecord,
        status: str,
        answers: Optional[Dict[str, Any]]
    ) -> Tuple[str, EvaluationRecord]:
        reset = await self.store.reset_pending_evaluation(record.kind, record.id, status, answers)
        if reset is not None:
            return "updated", reset
        # Moved past pending since the pre-check; leave it alone
        current = await self.store.find_evaluation(record.kind, record.id)
        return "existing", current or record

    @staticmethod
    def _result(schedule_id: str, role: str, outcome: AssignmentOutcome, **fields) -> AssignmentResult:
        result = AssignmentResult(schedule_id=schedule_id, role=role, outcome=outcome, **fields)
        result.counts = AssignmentCounts(
            targeted=len(result.targeted_ids),
            created=len(result.created),
            updated=len(result.updated),
            existing=len(result.existing),
            failed=len(result.failures),
            invalid=len(result.invalid_ids),
        )
        return result
