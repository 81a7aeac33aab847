"""
thesis_eval/services/evaluation_store.py
Persistence collaborator for the evaluation workflow

Every public method opens its own session from the session factory and
commits before returning, so each call is one short transaction. This lets
the assignment engine run many creations concurrently without sharing a
session between tasks.

Uniqueness of (schedule, role, evaluator) is enforced by the tables'
unique constraints; a violating insert surfaces as UniqueConstraintViolation.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from thesis_eval.orm.defense_schedule import DefenseSchedule
from thesis_eval.orm.evaluation import (
    PanelistEvaluation, StudentEvaluation, EvaluationKind, EvaluationStatus
)
from thesis_eval.orm.evaluation_audit_log import EvaluationAuditLog
from thesis_eval.orm.student_feedback_form import StudentFeedbackForm, StudentEvaluationScore
from thesis_eval.orm.thesis_group import ThesisGroup, GroupMember
from thesis_eval.orm.user import User, DISABLED_USER_STATUSES
from thesis_eval.schemas.evaluation import EvaluationRecord, ScoreSummary
from thesis_eval.services.evaluation_view import (
    to_unified_from_panelist, to_unified_from_student
)

logger = logging.getLogger(__name__)


class UniqueConstraintViolation(Exception):
    """Raised when an assignment triple already exists at write time."""

    def __init__(self, schedule_id: str, role: str, evaluator_id: str):
        self.schedule_id = schedule_id
        self.role = role
        self.evaluator_id = evaluator_id
        super().__init__(
            f"{role} evaluation for evaluator {evaluator_id} on schedule {schedule_id} already exists"
        )


def _is_unique_violation(error: IntegrityError) -> bool:
    message = str(error.orig if error.orig is not None else error).lower()
    return "unique" in message or "duplicate key" in message


def _model_for(kind: str):
    if kind == EvaluationKind.STUDENT.value:
        return StudentEvaluation
    if kind == EvaluationKind.PANELIST.value:
        return PanelistEvaluation
    raise ValueError(f"Unknown evaluation kind: {kind}")


def _evaluator_column(model):
    return model.student_id if model is StudentEvaluation else model.evaluator_id


def _to_record(row) -> EvaluationRecord:
    if isinstance(row, StudentEvaluation):
        return to_unified_from_student(row.to_dict())
    return to_unified_from_panelist(row.to_dict())


class EvaluationStore:
    """SQLAlchemy-backed implementation of the storage contracts."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    # =========================================================================
    # Evaluations
    # =========================================================================

    async def find_evaluation(self, kind: str, evaluation_id: str) -> Optional[EvaluationRecord]:
        model = _model_for(kind)
        async with self.session_factory() as db:
            row = await db.get(model, evaluation_id)
            return _to_record(row) if row else None

    async def find_evaluations_by_schedule(self, schedule_id: str, role: str) -> List[EvaluationRecord]:
        model = _model_for(role)
        async with self.session_factory() as db:
            result = await db.execute(
                select(model)
                .where(model.schedule_id == schedule_id)
                .order_by(model.created_at)
            )
            return [_to_record(row) for row in result.scalars().all()]

    async def find_assignment(
        self,
        schedule_id: str,
        role: str,
        evaluator_id: str
    ) -> Optional[EvaluationRecord]:
        model = _model_for(role)
        async with self.session_factory() as db:
            result = await db.execute(
                select(model).where(
                    model.schedule_id == schedule_id,
                    _evaluator_column(model) == evaluator_id
                )
            )
            row = result.scalar_one_or_none()
            return _to_record(row) if row else None

    async def list_evaluations(self, kind: str) -> List[Dict[str, Any]]:
        """Raw rows in their native shape, for the unified view."""
        model = _model_for(kind)
        async with self.session_factory() as db:
            result = await db.execute(select(model).order_by(model.created_at.desc()))
            return [row.to_dict() for row in result.scalars().all()]

    async def create_evaluation(
        self,
        schedule_id: str,
        evaluator_id: str,
        role: str,
        initial_status: str = EvaluationStatus.PENDING.value,
        answers: Optional[Dict[str, Any]] = None,
        form_id: Optional[str] = None,
    ) -> EvaluationRecord:
        """
        Insert one evaluation row.

        Raises:
            UniqueConstraintViolation: the (schedule, role, evaluator) triple exists
        """
        model = _model_for(role)
        now = datetime.utcnow()
        fields = dict(
            schedule_id=schedule_id,
            status=initial_status,
            submitted_at=now if initial_status == EvaluationStatus.SUBMITTED.value else None,
            locked_at=now if initial_status == EvaluationStatus.LOCKED.value else None,
            created_at=now,
        )
        if model is StudentEvaluation:
            fields.update(
                student_id=evaluator_id,
                answers=dict(answers or {}),
                form_id=form_id,
                updated_at=now,
            )
        else:
            fields.update(evaluator_id=evaluator_id)

        async with self.session_factory() as db:
            row = model(**fields)
            db.add(row)
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                if _is_unique_violation(e):
                    raise UniqueConstraintViolation(schedule_id, role, evaluator_id) from e
                raise
            await db.refresh(row)
            return _to_record(row)

    async def reset_pending_evaluation(
        self,
        kind: str,
        evaluation_id: str,
        initial_status: str,
        answers: Optional[Dict[str, Any]] = None,
    ) -> Optional[EvaluationRecord]:
        """
        Reset a still-pending row to the initial status (and seed answers).
        Returns None when the row is no longer pending.
        """
        model = _model_for(kind)
        now = datetime.utcnow()
        values = dict(
            status=initial_status,
            submitted_at=now if initial_status == EvaluationStatus.SUBMITTED.value else None,
            locked_at=now if initial_status == EvaluationStatus.LOCKED.value else None,
        )
        if model is StudentEvaluation:
            values.update(answers=dict(answers or {}), updated_at=now)

        async with self.session_factory() as db:
            result = await db.execute(
                update(model)
                .where(model.id == evaluation_id, model.status == EvaluationStatus.PENDING.value)
                .values(**values)
            )
            if result.rowcount == 0:
                await db.rollback()
                return None
            await db.commit()
            row = await db.get(model, evaluation_id, populate_existing=True)
            return _to_record(row) if row else None

    async def update_evaluation_status(
        self,
        kind: str,
        evaluation_id: str,
        patch: Dict[str, Any],
        expected_status: Optional[str] = None,
        audit: Optional[Dict[str, Any]] = None,
        score: Optional[ScoreSummary] = None,
        score_form_id: Optional[str] = None,
    ) -> Optional[EvaluationRecord]:
        """
        Apply a lifecycle patch as one conditional single-row write.

        When expected_status is given the row is only written if it still has
        that status (compare-and-set). The audit entry and the cached score
        summary, if any, commit in the same transaction, so a failure in
        either leaves the evaluation untouched. Returns None when nothing
        was written.
        """
        model = _model_for(kind)
        values = dict(patch)
        if model is StudentEvaluation:
            values.setdefault("updated_at", datetime.utcnow())

        conditions = [model.id == evaluation_id]
        if expected_status is not None:
            conditions.append(model.status == expected_status)

        async with self.session_factory() as db:
            result = await db.execute(update(model).where(*conditions).values(**values))
            if result.rowcount == 0:
                await db.rollback()
                return None
            if audit:
                db.add(EvaluationAuditLog(kind=kind, evaluation_id=evaluation_id, **audit))
            row = await db.get(model, evaluation_id, populate_existing=True)
            if score is not None:
                await self._write_score(db, row, score, score_form_id)
            await db.commit()
            return _to_record(row)

    async def update_answers(
        self,
        evaluation_id: str,
        answers: Dict[str, Any],
        expected_status: str = EvaluationStatus.PENDING.value,
        score: Optional[ScoreSummary] = None,
        score_form_id: Optional[str] = None,
    ) -> Optional[EvaluationRecord]:
        return await self.update_evaluation_status(
            EvaluationKind.STUDENT.value,
            evaluation_id,
            {"answers": dict(answers)},
            expected_status=expected_status,
            score=score,
            score_form_id=score_form_id,
        )

    async def list_audit_logs(self, kind: str, evaluation_id: str) -> List[Dict[str, Any]]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(EvaluationAuditLog)
                .where(
                    EvaluationAuditLog.kind == kind,
                    EvaluationAuditLog.evaluation_id == evaluation_id
                )
                .order_by(EvaluationAuditLog.created_at)
            )
            return [log.to_dict() for log in result.scalars().all()]

    # =========================================================================
    # Users, groups, schedules (read-only lookups)
    # =========================================================================

    async def find_user_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        async with self.session_factory() as db:
            user = await db.get(User, user_id)
            return user.to_dict() if user else None

    async def list_users(self, role: Optional[str] = None) -> List[Dict[str, Any]]:
        query = select(User).order_by(User.created_at)
        if role:
            query = query.where(User.role == role)
        async with self.session_factory() as db:
            result = await db.execute(query)
            return [user.to_dict() for user in result.scalars().all()]

    async def find_eligible_evaluators(
        self,
        role: str,
        group_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Users whose role matches and whose account status is not disabled.
        With group_id, restrict to members of that thesis group.
        """
        query = (
            select(User)
            .where(
                func.lower(User.role) == role.lower(),
                func.lower(func.coalesce(User.status, "active")).notin_(sorted(DISABLED_USER_STATUSES))
            )
            .order_by(User.created_at, User.id)
        )
        if group_id is not None:
            query = query.join(GroupMember, GroupMember.student_id == User.id).where(
                GroupMember.group_id == group_id
            )
        async with self.session_factory() as db:
            result = await db.execute(query)
            return [user.to_dict() for user in result.scalars().all()]

    async def find_group_by_id(self, group_id: str) -> Optional[Dict[str, Any]]:
        async with self.session_factory() as db:
            group = await db.get(ThesisGroup, group_id)
            return group.to_dict() if group else None

    async def list_groups(self) -> List[Dict[str, Any]]:
        async with self.session_factory() as db:
            result = await db.execute(select(ThesisGroup).order_by(ThesisGroup.title))
            return [group.to_dict() for group in result.scalars().all()]

    async def list_group_members(self, group_id: str) -> List[Dict[str, Any]]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(GroupMember).where(GroupMember.group_id == group_id)
            )
            return [member.to_dict() for member in result.scalars().all()]

    async def find_schedule_by_id(self, schedule_id: str) -> Optional[Dict[str, Any]]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(DefenseSchedule, ThesisGroup.title)
                .outerjoin(ThesisGroup, ThesisGroup.id == DefenseSchedule.group_id)
                .where(DefenseSchedule.id == schedule_id)
            )
            row = result.one_or_none()
            if not row:
                return None
            schedule, group_title = row
            return {**schedule.to_dict(), "group_title": group_title}

    async def list_schedules(self) -> List[Dict[str, Any]]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(DefenseSchedule, ThesisGroup.title)
                .outerjoin(ThesisGroup, ThesisGroup.id == DefenseSchedule.group_id)
                .order_by(DefenseSchedule.scheduled_at.desc())
            )
            return [
                {**schedule.to_dict(), "group_title": group_title}
                for schedule, group_title in result.all()
            ]

    async def pin_schedule_form(self, schedule_id: str, form_id: str) -> Optional[str]:
        """
        Pin a feedback form to a schedule unless one is already pinned.
        Returns the form id pinned after the call.
        """
        async with self.session_factory() as db:
            await db.execute(
                update(DefenseSchedule)
                .where(
                    DefenseSchedule.id == schedule_id,
                    DefenseSchedule.student_feedback_form_id.is_(None)
                )
                .values(student_feedback_form_id=form_id)
            )
            await db.commit()
            result = await db.execute(
                select(DefenseSchedule.student_feedback_form_id)
                .where(DefenseSchedule.id == schedule_id)
            )
            return result.scalar_one_or_none()

    # =========================================================================
    # Feedback forms
    # =========================================================================

    async def find_form_by_id(self, form_id: str) -> Optional[Dict[str, Any]]:
        async with self.session_factory() as db:
            form = await db.get(StudentFeedbackForm, form_id)
            return form.to_dict() if form else None

    async def get_active_form(self) -> Optional[Dict[str, Any]]:
        """Highest-version active form, newest update breaking ties."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(StudentFeedbackForm)
                .where(StudentFeedbackForm.active.is_(True))
                .order_by(StudentFeedbackForm.version.desc(), StudentFeedbackForm.updated_at.desc())
                .limit(1)
            )
            form = result.scalar_one_or_none()
            return form.to_dict() if form else None

    async def list_forms(self) -> List[Dict[str, Any]]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(StudentFeedbackForm)
                .order_by(StudentFeedbackForm.key, StudentFeedbackForm.version.desc())
            )
            return [form.to_dict() for form in result.scalars().all()]

    async def create_form(
        self,
        key: str,
        version: int,
        title: str,
        schema: Dict[str, Any],
        description: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Insert an inactive form version. Raises IntegrityError on a duplicate (key, version)."""
        async with self.session_factory() as db:
            form = StudentFeedbackForm(
                key=key,
                version=version,
                title=title,
                description=description,
                schema=dict(schema),
                active=False,
            )
            db.add(form)
            await db.commit()
            await db.refresh(form)
            return form.to_dict()

    async def activate_form(self, form_id: str) -> Optional[Dict[str, Any]]:
        """Activate one form and deactivate every other, in one transaction."""
        async with self.session_factory() as db:
            form = await db.get(StudentFeedbackForm, form_id)
            if not form:
                return None
            now = datetime.utcnow()
            await db.execute(
                update(StudentFeedbackForm)
                .where(StudentFeedbackForm.id != form_id, StudentFeedbackForm.active.is_(True))
                .values(active=False, updated_at=now)
            )
            form.active = True
            form.updated_at = now
            await db.commit()
            await db.refresh(form)
            return form.to_dict()

    # =========================================================================
    # Score cache
    # =========================================================================

    async def find_score(self, evaluation_id: str) -> Optional[Dict[str, Any]]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(StudentEvaluationScore)
                .where(StudentEvaluationScore.student_evaluation_id == evaluation_id)
            )
            score = result.scalar_one_or_none()
            return score.to_dict() if score else None

    async def upsert_score(
        self,
        evaluation: EvaluationRecord,
        summary: ScoreSummary,
        form_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        async with self.session_factory() as db:
            row = await db.get(StudentEvaluation, evaluation.id)
            if row is None:
                raise ValueError(f"Student evaluation {evaluation.id} does not exist")
            score = await self._write_score(db, row, summary, form_id)
            try:
                await db.commit()
            except IntegrityError:
                # A concurrent writer created the row first; overwrite it.
                await db.rollback()
                row = await db.get(StudentEvaluation, evaluation.id)
                score = await self._write_score(db, row, summary, form_id)
                await db.commit()
            return score.to_dict()

    @staticmethod
    async def _write_score(
        db: AsyncSession,
        row: StudentEvaluation,
        summary: ScoreSummary,
        form_id: Optional[str] = None,
    ) -> StudentEvaluationScore:
        """Stage the cached summary for a student evaluation in `db`'s transaction."""
        result = await db.execute(
            select(StudentEvaluationScore)
            .where(StudentEvaluationScore.student_evaluation_id == row.id)
        )
        score = result.scalar_one_or_none()
        if score is None:
            score = StudentEvaluationScore(
                student_evaluation_id=row.id,
                schedule_id=row.schedule_id,
                student_id=row.student_id,
            )
            db.add(score)
        score.form_id = form_id or row.form_id
        score.total_score = summary.total_score
        score.max_score = summary.max_score
        score.percentage = summary.percentage
        score.breakdown = {qid: entry.model_dump() for qid, entry in summary.breakdown.items()}
        score.computed_at = datetime.utcnow()
        return score
