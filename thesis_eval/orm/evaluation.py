"""
thesis_eval/orm/evaluation.py
Panelist rubric evaluations and student feedback evaluations.

The two tables are physically distinct but share the lifecycle columns
(status, submitted_at, locked_at, created_at). Both enforce at most one
row per (schedule, evaluator) at write time.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict

from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint, Index

from thesis_eval.core.db_types import UniversalJSON, new_uuid
from thesis_eval.orm.base import Base


class EvaluationStatus(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    LOCKED = "locked"


class EvaluationKind(str, Enum):
    PANELIST = "panelist"
    STUDENT = "student"


def _iso(value):
    return value.isoformat() if value else None


class PanelistEvaluation(Base):
    __tablename__ = "evaluations"

    id = Column(String(36), primary_key=True, default=new_uuid)
    schedule_id = Column(
        String(36),
        ForeignKey("defense_schedules.id", ondelete="CASCADE"),
        nullable=False
    )
    evaluator_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    status = Column(String(16), nullable=False, default=EvaluationStatus.PENDING.value)
    submitted_at = Column(DateTime, nullable=True)
    locked_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("schedule_id", "evaluator_id", name="uq_evaluation_schedule_evaluator"),
        Index("idx_evaluations_schedule", "schedule_id"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "schedule_id": self.schedule_id,
            "evaluator_id": self.evaluator_id,
            "status": self.status,
            "submitted_at": _iso(self.submitted_at),
            "locked_at": _iso(self.locked_at),
            "created_at": _iso(self.created_at),
        }


class StudentEvaluation(Base):
    __tablename__ = "student_evaluations"

    id = Column(String(36), primary_key=True, default=new_uuid)
    schedule_id = Column(
        String(36),
        ForeignKey("defense_schedules.id", ondelete="CASCADE"),
        nullable=False
    )
    student_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    # Form version this feedback is scored against
    form_id = Column(
        String(36),
        ForeignKey("student_feedback_forms.id", ondelete="SET NULL"),
        nullable=True
    )
    status = Column(String(16), nullable=False, default=EvaluationStatus.PENDING.value)
    answers = Column(UniversalJSON, nullable=False, default=dict)
    submitted_at = Column(DateTime, nullable=True)
    locked_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("schedule_id", "student_id", name="uq_student_evaluation_schedule_student"),
        Index("idx_student_evaluations_schedule", "schedule_id"),
        Index("idx_student_evaluations_student", "student_id"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "schedule_id": self.schedule_id,
            "student_id": self.student_id,
            "form_id": self.form_id,
            "status": self.status,
            "answers": dict(self.answers or {}),
            "submitted_at": _iso(self.submitted_at),
            "locked_at": _iso(self.locked_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
