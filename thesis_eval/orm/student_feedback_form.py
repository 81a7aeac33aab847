"""
thesis_eval/orm/student_feedback_form.py
Versioned student feedback form definitions and cached score summaries.

At most one form is active at a time; activation is done through
FeedbackFormService.activate_form, which deactivates every other form
in the same transaction.
"""
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, DateTime, Text,
    ForeignKey, UniqueConstraint, Index
)

from thesis_eval.core.db_types import UniversalJSON, new_uuid
from thesis_eval.orm.base import Base


class StudentFeedbackForm(Base):
    __tablename__ = "student_feedback_forms"

    id = Column(String(36), primary_key=True, default=new_uuid)
    key = Column(String(120), nullable=False)
    version = Column(Integer, nullable=False, default=1)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    schema = Column(UniversalJSON, nullable=False, default=dict)
    active = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("key", "version", name="uq_feedback_form_key_version"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "key": self.key,
            "version": self.version,
            "title": self.title,
            "description": self.description,
            "schema": dict(self.schema or {}),
            "active": bool(self.active),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class StudentEvaluationScore(Base):
    """Recomputable projection of (answers, schema); a cache, never authoritative."""
    __tablename__ = "student_evaluation_scores"

    id = Column(String(36), primary_key=True, default=new_uuid)
    student_evaluation_id = Column(
        String(36),
        ForeignKey("student_evaluations.id", ondelete="CASCADE"),
        nullable=False
    )
    schedule_id = Column(String(36), nullable=False)
    student_id = Column(String(36), nullable=False)
    form_id = Column(String(36), nullable=True)
    total_score = Column(Float, nullable=False, default=0.0)
    max_score = Column(Float, nullable=False, default=0.0)
    percentage = Column(Float, nullable=False, default=0.0)
    breakdown = Column(UniversalJSON, nullable=False, default=dict)
    computed_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("student_evaluation_id", name="uq_student_evaluation_score"),
        Index("idx_student_evaluation_scores_schedule", "schedule_id"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "student_evaluation_id": self.student_evaluation_id,
            "schedule_id": self.schedule_id,
            "student_id": self.student_id,
            "form_id": self.form_id,
            "total_score": self.total_score,
            "max_score": self.max_score,
            "percentage": self.percentage,
            "breakdown": dict(self.breakdown or {}),
            "computed_at": self.computed_at.isoformat() if self.computed_at else None,
        }
