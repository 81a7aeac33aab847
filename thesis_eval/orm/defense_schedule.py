"""
thesis_eval/orm/defense_schedule.py
Scheduled thesis-defense sessions that evaluations are assigned against.
"""
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import Column, String, DateTime, ForeignKey, Index

from thesis_eval.core.db_types import new_uuid
from thesis_eval.orm.base import Base


class DefenseSchedule(Base):
    __tablename__ = "defense_schedules"

    id = Column(String(36), primary_key=True, default=new_uuid)
    group_id = Column(
        String(36),
        ForeignKey("thesis_groups.id", ondelete="SET NULL"),
        nullable=True
    )
    scheduled_at = Column(DateTime, nullable=False)
    room = Column(String(120), nullable=True)
    status = Column(String(32), nullable=False, default="scheduled")

    # Feedback form pinned at first student assignment
    student_feedback_form_id = Column(
        String(36),
        ForeignKey("student_feedback_forms.id", ondelete="SET NULL"),
        nullable=True
    )
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_defense_schedules_group", "group_id"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "group_id": self.group_id,
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "room": self.room,
            "status": self.status,
            "student_feedback_form_id": self.student_feedback_form_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
