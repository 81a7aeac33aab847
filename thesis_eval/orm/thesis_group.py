"""
thesis_eval/orm/thesis_group.py
Thesis groups and their student membership.
"""
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint, Index

from thesis_eval.core.db_types import new_uuid
from thesis_eval.orm.base import Base


class ThesisGroup(Base):
    __tablename__ = "thesis_groups"

    id = Column(String(36), primary_key=True, default=new_uuid)
    title = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class GroupMember(Base):
    __tablename__ = "group_members"

    id = Column(String(36), primary_key=True, default=new_uuid)
    group_id = Column(
        String(36),
        ForeignKey("thesis_groups.id", ondelete="CASCADE"),
        nullable=False
    )
    student_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )

    __table_args__ = (
        UniqueConstraint("group_id", "student_id", name="uq_group_member"),
        Index("idx_group_members_group", "group_id"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {"group_id": self.group_id, "student_id": self.student_id}
