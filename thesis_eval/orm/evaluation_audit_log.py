"""
thesis_eval/orm/evaluation_audit_log.py
Append-only record of lifecycle transitions, including the acting caller.
"""
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import Column, String, DateTime, Text, Index

from thesis_eval.core.db_types import new_uuid
from thesis_eval.orm.base import Base


class EvaluationAuditLog(Base):
    __tablename__ = "evaluation_audit_logs"

    id = Column(String(36), primary_key=True, default=new_uuid)
    kind = Column(String(16), nullable=False)
    evaluation_id = Column(String(36), nullable=False)
    action = Column(String(32), nullable=False)
    from_status = Column(String(16), nullable=True)
    to_status = Column(String(16), nullable=False)
    actor_id = Column(String(36), nullable=True)
    actor_role = Column(String(32), nullable=True)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_evaluation_audit_target", "kind", "evaluation_id"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "evaluation_id": self.evaluation_id,
            "action": self.action,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "reason": self.reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
