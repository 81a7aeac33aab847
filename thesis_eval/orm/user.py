"""
thesis_eval/orm/user.py
User accounts as seen by the evaluation workflow.

Provisioning lives elsewhere; this table is read for eligibility
(role + account status) and display enrichment.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict

from sqlalchemy import Column, String, DateTime

from thesis_eval.core.db_types import new_uuid
from thesis_eval.orm.base import Base


class UserRole(str, Enum):
    STUDENT = "student"
    STAFF = "staff"
    ADMIN = "admin"
    PANELIST = "panelist"


# Account statuses that exclude a user from any assignment
DISABLED_USER_STATUSES = frozenset({"inactive", "disabled", "blocked", "archived", "suspended"})


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_uuid)
    name = Column(String(200), nullable=True)
    email = Column(String(255), nullable=True, unique=True, index=True)
    role = Column(String(32), nullable=False, index=True)
    status = Column(String(32), nullable=False, default="active", index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
