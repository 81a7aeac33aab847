from .base import Base

# Directory
from .user import User, UserRole
from .thesis_group import ThesisGroup, GroupMember
from .defense_schedule import DefenseSchedule

# Evaluations
from .student_feedback_form import StudentFeedbackForm, StudentEvaluationScore
from .evaluation import PanelistEvaluation, StudentEvaluation, EvaluationStatus, EvaluationKind
from .evaluation_audit_log import EvaluationAuditLog

__all__ = [
    "Base",
    "User",
    "UserRole",
    "ThesisGroup",
    "GroupMember",
    "DefenseSchedule",
    "StudentFeedbackForm",
    "StudentEvaluationScore",
    "PanelistEvaluation",
    "StudentEvaluation",
    "EvaluationStatus",
    "EvaluationKind",
    "EvaluationAuditLog",
]
