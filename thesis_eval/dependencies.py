"""
thesis_eval/dependencies.py
FastAPI dependencies: caller identity and service wiring

Authentication happens upstream. The gateway forwards the authenticated
caller as X-Actor-Id / X-Actor-Role headers; nothing here reads sessions
or cookies.
"""
import logging
from typing import List, Optional

from fastapi import Depends, Header

from thesis_eval.database import AsyncSessionLocal
from thesis_eval.errors import ForbiddenError, BadRequestError
from thesis_eval.orm.user import UserRole
from thesis_eval.schemas.evaluation import Caller
from thesis_eval.services.assignment_service import AssignmentService
from thesis_eval.services.evaluation_store import EvaluationStore
from thesis_eval.services.feedback_form_service import FeedbackFormService
from thesis_eval.state_machines.evaluation_lifecycle import EvaluationLifecycle

logger = logging.getLogger(__name__)

KNOWN_ROLES = {role.value for role in UserRole}


async def get_caller(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None),
) -> Caller:
    role = (x_actor_role or "").strip().lower()
    if role not in KNOWN_ROLES:
        raise ForbiddenError("A recognised X-Actor-Role header is required")
    actor_id = (x_actor_id or "").strip() or None
    if role in (UserRole.STUDENT.value, UserRole.PANELIST.value) and not actor_id:
        raise BadRequestError("X-Actor-Id header is required for this role")
    return Caller(id=actor_id, role=role)


def require_role(allowed_roles: List[UserRole]):
    """Dependency factory: caller must hold one of the given roles."""
    allowed = {role.value for role in allowed_roles}

    async def dependency(caller: Caller = Depends(get_caller)) -> Caller:
        if caller.role not in allowed:
            logger.warning(
                f"Access denied: caller {caller.id} with role {caller.role} "
                f"attempted to access resource requiring {sorted(allowed)}"
            )
            raise ForbiddenError(f"This action requires one of: {sorted(allowed)}")
        return caller

    return dependency


def get_store() -> EvaluationStore:
    return EvaluationStore(AsyncSessionLocal)


def get_form_service(store: EvaluationStore = Depends(get_store)) -> FeedbackFormService:
    return FeedbackFormService(store)


def get_assignment_service(
    store: EvaluationStore = Depends(get_store),
    form_service: FeedbackFormService = Depends(get_form_service),
) -> AssignmentService:
    return AssignmentService(store, form_service)


def get_lifecycle(
    store: EvaluationStore = Depends(get_store),
    form_service: FeedbackFormService = Depends(get_form_service),
) -> EvaluationLifecycle:
    return EvaluationLifecycle(store, form_service)
