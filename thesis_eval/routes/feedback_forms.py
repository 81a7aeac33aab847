"""
Student Feedback Form Routes

Staff create form versions and activate one at a time. Anyone with a
recognised role may read the active form (students need it to answer).
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends, status

from thesis_eval.dependencies import get_caller, get_form_service, require_role
from thesis_eval.errors import DOMAIN_ERRORS, to_api_error
from thesis_eval.orm.user import UserRole
from thesis_eval.schemas.evaluation import Caller, FeedbackFormCreate
from thesis_eval.services.feedback_form_service import FeedbackFormService

router = APIRouter(prefix="/feedback-forms", tags=["Feedback Forms"])


@router.get("")
async def list_forms(
    service: FeedbackFormService = Depends(get_form_service),
    caller: Caller = Depends(require_role([UserRole.ADMIN, UserRole.STAFF]))
) -> Dict[str, Any]:
    return {"forms": await service.list_forms()}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_form(
    payload: FeedbackFormCreate,
    service: FeedbackFormService = Depends(get_form_service),
    caller: Caller = Depends(require_role([UserRole.ADMIN, UserRole.STAFF]))
) -> Dict[str, Any]:
    try:
        form = await service.create_form(payload)
    except DOMAIN_ERRORS as e:
        raise to_api_error(e)
    return {"success": True, "form": form}


@router.get("/active")
async def active_form(
    service: FeedbackFormService = Depends(get_form_service),
    caller: Caller = Depends(get_caller)
) -> Dict[str, Any]:
    return {"form": await service.get_active_form()}


@router.post("/{form_id}/activate")
async def activate_form(
    form_id: str,
    service: FeedbackFormService = Depends(get_form_service),
    caller: Caller = Depends(require_role([UserRole.ADMIN, UserRole.STAFF]))
) -> Dict[str, Any]:
    try:
        form = await service.activate_form(form_id)
    except DOMAIN_ERRORS as e:
        raise to_api_error(e)
    return {"success": True, "form": form}
