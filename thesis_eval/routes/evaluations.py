"""
Evaluation API Routes

Thin HTTP surface over the assignment engine, the lifecycle state machine
and the unified evaluation view. Domain errors are translated to the API
error envelope; nothing else is caught.
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status

from thesis_eval.dependencies import (
    get_assignment_service, get_caller, get_lifecycle, get_store, require_role
)
from thesis_eval.errors import DOMAIN_ERRORS, ForbiddenError, to_api_error
from thesis_eval.orm.user import UserRole
from thesis_eval.schemas.evaluation import (
    AnswersPatchRequest, AssignmentRequest, Caller, EvaluationKindLiteral,
    FilterStatusLiteral, TransitionRequest
)
from thesis_eval.services.assignment_service import AssignmentService, normalize_id
from thesis_eval.services.evaluation_store import EvaluationStore
from thesis_eval.services.evaluation_view import (
    compute_stats, filter_evaluations, group_evaluations, load_unified_view
)
from thesis_eval.state_machines.evaluation_lifecycle import EvaluationLifecycle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/evaluations", tags=["Evaluations"])

STAFF_ROLES = [UserRole.ADMIN, UserRole.STAFF]


# =============================================================================
# Unified view
# =============================================================================

@router.get("")
async def list_evaluations(
    search: str = Query(default="", max_length=200),
    status_filter: FilterStatusLiteral = Query(default="all", alias="status"),
    grouped: bool = Query(default=False),
    store: EvaluationStore = Depends(get_store),
    caller: Caller = Depends(require_role(STAFF_ROLES))
) -> Dict[str, Any]:
    """Panelist and student evaluations as one stream, newest first."""
    records, context = await load_unified_view(store)
    filtered = filter_evaluations(records, context, search=search, status=status_filter)

    response: Dict[str, Any] = {
        "stats": compute_stats(records).model_dump(),
        "total": len(filtered),
    }
    if grouped:
        response["groups"] = [
            bucket.model_dump(mode="json") for bucket in group_evaluations(filtered, context)
        ]
    else:
        response["items"] = [record.model_dump(mode="json") for record in filtered]
    return response


# =============================================================================
# Assignment
# =============================================================================

@router.post("/assign", status_code=status.HTTP_200_OK)
async def assign_evaluations(
    payload: AssignmentRequest,
    service: AssignmentService = Depends(get_assignment_service),
    caller: Caller = Depends(require_role(STAFF_ROLES))
) -> Dict[str, Any]:
    """
    Assign evaluations for a schedule.

    mode=particular creates one evaluation (409 if it already exists).
    mode=all assigns every eligible evaluator and returns a per-target report.
    """
    logger.info(f"[API] assign mode={payload.mode.value} role={payload.role} by {caller.role}:{caller.id}")
    try:
        result = await service.assign(payload)
    except DOMAIN_ERRORS as e:
        raise to_api_error(e)

    if payload.mode.value == "particular":
        return {"success": True, "evaluation": result.model_dump(mode="json")}
    return {"success": result.counts.failed == 0, "result": result.model_dump(mode="json")}


# =============================================================================
# Lifecycle
# =============================================================================

@router.post("/{kind}/{evaluation_id}/submit")
async def submit_evaluation(
    kind: EvaluationKindLiteral,
    evaluation_id: str,
    payload: Optional[TransitionRequest] = None,
    lifecycle: EvaluationLifecycle = Depends(get_lifecycle),
    caller: Caller = Depends(get_caller)
) -> Dict[str, Any]:
    try:
        record = await lifecycle.submit(kind, evaluation_id, caller, reason=payload.reason if payload else None)
    except DOMAIN_ERRORS as e:
        raise to_api_error(e)
    return {"success": True, "evaluation": record.model_dump(mode="json")}


@router.post("/{kind}/{evaluation_id}/lock")
async def lock_evaluation(
    kind: EvaluationKindLiteral,
    evaluation_id: str,
    payload: Optional[TransitionRequest] = None,
    lifecycle: EvaluationLifecycle = Depends(get_lifecycle),
    caller: Caller = Depends(require_role(STAFF_ROLES))
) -> Dict[str, Any]:
    try:
        record = await lifecycle.lock(kind, evaluation_id, caller, reason=payload.reason if payload else None)
    except DOMAIN_ERRORS as e:
        raise to_api_error(e)
    return {"success": True, "evaluation": record.model_dump(mode="json")}


@router.post("/{kind}/{evaluation_id}/set-pending")
async def reopen_evaluation(
    kind: EvaluationKindLiteral,
    evaluation_id: str,
    payload: Optional[TransitionRequest] = None,
    lifecycle: EvaluationLifecycle = Depends(get_lifecycle),
    caller: Caller = Depends(require_role([UserRole.ADMIN]))
) -> Dict[str, Any]:
    """Admin override: return an evaluation to pending."""
    try:
        record = await lifecycle.set_pending(kind, evaluation_id, caller, reason=payload.reason if payload else None)
    except DOMAIN_ERRORS as e:
        raise to_api_error(e)
    return {"success": True, "evaluation": record.model_dump(mode="json")}


@router.get("/{kind}/{evaluation_id}/audit")
async def evaluation_audit_trail(
    kind: EvaluationKindLiteral,
    evaluation_id: str,
    store: EvaluationStore = Depends(get_store),
    caller: Caller = Depends(require_role(STAFF_ROLES))
) -> Dict[str, List[Dict[str, Any]]]:
    return {"entries": await store.list_audit_logs(kind, normalize_id(evaluation_id))}


# =============================================================================
# Student feedback
# =============================================================================

@router.patch("/student/{evaluation_id}/answers")
async def patch_student_answers(
    evaluation_id: str,
    payload: AnswersPatchRequest,
    lifecycle: EvaluationLifecycle = Depends(get_lifecycle),
    caller: Caller = Depends(get_caller)
) -> Dict[str, Any]:
    try:
        record = await lifecycle.edit_answers(evaluation_id, payload.answers, caller)
    except DOMAIN_ERRORS as e:
        raise to_api_error(e)
    return {"success": True, "evaluation": record.model_dump(mode="json")}


@router.get("/student/{evaluation_id}/score")
async def student_score(
    evaluation_id: str,
    lifecycle: EvaluationLifecycle = Depends(get_lifecycle),
    caller: Caller = Depends(get_caller)
) -> Dict[str, Any]:
    try:
        record = await lifecycle.get("student", evaluation_id)
        if not caller.is_staff_or_admin and (caller.id or "").lower() != record.evaluator_id.lower():
            raise ForbiddenError("You can only view scores for your own feedback")
        summary = await lifecycle.compute_score(evaluation_id)
    except DOMAIN_ERRORS as e:
        raise to_api_error(e)
    return {"evaluation_id": record.id, "score": summary.model_dump()}
