from fastapi import APIRouter

from . import evaluations, feedback_forms

router = APIRouter()
router.include_router(evaluations.router)
router.include_router(feedback_forms.router)

__all__ = ["router"]
