from fastapi import APIRouter

from examhall.api import analytics, assessments, groups, submissions

router = APIRouter(prefix="/api/v1")
router.include_router(assessments.router)
router.include_router(submissions.router)
router.include_router(analytics.router)
router.include_router(groups.router)
