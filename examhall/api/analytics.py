from __future__ import annotations

from typing import Literal, Optional, Union

from fastapi import APIRouter, Depends, Query

from examhall.auth.dependencies import require_auth, require_staff
from examhall.models import Caller, ReportRange, ReportsResponse, SubmissionStatistics, SystemOverview
from examhall.services import ReportService
from examhall.wiring import get_reports

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/reports", response_model=ReportsResponse)
async def reports(
    range: ReportRange = Query("all"),
    caller: Caller = Depends(require_auth),
    service: ReportService = Depends(get_reports),
) -> ReportsResponse:
    """Recomputed from stored submissions on every call; safe to poll."""
    return await service.reports(caller, range)


@router.get("", response_model=Union[SystemOverview, SubmissionStatistics])
async def analytics(
    type: Literal["overview", "submissions"] = Query("overview"),
    test_id: Optional[str] = Query(None, alias="testId"),
    caller: Caller = Depends(require_staff),
    service: ReportService = Depends(get_reports),
) -> Union[SystemOverview, SubmissionStatistics]:
    if type == "submissions":
        return await service.submission_statistics(caller, test_id)
    return await service.system_overview(caller)
