from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from examhall.auth.dependencies import require_auth, require_staff, require_student
from examhall.models import (
    Attempt,
    AttemptDetailResponse,
    AttemptListResponse,
    AttemptStatus,
    Caller,
    EvaluateAttemptRequest,
    SaveAnswersRequest,
    SubmitAttemptRequest,
    SubmitAttemptResponse,
)
from examhall.services import AttemptLifecycle
from examhall.wiring import get_lifecycle

router = APIRouter(prefix="/submissions", tags=["submissions"])


@router.get("", response_model=AttemptListResponse)
async def list_submissions(
    test: Optional[str] = Query(None, description="Filter by test id"),
    status: Optional[AttemptStatus] = Query(None, description="Filter by status"),
    caller: Caller = Depends(require_auth),
    lifecycle: AttemptLifecycle = Depends(get_lifecycle),
) -> AttemptListResponse:
    """Students only ever see their own submissions."""
    return AttemptListResponse(submissions=await lifecycle.list_attempts(caller, test_id=test, status=status))


@router.post("", response_model=SubmitAttemptResponse)
async def submit(
    req: SubmitAttemptRequest,
    caller: Caller = Depends(require_student),
    lifecycle: AttemptLifecycle = Depends(get_lifecycle),
) -> SubmitAttemptResponse:
    attempt = await lifecycle.submit_attempt(
        caller, req.answers, req.time_taken, attempt_id=req.attempt_id, test_id=req.test_id
    )
    return SubmitAttemptResponse(message="Submission updated successfully", submission=attempt)


@router.get("/{attempt_id}", response_model=AttemptDetailResponse)
async def get_submission(
    attempt_id: str,
    caller: Caller = Depends(require_auth),
    lifecycle: AttemptLifecycle = Depends(get_lifecycle),
) -> AttemptDetailResponse:
    attempt, remaining = await lifecycle.get_attempt(attempt_id, caller)
    return AttemptDetailResponse(submission=attempt, remaining_seconds=remaining)


@router.put("/{attempt_id}/answers", response_model=Attempt)
async def save_answers(
    attempt_id: str,
    req: SaveAnswersRequest,
    caller: Caller = Depends(require_student),
    lifecycle: AttemptLifecycle = Depends(get_lifecycle),
) -> Attempt:
    return await lifecycle.save_answers(attempt_id, req.answers, caller)


@router.put("/{attempt_id}", response_model=SubmitAttemptResponse)
async def evaluate(
    attempt_id: str,
    req: EvaluateAttemptRequest,
    caller: Caller = Depends(require_staff),
    lifecycle: AttemptLifecycle = Depends(get_lifecycle),
) -> SubmitAttemptResponse:
    attempt = await lifecycle.evaluate_attempt(attempt_id, req.answers, caller, req.total_marks_obtained)
    return SubmitAttemptResponse(message="Submission evaluated successfully", submission=attempt)
