from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from examhall.auth.dependencies import require_auth, require_staff, require_student
from examhall.models import (
    Assessment,
    Caller,
    DeleteTestResponse,
    StartAttemptResponse,
    TestCreate,
    TestListResponse,
    TestUpdate,
)
from examhall.services import AttemptLifecycle, TestCatalog
from examhall.wiring import get_catalog, get_lifecycle

router = APIRouter(prefix="/tests", tags=["tests"])


@router.get("", response_model=TestListResponse)
async def list_tests(
    caller: Caller = Depends(require_auth), catalog: TestCatalog = Depends(get_catalog)
) -> TestListResponse:
    return TestListResponse(tests=await catalog.list_tests(caller))


@router.post("", response_model=Assessment, status_code=status.HTTP_201_CREATED)
async def create_test(
    req: TestCreate, caller: Caller = Depends(require_staff), catalog: TestCatalog = Depends(get_catalog)
) -> Assessment:
    return await catalog.create_test(req, caller)


@router.get("/{test_id}", response_model=Assessment)
async def get_test(
    test_id: str, caller: Caller = Depends(require_auth), catalog: TestCatalog = Depends(get_catalog)
) -> Assessment:
    return await catalog.get_test(test_id, caller)


@router.put("/{test_id}", response_model=Assessment)
async def update_test(
    test_id: str,
    req: TestUpdate,
    caller: Caller = Depends(require_staff),
    catalog: TestCatalog = Depends(get_catalog),
) -> Assessment:
    return await catalog.update_test(test_id, req, caller)


@router.delete("/{test_id}", response_model=DeleteTestResponse)
async def delete_test(
    test_id: str, caller: Caller = Depends(require_staff), catalog: TestCatalog = Depends(get_catalog)
) -> DeleteTestResponse:
    deleted = await catalog.delete_test(test_id, caller)
    message = f"Test and {deleted} submission(s) deleted successfully" if deleted else "Test deleted successfully"
    return DeleteTestResponse(message=message, submissions_deleted=deleted)


@router.put("/{test_id}/publish", response_model=Assessment)
async def publish_test(
    test_id: str, caller: Caller = Depends(require_staff), catalog: TestCatalog = Depends(get_catalog)
) -> Assessment:
    return await catalog.publish(test_id, caller)


@router.delete("/{test_id}/publish", response_model=Assessment)
async def unpublish_test(
    test_id: str, caller: Caller = Depends(require_staff), catalog: TestCatalog = Depends(get_catalog)
) -> Assessment:
    return await catalog.unpublish(test_id, caller)


@router.put("/{test_id}/publish-results", response_model=Assessment)
async def publish_results(
    test_id: str, caller: Caller = Depends(require_staff), catalog: TestCatalog = Depends(get_catalog)
) -> Assessment:
    return await catalog.publish_results(test_id, caller)


@router.patch("/{test_id}/unpublish-results", response_model=Assessment)
async def unpublish_results(
    test_id: str, caller: Caller = Depends(require_staff), catalog: TestCatalog = Depends(get_catalog)
) -> Assessment:
    return await catalog.unpublish_results(test_id, caller)


@router.post("/{test_id}/start", response_model=StartAttemptResponse)
async def start_test(
    test_id: str,
    response: Response,
    caller: Caller = Depends(require_student),
    lifecycle: AttemptLifecycle = Depends(get_lifecycle),
    catalog: TestCatalog = Depends(get_catalog),
) -> StartAttemptResponse:
    """Start a new attempt, or hand back the one already in progress."""
    attempt, resumed = await lifecycle.start_attempt(test_id, caller)
    test = await catalog.get_test(test_id, caller)
    response.status_code = status.HTTP_200_OK if resumed else status.HTTP_201_CREATED
    return StartAttemptResponse(
        message="Test already in progress" if resumed else "Test started successfully",
        submission=attempt,
        attempt_number=attempt.attempt_number,
        remaining_seconds=lifecycle.remaining_seconds(attempt, test),
        resumed=resumed,
    )
