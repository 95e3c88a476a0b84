from __future__ import annotations

from fastapi import APIRouter, Depends, status

from examhall.auth.dependencies import require_auth, require_staff
from examhall.models import Caller, Group, GroupCreate
from examhall.services import TestCatalog
from examhall.wiring import get_catalog

router = APIRouter(prefix="/groups", tags=["groups"])


@router.get("", response_model=list[Group])
async def list_groups(caller: Caller = Depends(require_auth), catalog: TestCatalog = Depends(get_catalog)) -> list[Group]:
    return await catalog.list_groups(caller)


@router.post("", response_model=Group, status_code=status.HTTP_201_CREATED)
async def create_group(
    req: GroupCreate, caller: Caller = Depends(require_staff), catalog: TestCatalog = Depends(get_catalog)
) -> Group:
    return await catalog.create_group(req, caller)


@router.delete("/{group_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_group(
    group_id: str, caller: Caller = Depends(require_staff), catalog: TestCatalog = Depends(get_catalog)
) -> None:
    await catalog.delete_group(group_id, caller)
