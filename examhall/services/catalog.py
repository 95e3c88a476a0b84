from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from examhall.errors import AuthorizationDenied, DependencyConflict, DomainRuleViolation, TestNotFound
from examhall.models import Assessment, Caller, Group, GroupCreate, TestCreate, TestUpdate, UserRole, utcnow
from examhall.storage.repo import AttemptRepository

logger = logging.getLogger(__name__)

# Test fields an update may reset to null
CLEARABLE_FIELDS = frozenset({"description", "subject_id", "scheduled_date", "deadline"})


def _require_staff(caller: Caller) -> None:
    if not caller.is_staff:
        raise AuthorizationDenied()


def _check_schedule(test: Assessment) -> None:
    if test.scheduled_date and test.deadline and test.deadline < test.scheduled_date:
        raise DomainRuleViolation("Deadline must not be before the scheduled date")


class TestCatalog:
    """Test authoring, publication and visibility, plus the groups tests are assigned to."""

    __test__ = False

    def __init__(self, repo: AttemptRepository, *, clock: Callable[[], datetime] = utcnow) -> None:
        self.repo = repo
        self.clock = clock

    # ===== Tests =====

    async def create_test(self, data: TestCreate, caller: Caller) -> Assessment:
        _require_staff(caller)
        test = Assessment.model_validate(
            {**data.model_dump(), "created_by": caller.user_id, "created_at": self.clock()}
        )
        _check_schedule(test)
        await self.repo.create_test(test)
        logger.info(f"User {caller.user_id} created test {test.test_id} ({test.total_marks} marks)")
        return test

    async def update_test(self, test_id: str, data: TestUpdate, caller: Caller) -> Assessment:
        _require_staff(caller)
        current = await self.repo.get_test(test_id)
        changes = {
            field: value
            for field, value in data.model_dump(exclude_unset=True).items()
            if value is not None or field in CLEARABLE_FIELDS
        }
        # Merged as plain data so replaced question entries are validated again
        test = Assessment.model_validate({**current.model_dump(), **changes, "updated_at": self.clock()})
        _check_schedule(test)
        await self.repo.save_test(test)
        logger.info(f"User {caller.user_id} updated test {test_id}: {sorted(changes)}")
        return test

    async def delete_test(self, test_id: str, caller: Caller) -> int:
        _require_staff(caller)
        deleted = await self.repo.delete_test(test_id)
        logger.info(f"User {caller.user_id} deleted test {test_id} and {deleted} submission(s)")
        return deleted

    async def _set_flag(self, test_id: str, caller: Caller, **flags: bool) -> Assessment:
        _require_staff(caller)
        current = await self.repo.get_test(test_id)
        test = current.model_copy(update={**flags, "updated_at": self.clock()})
        await self.repo.save_test(test)
        logger.info(f"User {caller.user_id} set {flags} on test {test_id}")
        return test

    async def publish(self, test_id: str, caller: Caller) -> Assessment:
        return await self._set_flag(test_id, caller, is_published=True)

    async def unpublish(self, test_id: str, caller: Caller) -> Assessment:
        return await self._set_flag(test_id, caller, is_published=False)

    async def publish_results(self, test_id: str, caller: Caller) -> Assessment:
        return await self._set_flag(test_id, caller, results_published=True)

    async def unpublish_results(self, test_id: str, caller: Caller) -> Assessment:
        return await self._set_flag(test_id, caller, results_published=False)

    async def get_test(self, test_id: str, caller: Caller) -> Assessment:
        test = await self.repo.get_test(test_id)
        if caller.is_student and not test.is_published:
            raise TestNotFound()
        return test

    async def list_tests(self, caller: Caller) -> list[Assessment]:
        if caller.role == UserRole.student:
            groups = await self.repo.list_groups(member_id=caller.user_id)
            group_ids = [g.group_id for g in groups if caller.user_id in g.student_ids]
            return await self.repo.list_tests_for_student(caller.user_id, group_ids)
        if caller.role == UserRole.teacher:
            groups = await self.repo.list_groups(member_id=caller.user_id)
            subject_ids = [g.subject_id for g in groups if g.subject_id and caller.user_id in g.teacher_ids]
            return await self.repo.list_tests_for_teacher(caller.user_id, subject_ids)
        return await self.repo.list_tests()

    # ===== Groups =====

    async def create_group(self, data: GroupCreate, caller: Caller) -> Group:
        _require_staff(caller)
        group = Group.model_validate({**data.model_dump(), "created_at": self.clock()})
        await self.repo.create_group(group)
        logger.info(f"User {caller.user_id} created group {group.group_id} ({len(group.student_ids)} students)")
        return group

    async def list_groups(self, caller: Caller) -> list[Group]:
        if caller.role == UserRole.admin:
            return await self.repo.list_groups()
        return await self.repo.list_groups(member_id=caller.user_id)

    async def delete_group(self, group_id: str, caller: Caller) -> None:
        _require_staff(caller)
        await self.repo.get_group(group_id)
        if await self.repo.group_is_assigned(group_id):
            raise DependencyConflict("Group is assigned to one or more tests")
        await self.repo.delete_group(group_id)
        logger.info(f"User {caller.user_id} deleted group {group_id}")
