from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Sequence

from examhall.models import Assessment, Attempt, AttemptStatus, Group, Subject


class AttemptRepository(ABC):
    """Persistence for tests, groups and attempts.

    Lookups by id raise the matching ``EntityNotFound`` subclass. Attempt writes
    that change status are compare-and-set on the previous status.
    """

    async def ensure_indexes(self) -> None:
        return None

    async def close(self) -> None:
        return None

    # ===== Tests =====

    @abstractmethod
    async def create_test(self, test: Assessment) -> Assessment:
        raise NotImplementedError

    @abstractmethod
    async def get_test(self, test_id: str) -> Assessment:
        raise NotImplementedError

    @abstractmethod
    async def get_tests(self, test_ids: Sequence[str]) -> dict[str, Assessment]:
        raise NotImplementedError

    @abstractmethod
    async def save_test(self, test: Assessment) -> Assessment:
        raise NotImplementedError

    @abstractmethod
    async def delete_test(self, test_id: str) -> int:
        """Delete a test and its attempts; returns the number of attempts removed."""
        raise NotImplementedError

    @abstractmethod
    async def list_tests(self) -> list[Assessment]:
        raise NotImplementedError

    @abstractmethod
    async def list_tests_for_student(self, student_id: str, group_ids: Sequence[str]) -> list[Assessment]:
        raise NotImplementedError

    @abstractmethod
    async def list_tests_for_teacher(self, teacher_id: str, subject_ids: Sequence[str]) -> list[Assessment]:
        raise NotImplementedError

    @abstractmethod
    async def count_tests(self) -> int:
        raise NotImplementedError

    # ===== Groups & subjects =====

    @abstractmethod
    async def create_group(self, group: Group) -> Group:
        raise NotImplementedError

    @abstractmethod
    async def get_group(self, group_id: str) -> Group:
        raise NotImplementedError

    @abstractmethod
    async def list_groups(self, member_id: Optional[str] = None) -> list[Group]:
        """All groups, or those where ``member_id`` is a student or a teacher."""
        raise NotImplementedError

    @abstractmethod
    async def delete_group(self, group_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def group_is_assigned(self, group_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def count_groups(self) -> int:
        raise NotImplementedError

    @abstractmethod
    async def save_subject(self, subject: Subject) -> Subject:
        raise NotImplementedError

    @abstractmethod
    async def get_subject_names(self, subject_ids: Sequence[str]) -> dict[str, str]:
        raise NotImplementedError

    # ===== Attempts =====

    @abstractmethod
    async def get_attempt(self, attempt_id: str) -> Attempt:
        raise NotImplementedError

    @abstractmethod
    async def find_pending_attempt(self, test_id: str, student_id: str) -> Optional[Attempt]:
        raise NotImplementedError

    @abstractmethod
    async def count_attempts(self, test_id: str, student_id: str, statuses: Sequence[AttemptStatus]) -> int:
        raise NotImplementedError

    @abstractmethod
    async def latest_attempt_number(self, test_id: str, student_id: str) -> int:
        """Highest attempt number for the pair, 0 when there is none."""
        raise NotImplementedError

    @abstractmethod
    async def insert_attempt_if_absent(self, attempt: Attempt) -> tuple[Attempt, bool]:
        """Insert keyed on (test_id, student_id, attempt_number).

        Returns the stored attempt and whether this call created it.
        """
        raise NotImplementedError

    @abstractmethod
    async def update_attempt(self, attempt: Attempt, expected_status: AttemptStatus) -> bool:
        """Replace the stored attempt if its status is still ``expected_status``."""
        raise NotImplementedError

    @abstractmethod
    async def list_attempts(
        self,
        *,
        test_id: Optional[str] = None,
        student_id: Optional[str] = None,
        status: Optional[AttemptStatus] = None,
    ) -> list[Attempt]:
        """Newest submission first."""
        raise NotImplementedError

    @abstractmethod
    async def list_evaluated_attempts(
        self, *, student_id: Optional[str] = None, since: Optional[datetime] = None
    ) -> list[Attempt]:
        """Evaluated attempts in submission order, oldest first."""
        raise NotImplementedError

    @abstractmethod
    async def average_marks_by_test(
        self, test_ids: Sequence[str], exclude_student: Optional[str] = None
    ) -> dict[str, float]:
        """Mean ``total_marks_obtained`` of evaluated attempts per test."""
        raise NotImplementedError

    @abstractmethod
    async def count_attempts_by_status(self) -> dict[AttemptStatus, int]:
        raise NotImplementedError
