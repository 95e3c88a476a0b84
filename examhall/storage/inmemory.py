from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional, Sequence

from examhall.errors import AttemptNotFound, GroupNotFound, TestNotFound
from examhall.models import Assessment, Attempt, AttemptStatus, Group, Subject
from examhall.storage.repo import AttemptRepository


def _submission_order(attempt: Attempt) -> datetime:
    return attempt.submitted_at or attempt.created_at


class InMemoryAttemptRepository(AttemptRepository):
    def __init__(self) -> None:
        self.tests: Dict[str, Assessment] = {}
        self.attempts: Dict[str, Attempt] = {}
        self.groups: Dict[str, Group] = {}
        self.subjects: Dict[str, Subject] = {}

    # ===== Tests =====

    async def create_test(self, test: Assessment) -> Assessment:
        self.tests[test.test_id] = test.model_copy(deep=True)
        return test

    async def get_test(self, test_id: str) -> Assessment:
        test = self.tests.get(test_id)
        if test is None:
            raise TestNotFound()
        return test.model_copy(deep=True)

    async def get_tests(self, test_ids: Sequence[str]) -> dict[str, Assessment]:
        return {tid: self.tests[tid].model_copy(deep=True) for tid in set(test_ids) if tid in self.tests}

    async def save_test(self, test: Assessment) -> Assessment:
        if test.test_id not in self.tests:
            raise TestNotFound()
        self.tests[test.test_id] = test.model_copy(deep=True)
        return test

    async def delete_test(self, test_id: str) -> int:
        if test_id not in self.tests:
            raise TestNotFound()
        doomed = [aid for aid, a in self.attempts.items() if a.test_id == test_id]
        for aid in doomed:
            del self.attempts[aid]
        del self.tests[test_id]
        return len(doomed)

    def _newest_first(self, tests: list[Assessment]) -> list[Assessment]:
        return [t.model_copy(deep=True) for t in sorted(tests, key=lambda t: t.created_at, reverse=True)]

    async def list_tests(self) -> list[Assessment]:
        return self._newest_first(list(self.tests.values()))

    async def list_tests_for_student(self, student_id: str, group_ids: Sequence[str]) -> list[Assessment]:
        groups = set(group_ids)
        return self._newest_first(
            [
                t
                for t in self.tests.values()
                if t.is_published and (student_id in t.assigned_to or groups.intersection(t.assigned_groups))
            ]
        )

    async def list_tests_for_teacher(self, teacher_id: str, subject_ids: Sequence[str]) -> list[Assessment]:
        subjects = set(subject_ids)
        return self._newest_first(
            [t for t in self.tests.values() if t.created_by == teacher_id or t.subject_id in subjects]
        )

    async def count_tests(self) -> int:
        return len(self.tests)

    # ===== Groups & subjects =====

    async def create_group(self, group: Group) -> Group:
        self.groups[group.group_id] = group.model_copy(deep=True)
        return group

    async def get_group(self, group_id: str) -> Group:
        group = self.groups.get(group_id)
        if group is None:
            raise GroupNotFound()
        return group.model_copy(deep=True)

    async def list_groups(self, member_id: Optional[str] = None) -> list[Group]:
        groups = self.groups.values()
        if member_id is not None:
            groups = [g for g in groups if member_id in g.student_ids or member_id in g.teacher_ids]
        return [g.model_copy(deep=True) for g in sorted(groups, key=lambda g: g.name)]

    async def delete_group(self, group_id: str) -> None:
        if self.groups.pop(group_id, None) is None:
            raise GroupNotFound()

    async def group_is_assigned(self, group_id: str) -> bool:
        return any(group_id in t.assigned_groups for t in self.tests.values())

    async def count_groups(self) -> int:
        return len(self.groups)

    async def save_subject(self, subject: Subject) -> Subject:
        self.subjects[subject.subject_id] = subject
        return subject

    async def get_subject_names(self, subject_ids: Sequence[str]) -> dict[str, str]:
        return {sid: self.subjects[sid].name for sid in set(subject_ids) if sid in self.subjects}

    # ===== Attempts =====

    async def get_attempt(self, attempt_id: str) -> Attempt:
        attempt = self.attempts.get(attempt_id)
        if attempt is None:
            raise AttemptNotFound()
        return attempt.model_copy(deep=True)

    def _pair(self, test_id: str, student_id: str) -> list[Attempt]:
        return [a for a in self.attempts.values() if a.test_id == test_id and a.student_id == student_id]

    async def find_pending_attempt(self, test_id: str, student_id: str) -> Optional[Attempt]:
        for attempt in self._pair(test_id, student_id):
            if attempt.status == AttemptStatus.pending:
                return attempt.model_copy(deep=True)
        return None

    async def count_attempts(self, test_id: str, student_id: str, statuses: Sequence[AttemptStatus]) -> int:
        return sum(1 for a in self._pair(test_id, student_id) if a.status in statuses)

    async def latest_attempt_number(self, test_id: str, student_id: str) -> int:
        return max((a.attempt_number for a in self._pair(test_id, student_id)), default=0)

    async def insert_attempt_if_absent(self, attempt: Attempt) -> tuple[Attempt, bool]:
        # No await between the lookup and the insert, so this is atomic on the event loop
        for existing in self._pair(attempt.test_id, attempt.student_id):
            if existing.attempt_number == attempt.attempt_number:
                return existing.model_copy(deep=True), False
        self.attempts[attempt.attempt_id] = attempt.model_copy(deep=True)
        return attempt, True

    async def update_attempt(self, attempt: Attempt, expected_status: AttemptStatus) -> bool:
        current = self.attempts.get(attempt.attempt_id)
        if current is None or current.status != expected_status:
            return False
        self.attempts[attempt.attempt_id] = attempt.model_copy(deep=True)
        return True

    async def list_attempts(
        self,
        *,
        test_id: Optional[str] = None,
        student_id: Optional[str] = None,
        status: Optional[AttemptStatus] = None,
    ) -> list[Attempt]:
        found = [
            a
            for a in self.attempts.values()
            if (test_id is None or a.test_id == test_id)
            and (student_id is None or a.student_id == student_id)
            and (status is None or a.status == status)
        ]
        found.sort(key=_submission_order, reverse=True)
        return [a.model_copy(deep=True) for a in found]

    async def list_evaluated_attempts(
        self, *, student_id: Optional[str] = None, since: Optional[datetime] = None
    ) -> list[Attempt]:
        found = [
            a
            for a in self.attempts.values()
            if a.status == AttemptStatus.evaluated
            and (student_id is None or a.student_id == student_id)
            and (since is None or (a.submitted_at is not None and a.submitted_at >= since))
        ]
        found.sort(key=_submission_order)
        return [a.model_copy(deep=True) for a in found]

    async def average_marks_by_test(
        self, test_ids: Sequence[str], exclude_student: Optional[str] = None
    ) -> dict[str, float]:
        wanted = set(test_ids)
        marks: Dict[str, list[float]] = {}
        for a in self.attempts.values():
            if a.status != AttemptStatus.evaluated or a.test_id not in wanted:
                continue
            if exclude_student is not None and a.student_id == exclude_student:
                continue
            marks.setdefault(a.test_id, []).append(a.total_marks_obtained or 0)
        return {tid: sum(values) / len(values) for tid, values in marks.items()}

    async def count_attempts_by_status(self) -> dict[AttemptStatus, int]:
        counts = {s: 0 for s in AttemptStatus}
        for a in self.attempts.values():
            counts[a.status] += 1
        return counts
