"""
Scoring and analytics over evaluated attempts.

The module-level functions are pure reductions over attempts and the tests
they belong to; ``ReportService`` loads their inputs from the repository on
every call and never writes anything back.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Callable, Mapping, Optional, Sequence

from examhall.errors import AuthorizationDenied
from examhall.models import (
    Assessment,
    Attempt,
    AttemptStatus,
    Caller,
    OverviewStats,
    PerformancePoint,
    ReportsResponse,
    SubjectPerformance,
    SubmissionStatistics,
    SystemOverview,
    utcnow,
)
from examhall.storage.repo import AttemptRepository

RANGE_DAYS = {"week": 7, "month": 30, "semester": 180}

UNKNOWN_SUBJECT = "Unknown"
DEFAULT_SUBJECT = "General"


def range_start(range_label: str, now: datetime) -> Optional[datetime]:
    """Earliest submitted_at inside a named range; None for "all" or anything unknown."""
    days = RANGE_DAYS.get(range_label)
    return now - timedelta(days=days) if days else None


def round_half_up(value: float, digits: int = 0) -> float:
    scale = 10 ** digits
    return math.floor(value * scale + 0.5) / scale


def _total_marks(test: Assessment) -> float:
    return test.total_marks or 100


def percentage(marks: float, total: float) -> int:
    """Whole percentage of ``total``; a total of 0 counts as 100."""
    return int(round_half_up((marks / (total or 100)) * 100))


def _scored(attempts: Sequence[Attempt], tests: Mapping[str, Assessment]):
    for attempt in attempts:
        test = tests.get(attempt.test_id)
        if test is not None:
            yield attempt, test


def per_user_overview(
    attempts: Sequence[Attempt],
    tests: Mapping[str, Assessment],
    subject_names: Mapping[str, str],
) -> OverviewStats:
    total_score = 0.0
    total_max = 0.0
    total_time = 0
    highest = 0
    highest_subject = ""
    count = 0

    for attempt, test in _scored(attempts, tests):
        count += 1
        marks = attempt.total_marks_obtained or 0
        total_score += marks
        total_max += _total_marks(test)
        total_time += attempt.time_taken_seconds or 0

        pct = percentage(marks, _total_marks(test))
        if pct > highest:
            highest = pct
            highest_subject = subject_names.get(test.subject_id or "", UNKNOWN_SUBJECT)

    # sum(marks) / sum(totals), not a mean of percentages
    average = round_half_up(total_score / total_max * 100, 1) if total_max > 0 else 0

    return OverviewStats(
        total_tests=count,
        average_score=average,
        highest_score=highest,
        highest_score_subject=highest_subject,
        study_time_minutes=int(round_half_up(total_time / 60)),
        study_time_hours=round_half_up(total_time / 3600, 1),
    )


def class_average_percentage(average_marks: float, test: Assessment) -> int:
    return percentage(round_half_up(average_marks), _total_marks(test))


def performance_series(
    attempts: Sequence[Attempt],
    tests: Mapping[str, Assessment],
    average_marks: Mapping[str, float],
) -> list[PerformancePoint]:
    """One point per attempt: the student's percentage next to the test's class average."""
    class_averages = {
        test_id: class_average_percentage(avg, tests[test_id])
        for test_id, avg in average_marks.items()
        if test_id in tests
    }
    points = []
    for index, (attempt, test) in enumerate(_scored(attempts, tests)):
        points.append(
            PerformancePoint(
                name=test.title or f"Test {index + 1}",
                score=percentage(attempt.total_marks_obtained or 0, _total_marks(test)),
                average=class_averages.get(test.test_id, 0),
            )
        )
    return points


def subject_rollup(
    attempts: Sequence[Attempt],
    tests: Mapping[str, Assessment],
    subject_names: Mapping[str, str],
    *,
    incremental_rounding: bool = False,
) -> list[SubjectPerformance]:
    """
    Mean percentage per subject, in order of first appearance.

    With ``incremental_rounding`` the running mean is rounded after every
    attempt, which reproduces reports generated that way historically.
    Otherwise the mean is taken once from the raw sum.
    """
    running: dict[str, list[float]] = {}  # name -> [value, count]
    for attempt, test in _scored(attempts, tests):
        name = subject_names.get(test.subject_id or "") or DEFAULT_SUBJECT
        # Over-marked attempts are capped so a subject mean stays within 0..100
        pct = min(100, percentage(attempt.total_marks_obtained or 0, _total_marks(test)))
        if name not in running:
            running[name] = [pct, 1]
            continue
        value, count = running[name]
        if incremental_rounding:
            running[name] = [round_half_up(((value * count) + pct) / (count + 1)), count + 1]
        else:
            running[name] = [value + pct, count + 1]

    result = []
    for name, (value, count) in running.items():
        mean = value if incremental_rounding else round_half_up(value / count)
        result.append(SubjectPerformance(name=name, value=int(mean)))
    return result


class ReportService:
    def __init__(
        self,
        repo: AttemptRepository,
        *,
        incremental_rounding: bool = False,
        class_average_scope: str = "all",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repo = repo
        self.incremental_rounding = incremental_rounding
        self.class_average_scope = class_average_scope
        self.clock = clock

    async def reports(self, caller: Caller, range_label: str = "all") -> ReportsResponse:
        """Overview, performance series and subject rollup for the caller.

        Students see their own evaluated attempts; staff see everyone's.
        """
        since = range_start(range_label, self.clock())
        student_id = caller.user_id if caller.is_student else None
        attempts = await self.repo.list_evaluated_attempts(student_id=student_id, since=since)

        tests = await self.repo.get_tests([a.test_id for a in attempts])
        subject_names = await self.repo.get_subject_names(
            [t.subject_id for t in tests.values() if t.subject_id]
        )
        exclude = caller.user_id if caller.is_student and self.class_average_scope == "peers" else None
        average_marks = await self.repo.average_marks_by_test(list(tests), exclude_student=exclude)

        return ReportsResponse(
            overview=per_user_overview(attempts, tests, subject_names),
            performance=performance_series(attempts, tests, average_marks),
            subjects=subject_rollup(
                attempts, tests, subject_names, incremental_rounding=self.incremental_rounding
            ),
        )

    async def system_overview(self, caller: Caller) -> SystemOverview:
        if not caller.is_staff:
            raise AuthorizationDenied()
        by_status = await self.repo.count_attempts_by_status()
        return SystemOverview(
            total_tests=await self.repo.count_tests(),
            total_submissions=sum(by_status.values()),
            evaluated_submissions=by_status[AttemptStatus.evaluated],
            pending_submissions=by_status[AttemptStatus.pending] + by_status[AttemptStatus.submitted],
            total_groups=await self.repo.count_groups(),
        )

    async def submission_statistics(self, caller: Caller, test_id: Optional[str] = None) -> SubmissionStatistics:
        if not caller.is_staff:
            raise AuthorizationDenied()
        attempts = await self.repo.list_attempts(test_id=test_id)
        evaluated = [a.total_marks_obtained or 0 for a in attempts if a.status == AttemptStatus.evaluated]
        average = round_half_up(sum(evaluated) / len(evaluated), 2) if evaluated else 0
        return SubmissionStatistics(
            total=len(attempts),
            evaluated=len(evaluated),
            pending=len(attempts) - len(evaluated),
            average_score=average,
        )
