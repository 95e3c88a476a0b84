"""
Attempt lifecycle for ExamHall.

A student's attempt moves pending -> submitted -> evaluated and never back.
StartAttempt is the only way an attempt comes into existence; it resumes an
existing pending attempt instead of creating a second one, and refuses to open
a new attempt once the test's attempt ceiling is reached. The countdown is
not stored: the remaining time is derived from the attempt's creation time
every time it is asked for.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

from examhall.errors import (
    AttemptAlreadyTerminal,
    AttemptLimitExceeded,
    AttemptNotFound,
    AttemptNotSubmitted,
    AuthorizationDenied,
    DomainRuleViolation,
    InvalidEvaluation,
    TestNotOpen,
    TestNotPublished,
)
from examhall.models import (
    TERMINAL_STATUSES,
    Answer,
    AnswerEvaluation,
    AnswerIn,
    Assessment,
    Attempt,
    AttemptStatus,
    Caller,
    utcnow,
)
from examhall.observability import get_tracer
from examhall.storage.repo import AttemptRepository

logger = logging.getLogger(__name__)


def compute_remaining_time(attempt: Attempt, test: Assessment, now: datetime) -> int:
    """Seconds left on a pending attempt's clock; 0 once it has left pending."""
    if attempt.status != AttemptStatus.pending:
        return 0
    elapsed = (now - attempt.created_at).total_seconds()
    return max(0, int(test.duration_seconds - elapsed))


def collect_answers(answers: Sequence[AnswerIn]) -> list[Answer]:
    """Keep only question reference, text and attachments; a repeated question keeps its last answer."""
    by_question: dict[str, Answer] = {}
    for answer in answers:
        by_question[answer.question_id] = answer.to_answer()
    return list(by_question.values())


class AttemptLifecycle:
    def __init__(
        self,
        repo: AttemptRepository,
        *,
        auto_submit_expired: bool = True,
        grace_seconds: int = 30,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repo = repo
        self.auto_submit_expired = auto_submit_expired
        self.grace_seconds = grace_seconds
        self.clock = clock
        self.tracer = get_tracer()

    def remaining_seconds(self, attempt: Attempt, test: Assessment) -> int:
        return compute_remaining_time(attempt, test, self.clock())

    def _is_abandoned(self, attempt: Attempt, test: Assessment, now: datetime) -> bool:
        deadline = attempt.created_at + timedelta(seconds=test.duration_seconds + self.grace_seconds)
        return now >= deadline

    @staticmethod
    def _check_window(test: Assessment, now: datetime) -> None:
        if test.scheduled_date and now < test.scheduled_date:
            raise TestNotOpen("Test has not started yet")
        if test.deadline and now > test.deadline:
            raise TestNotOpen("Test deadline has passed")

    # ===== Start / resume =====

    async def start_attempt(self, test_id: str, caller: Caller) -> tuple[Attempt, bool]:
        """
        Start or resume the caller's attempt at a test.

        Returns:
            (attempt, resumed) where resumed is True when an existing pending
            attempt was handed back instead of a new one being created.
        """
        with self.tracer.start_as_current_span("attempt.start") as span:
            span.set_attribute("examhall.test_id", test_id)
            if not caller.is_student:
                raise AuthorizationDenied("Only students can start tests")

            test = await self.repo.get_test(test_id)
            if not test.is_published:
                raise TestNotPublished()

            now = self.clock()
            pending = await self.repo.find_pending_attempt(test_id, caller.user_id)
            if pending is not None:
                if not (self.auto_submit_expired and self._is_abandoned(pending, test, now)):
                    logger.info(
                        f"Student {caller.user_id} resumed attempt {pending.attempt_number} of test {test_id}"
                    )
                    return pending, True
                await self._auto_submit(pending, test)

            self._check_window(test, now)

            completed = await self.repo.count_attempts(test_id, caller.user_id, TERMINAL_STATUSES)
            if completed >= test.max_attempts:
                logger.info(f"Student {caller.user_id} hit the attempt limit ({test.max_attempts}) on test {test_id}")
                raise AttemptLimitExceeded()

            next_number = await self.repo.latest_attempt_number(test_id, caller.user_id) + 1
            attempt = Attempt(
                test_id=test_id,
                student_id=caller.user_id,
                attempt_number=next_number,
                created_at=now,
            )
            stored, created = await self.repo.insert_attempt_if_absent(attempt)
            span.set_attribute("examhall.attempt_number", stored.attempt_number)

            if created:
                logger.info(f"Student {caller.user_id} started attempt {next_number} of test {test_id}")
            else:
                logger.info(f"Concurrent start for student {caller.user_id} on test {test_id} reused attempt {next_number}")
            return stored, not created

    async def _auto_submit(self, attempt: Attempt, test: Assessment) -> None:
        finalized = attempt.model_copy(
            update={
                "status": AttemptStatus.submitted,
                "auto_submitted": True,
                "time_taken_seconds": test.duration_seconds,
                "submitted_at": attempt.created_at + timedelta(seconds=test.duration_seconds),
            }
        )
        if await self.repo.update_attempt(finalized, AttemptStatus.pending):
            logger.info(
                f"Auto-submitted expired attempt {attempt.attempt_number} of test {test.test_id} "
                f"for student {attempt.student_id}"
            )

    # ===== Answering =====

    async def _own_attempt(self, attempt_id: str, caller: Caller) -> Attempt:
        attempt = await self.repo.get_attempt(attempt_id)
        if attempt.student_id != caller.user_id:
            # Someone else's attempt is reported as missing
            raise AttemptNotFound()
        return attempt

    async def save_answers(self, attempt_id: str, answers: Sequence[AnswerIn], caller: Caller) -> Attempt:
        if not caller.is_student:
            raise AuthorizationDenied("Only students can answer tests")
        attempt = await self._own_attempt(attempt_id, caller)
        if attempt.is_terminal:
            raise AttemptAlreadyTerminal()

        updated = attempt.model_copy(update={"answers": collect_answers(answers)})
        if not await self.repo.update_attempt(updated, AttemptStatus.pending):
            raise AttemptAlreadyTerminal()
        return updated

    async def submit_attempt(
        self,
        caller: Caller,
        answers: Sequence[AnswerIn],
        time_taken: Optional[int] = None,
        *,
        attempt_id: Optional[str] = None,
        test_id: Optional[str] = None,
    ) -> Attempt:
        """
        Freeze a pending attempt's answers and mark it submitted.

        The attempt is located by id, or as the caller's pending attempt at
        ``test_id``. A second submit of the same attempt fails with
        AttemptAlreadyTerminal; no attempt is ever created here.
        """
        with self.tracer.start_as_current_span("attempt.submit"):
            if not caller.is_student:
                raise AuthorizationDenied("Only students can submit tests")

            if attempt_id:
                attempt = await self._own_attempt(attempt_id, caller)
                if test_id and attempt.test_id != test_id:
                    raise AttemptNotFound()
            elif test_id:
                await self.repo.get_test(test_id)
                attempt = await self.repo.find_pending_attempt(test_id, caller.user_id)
                if attempt is None:
                    if await self.repo.count_attempts(test_id, caller.user_id, TERMINAL_STATUSES):
                        raise AttemptAlreadyTerminal()
                    raise AttemptNotFound("No test in progress, start the test first")
            else:
                raise DomainRuleViolation("testId or attemptId is required")

            if attempt.is_terminal:
                raise AttemptAlreadyTerminal()

            test = await self.repo.get_test(attempt.test_id)
            if not test.is_published:
                raise TestNotPublished()

            now = self.clock()
            if time_taken is None:
                time_taken = int((now - attempt.created_at).total_seconds())
            time_taken = max(0, min(time_taken, test.duration_seconds))

            submitted = attempt.model_copy(
                update={
                    "answers": collect_answers(answers),
                    "time_taken_seconds": time_taken,
                    "status": AttemptStatus.submitted,
                    "submitted_at": now,
                }
            )
            if not await self.repo.update_attempt(submitted, AttemptStatus.pending):
                raise AttemptAlreadyTerminal()

            logger.info(
                f"Student {caller.user_id} submitted attempt {attempt.attempt_number} of test {attempt.test_id} "
                f"({len(submitted.answers)} answers, {time_taken}s)"
            )
            return submitted

    # ===== Evaluation =====

    async def evaluate_attempt(
        self,
        attempt_id: str,
        marks: Sequence[AnswerEvaluation],
        caller: Caller,
        claimed_total: Optional[float] = None,
    ) -> Attempt:
        """
        Attach per-question marks and remarks and mark the attempt evaluated.

        Re-evaluating an evaluated attempt is allowed. Answers missing from
        ``marks`` keep what they had. The total is always recomputed from the
        per-answer marks.
        """
        with self.tracer.start_as_current_span("attempt.evaluate"):
            if not caller.is_staff:
                raise AuthorizationDenied()

            attempt = await self.repo.get_attempt(attempt_id)
            if attempt.status == AttemptStatus.pending:
                raise AttemptNotSubmitted()

            by_question = {m.question_id: m for m in marks}
            unknown = set(by_question) - {a.question_id for a in attempt.answers}
            if unknown:
                raise InvalidEvaluation(f"Submission has no answer for question(s): {', '.join(sorted(unknown))}")

            answers = []
            for answer in attempt.answers:
                mark = by_question.get(answer.question_id)
                if mark is not None:
                    answer = answer.model_copy(update={"marks_obtained": mark.marks_obtained, "remarks": mark.remarks})
                answers.append(answer)
            total = sum(a.marks_obtained or 0 for a in answers)

            if claimed_total is not None and claimed_total != total:
                logger.warning(
                    f"Evaluation of {attempt_id} claimed total {claimed_total}, recomputed {total}"
                )

            evaluated = attempt.model_copy(
                update={
                    "answers": answers,
                    "total_marks_obtained": total,
                    "status": AttemptStatus.evaluated,
                    "evaluated_by": caller.user_id,
                    "evaluated_at": self.clock(),
                }
            )
            if not await self.repo.update_attempt(evaluated, attempt.status):
                # Raises AttemptNotFound if the submission was deleted meanwhile
                await self.repo.get_attempt(attempt_id)
                raise DomainRuleViolation("Submission changed while it was being evaluated, please retry")

            logger.info(f"User {caller.user_id} evaluated submission {attempt_id}: {total} marks")
            return evaluated

    # ===== Reads =====

    async def get_attempt(self, attempt_id: str, caller: Caller) -> tuple[Attempt, Optional[int]]:
        """The attempt and, while pending, its remaining seconds."""
        if caller.is_student:
            attempt = await self._own_attempt(attempt_id, caller)
        else:
            attempt = await self.repo.get_attempt(attempt_id)

        test = await self.repo.get_test(attempt.test_id)
        remaining = self.remaining_seconds(attempt, test) if attempt.status == AttemptStatus.pending else None
        if caller.is_student and not test.results_visible:
            attempt = attempt.without_marks()
        return attempt, remaining

    async def list_attempts(
        self,
        caller: Caller,
        *,
        test_id: Optional[str] = None,
        status: Optional[AttemptStatus] = None,
    ) -> list[Attempt]:
        student_id = caller.user_id if caller.is_student else None
        attempts = await self.repo.list_attempts(test_id=test_id, student_id=student_id, status=status)
        if not caller.is_student:
            return attempts

        tests = await self.repo.get_tests([a.test_id for a in attempts])
        visible = []
        for attempt in attempts:
            test = tests.get(attempt.test_id)
            visible.append(attempt if test is not None and test.results_visible else attempt.without_marks())
        return visible
