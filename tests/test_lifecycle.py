import asyncio
from datetime import timedelta

import pytest

from examhall import errors
from examhall.models import AnswerEvaluation, AnswerIn, AttemptStatus
from examhall.services import AttemptLifecycle
from examhall.services.lifecycle import collect_answers, compute_remaining_time
from examhall.storage import InMemoryAttemptRepository

from conftest import T0, make_test


def answers(*pairs):
    return [AnswerIn.model_validate({"question": q, "answer": a}) for q, a in pairs]


def marks(*pairs):
    return [AnswerEvaluation.model_validate({"question": q, "marksObtained": m}) for q, m in pairs]


# ===== Start / resume =====

async def test_start_creates_first_attempt(lifecycle, published_test, student):
    attempt, resumed = await lifecycle.start_attempt("t1", student)

    assert not resumed
    assert attempt.attempt_number == 1
    assert attempt.status == AttemptStatus.pending
    assert attempt.created_at == T0
    assert lifecycle.remaining_seconds(attempt, published_test) == 30 * 60


async def test_start_twice_resumes_the_pending_attempt(lifecycle, published_test, student, repo):
    first, _ = await lifecycle.start_attempt("t1", student)
    second, resumed = await lifecycle.start_attempt("t1", student)

    assert resumed
    assert second.attempt_id == first.attempt_id
    assert len(repo.attempts) == 1


async def test_second_attempt_after_submit(lifecycle, published_test, student):
    first, _ = await lifecycle.start_attempt("t1", student)
    submitted = await lifecycle.submit_attempt(student, answers(("q1", "4"), ("q2", "x=2")), test_id="t1")
    assert submitted.status == AttemptStatus.submitted
    assert len(submitted.answers) == 2

    second, resumed = await lifecycle.start_attempt("t1", student)
    assert not resumed
    assert second.attempt_number == 2
    assert second.status == AttemptStatus.pending


async def test_attempt_limit(lifecycle, published_test, student):
    for _ in range(2):
        await lifecycle.start_attempt("t1", student)
        await lifecycle.submit_attempt(student, answers(("q1", "a")), test_id="t1")

    with pytest.raises(errors.AttemptLimitExceeded):
        await lifecycle.start_attempt("t1", student)


async def test_attempt_numbers_have_no_gaps(lifecycle, published_test, student, repo):
    for _ in range(2):
        await lifecycle.start_attempt("t1", student)
        await lifecycle.submit_attempt(student, [], test_id="t1")

    numbers = sorted(a.attempt_number for a in repo.attempts.values())
    assert numbers == [1, 2]


async def test_concurrent_starts_share_one_attempt(lifecycle, published_test, student, repo):
    results = await asyncio.gather(
        lifecycle.start_attempt("t1", student),
        lifecycle.start_attempt("t1", student),
    )

    assert results[0][0].attempt_id == results[1][0].attempt_id
    assert sorted(resumed for _, resumed in results) == [False, True]
    assert len(repo.attempts) == 1


async def test_start_requires_published_test(lifecycle, repo, student):
    await repo.create_test(make_test("draft", is_published=False))

    with pytest.raises(errors.TestNotPublished):
        await lifecycle.start_attempt("draft", student)


async def test_start_unknown_test(lifecycle, student):
    with pytest.raises(errors.TestNotFound):
        await lifecycle.start_attempt("missing", student)


async def test_only_students_start(lifecycle, published_test, teacher):
    with pytest.raises(errors.AuthorizationDenied):
        await lifecycle.start_attempt("t1", teacher)


async def test_schedule_window(lifecycle, repo, student):
    await repo.create_test(make_test("later", scheduled_date=T0 + timedelta(hours=1)))
    await repo.create_test(make_test("closed", deadline=T0 - timedelta(minutes=1)))

    with pytest.raises(errors.TestNotOpen):
        await lifecycle.start_attempt("later", student)
    with pytest.raises(errors.TestNotOpen):
        await lifecycle.start_attempt("closed", student)


async def test_naive_schedule_window(lifecycle, repo, student):
    await repo.create_test(make_test("open", scheduled_date="2024-03-01T08:00:00", deadline="2024-03-01T12:00:00"))
    await repo.create_test(make_test("not-yet", scheduled_date="2024-03-01T09:30:00"))

    attempt, resumed = await lifecycle.start_attempt("open", student)
    assert not resumed
    assert attempt.attempt_number == 1

    with pytest.raises(errors.TestNotOpen):
        await lifecycle.start_attempt("not-yet", student)


async def test_resume_allowed_after_deadline(lifecycle, repo, clock, student):
    await repo.create_test(make_test("t2", deadline=T0 + timedelta(minutes=5)))
    first, _ = await lifecycle.start_attempt("t2", student)

    clock.advance(minutes=10)
    again, resumed = await lifecycle.start_attempt("t2", student)

    assert resumed
    assert again.attempt_id == first.attempt_id


# ===== Timing and expiry =====

async def test_remaining_time_counts_down(lifecycle, published_test, clock, student):
    attempt, _ = await lifecycle.start_attempt("t1", student)

    clock.advance(minutes=10)
    assert lifecycle.remaining_seconds(attempt, published_test) == 20 * 60

    clock.advance(hours=1)
    assert lifecycle.remaining_seconds(attempt, published_test) == 0


def test_remaining_time_is_zero_once_submitted():
    from examhall.models import Attempt

    attempt = Attempt(test_id="t1", student_id="s1", attempt_number=1, status=AttemptStatus.submitted, created_at=T0)
    assert compute_remaining_time(attempt, make_test(), T0) == 0


async def test_expired_attempt_is_auto_submitted_on_next_start(lifecycle, published_test, clock, student, repo):
    first, _ = await lifecycle.start_attempt("t1", student)
    await lifecycle.save_answers(first.attempt_id, answers(("q1", "draft")), student)

    clock.advance(minutes=31)
    second, resumed = await lifecycle.start_attempt("t1", student)

    assert not resumed
    assert second.attempt_number == 2
    expired = repo.attempts[first.attempt_id]
    assert expired.status == AttemptStatus.submitted
    assert expired.auto_submitted
    assert expired.time_taken_seconds == 30 * 60
    assert expired.submitted_at == T0 + timedelta(minutes=30)
    assert expired.answers[0].answer_text == "draft"


async def test_expired_attempt_inside_grace_is_resumed(lifecycle, published_test, clock, student):
    first, _ = await lifecycle.start_attempt("t1", student)

    clock.advance(minutes=30, seconds=10)
    again, resumed = await lifecycle.start_attempt("t1", student)

    assert resumed
    assert again.attempt_id == first.attempt_id


async def test_expired_attempt_counts_toward_limit(repo, clock, student):
    from examhall.services import AttemptLifecycle

    lifecycle = AttemptLifecycle(repo, clock=clock)
    await repo.create_test(make_test("one", max_attempts=1))
    first, _ = await lifecycle.start_attempt("one", student)

    clock.advance(hours=2)
    with pytest.raises(errors.AttemptLimitExceeded):
        await lifecycle.start_attempt("one", student)
    assert repo.attempts[first.attempt_id].status == AttemptStatus.submitted


async def test_expired_attempt_kept_when_auto_submit_disabled(repo, clock, published_test, student):
    from examhall.services import AttemptLifecycle

    lifecycle = AttemptLifecycle(repo, auto_submit_expired=False, clock=clock)
    first, _ = await lifecycle.start_attempt("t1", student)

    clock.advance(hours=2)
    again, resumed = await lifecycle.start_attempt("t1", student)

    assert resumed
    assert again.attempt_id == first.attempt_id


# ===== Answering and submitting =====

def test_collect_answers_keeps_last_answer_per_question():
    collected = collect_answers(answers(("q1", "first"), ("q2", "b"), ("q1", "second")))

    assert [(a.question_id, a.answer_text) for a in collected] == [("q1", "second"), ("q2", "b")]
    assert all(a.marks_obtained is None for a in collected)


async def test_double_submit_fails(lifecycle, published_test, student):
    attempt, _ = await lifecycle.start_attempt("t1", student)
    await lifecycle.submit_attempt(student, answers(("q1", "a")), attempt_id=attempt.attempt_id)

    with pytest.raises(errors.AttemptAlreadyTerminal):
        await lifecycle.submit_attempt(student, answers(("q1", "b")), attempt_id=attempt.attempt_id)
    with pytest.raises(errors.AttemptAlreadyTerminal):
        await lifecycle.submit_attempt(student, answers(("q1", "b")), test_id="t1")


async def test_submit_without_start_creates_nothing(lifecycle, published_test, student, repo):
    with pytest.raises(errors.AttemptNotFound):
        await lifecycle.submit_attempt(student, answers(("q1", "a")), test_id="t1")
    assert repo.attempts == {}


async def test_submit_needs_a_target(lifecycle, student):
    with pytest.raises(errors.DomainRuleViolation):
        await lifecycle.submit_attempt(student, [])


async def test_submit_measures_and_clamps_time(lifecycle, published_test, clock, student):
    attempt, _ = await lifecycle.start_attempt("t1", student)
    clock.advance(minutes=12)
    submitted = await lifecycle.submit_attempt(student, [], attempt_id=attempt.attempt_id)
    assert submitted.time_taken_seconds == 12 * 60
    assert submitted.submitted_at == T0 + timedelta(minutes=12)

    second, _ = await lifecycle.start_attempt("t1", student)
    clamped = await lifecycle.submit_attempt(student, [], 99999, attempt_id=second.attempt_id)
    assert clamped.time_taken_seconds == 30 * 60


async def test_submit_someone_elses_attempt(lifecycle, published_test, student, other_student):
    attempt, _ = await lifecycle.start_attempt("t1", student)

    with pytest.raises(errors.AttemptNotFound):
        await lifecycle.submit_attempt(other_student, [], attempt_id=attempt.attempt_id)


async def test_save_answers_only_while_pending(lifecycle, published_test, student):
    attempt, _ = await lifecycle.start_attempt("t1", student)
    saved = await lifecycle.save_answers(attempt.attempt_id, answers(("q1", "partial")), student)
    assert saved.answers[0].answer_text == "partial"

    await lifecycle.submit_attempt(student, answers(("q1", "final")), attempt_id=attempt.attempt_id)
    with pytest.raises(errors.AttemptAlreadyTerminal):
        await lifecycle.save_answers(attempt.attempt_id, answers(("q1", "late")), student)


# ===== Evaluation =====

@pytest.fixture
async def submitted_attempt(lifecycle, published_test, student):
    attempt, _ = await lifecycle.start_attempt("t1", student)
    return await lifecycle.submit_attempt(
        student, answers(("q1", "4"), ("q2", "x=2")), attempt_id=attempt.attempt_id
    )


async def test_evaluate_totals_marks(lifecycle, submitted_attempt, teacher):
    evaluated = await lifecycle.evaluate_attempt(submitted_attempt.attempt_id, marks(("q1", 5), ("q2", 3)), teacher)

    assert evaluated.total_marks_obtained == 8
    assert evaluated.status == AttemptStatus.evaluated
    assert evaluated.evaluated_by == "teacher-1"
    assert evaluated.evaluated_at == T0


async def test_re_evaluation_is_idempotent(lifecycle, submitted_attempt, teacher):
    first = await lifecycle.evaluate_attempt(submitted_attempt.attempt_id, marks(("q1", 5), ("q2", 3)), teacher)
    second = await lifecycle.evaluate_attempt(submitted_attempt.attempt_id, marks(("q1", 5), ("q2", 3)), teacher)

    assert first.total_marks_obtained == second.total_marks_obtained == 8


async def test_partial_evaluation_keeps_earlier_marks(lifecycle, submitted_attempt, teacher):
    await lifecycle.evaluate_attempt(submitted_attempt.attempt_id, marks(("q1", 5), ("q2", 3)), teacher)
    updated = await lifecycle.evaluate_attempt(submitted_attempt.attempt_id, marks(("q2", 4)), teacher)

    assert updated.total_marks_obtained == 9


async def test_claimed_total_is_ignored(lifecycle, submitted_attempt, teacher):
    evaluated = await lifecycle.evaluate_attempt(
        submitted_attempt.attempt_id, marks(("q1", 5), ("q2", 3)), teacher, claimed_total=100
    )
    assert evaluated.total_marks_obtained == 8


async def test_evaluate_rejects_unanswered_questions(lifecycle, submitted_attempt, teacher):
    with pytest.raises(errors.InvalidEvaluation):
        await lifecycle.evaluate_attempt(submitted_attempt.attempt_id, marks(("q9", 1)), teacher)


async def test_evaluating_a_deleted_attempt(lifecycle, submitted_attempt, teacher, repo):
    class VanishingRepo(InMemoryAttemptRepository):
        async def update_attempt(self, attempt, expected_status):
            self.attempts.pop(attempt.attempt_id, None)
            return False

    vanishing = VanishingRepo()
    vanishing.tests, vanishing.attempts = repo.tests, repo.attempts
    evaluator = AttemptLifecycle(vanishing, clock=lifecycle.clock)

    with pytest.raises(errors.AttemptNotFound):
        await evaluator.evaluate_attempt(submitted_attempt.attempt_id, marks(("q1", 5)), teacher)


async def test_evaluate_pending_attempt(lifecycle, published_test, student, teacher):
    attempt, _ = await lifecycle.start_attempt("t1", student)

    with pytest.raises(errors.AttemptNotSubmitted):
        await lifecycle.evaluate_attempt(attempt.attempt_id, [], teacher)


async def test_students_cannot_evaluate(lifecycle, submitted_attempt, student):
    with pytest.raises(errors.AuthorizationDenied):
        await lifecycle.evaluate_attempt(submitted_attempt.attempt_id, marks(("q1", 5)), student)


# ===== Reads =====

async def test_marks_hidden_until_results_published(lifecycle, catalog, submitted_attempt, student, teacher):
    await lifecycle.evaluate_attempt(submitted_attempt.attempt_id, marks(("q1", 5), ("q2", 3)), teacher)

    hidden, remaining = await lifecycle.get_attempt(submitted_attempt.attempt_id, student)
    assert remaining is None
    assert hidden.total_marks_obtained is None
    assert all(a.marks_obtained is None for a in hidden.answers)

    staff_view, _ = await lifecycle.get_attempt(submitted_attempt.attempt_id, teacher)
    assert staff_view.total_marks_obtained == 8

    await catalog.publish_results("t1", teacher)
    shown, _ = await lifecycle.get_attempt(submitted_attempt.attempt_id, student)
    assert shown.total_marks_obtained == 8
    [listed] = await lifecycle.list_attempts(student)
    assert listed.total_marks_obtained == 8


async def test_get_pending_attempt_reports_remaining(lifecycle, published_test, clock, student):
    attempt, _ = await lifecycle.start_attempt("t1", student)
    clock.advance(minutes=5)

    _, remaining = await lifecycle.get_attempt(attempt.attempt_id, student)
    assert remaining == 25 * 60


async def test_students_see_only_their_own_attempts(lifecycle, published_test, student, other_student, teacher):
    mine, _ = await lifecycle.start_attempt("t1", student)
    await lifecycle.start_attempt("t1", other_student)

    with pytest.raises(errors.AttemptNotFound):
        await lifecycle.get_attempt(mine.attempt_id, other_student)

    assert [a.student_id for a in await lifecycle.list_attempts(student)] == ["s1"]
    assert len(await lifecycle.list_attempts(teacher, test_id="t1")) == 2
    assert await lifecycle.list_attempts(teacher, status=AttemptStatus.evaluated) == []
