from datetime import datetime, timedelta, timezone

import pytest

from examhall import errors
from examhall.models import GroupCreate, TestCreate, TestUpdate

from conftest import T0, make_test


def new_test(**overrides):
    data = {
        "title": "Algebra basics",
        "duration": 30,
        "attempts": 2,
        "subject": "math",
        "questions": [{"question": "q1", "marks": 4}, {"question": "q2", "marks": 6}],
    }
    data.update(overrides)
    return TestCreate.model_validate(data)


async def test_create_test_sums_question_marks(catalog, teacher, repo):
    test = await catalog.create_test(new_test(), teacher)

    assert test.total_marks == 10
    assert test.max_attempts == 2
    assert test.created_by == "teacher-1"
    assert test.created_at == T0
    assert not test.is_published
    assert test.test_id in repo.tests


async def test_update_recomputes_total(catalog, clock, teacher):
    test = await catalog.create_test(new_test(), teacher)
    clock.advance(minutes=5)

    update = TestUpdate.model_validate({"questions": [{"questionId": "q1", "marks": 7}], "duration": 45})
    updated = await catalog.update_test(test.test_id, update, teacher)

    assert updated.total_marks == 7
    assert updated.duration_minutes == 45
    assert updated.title == "Algebra basics"
    assert updated.updated_at == T0 + timedelta(minutes=5)


async def test_deadline_must_follow_schedule(catalog, teacher):
    bad = new_test(scheduledDate=T0 + timedelta(days=2), deadline=T0 + timedelta(days=1))

    with pytest.raises(errors.DomainRuleViolation):
        await catalog.create_test(bad, teacher)


async def test_naive_schedule_is_read_as_utc(catalog, teacher):
    test = await catalog.create_test(
        new_test(scheduledDate="2024-03-01T08:00:00", deadline="2024-03-02T08:00:00Z"), teacher
    )

    assert test.scheduled_date == datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)
    assert test.deadline.tzinfo is not None


async def test_mixed_naive_and_aware_bounds_are_compared(catalog, teacher):
    bad = new_test(scheduledDate="2024-03-05T08:00:00Z", deadline="2024-03-02T08:00:00")

    with pytest.raises(errors.DomainRuleViolation):
        await catalog.create_test(bad, teacher)


async def test_update_ignores_null_for_required_fields(catalog, teacher):
    test = await catalog.create_test(new_test(deadline=T0 + timedelta(days=1)), teacher)

    update = TestUpdate.model_validate({"title": None, "duration": None, "deadline": None})
    updated = await catalog.update_test(test.test_id, update, teacher)

    assert updated.title == "Algebra basics"
    assert updated.duration_minutes == 30
    assert updated.deadline is None


async def test_update_normalises_naive_deadline(catalog, teacher):
    test = await catalog.create_test(new_test(), teacher)

    update = TestUpdate.model_validate({"deadline": "2024-04-01T12:00:00"})
    updated = await catalog.update_test(test.test_id, update, teacher)

    assert updated.deadline == datetime(2024, 4, 1, 12, 0, tzinfo=timezone.utc)


async def test_students_cannot_author(catalog, student):
    with pytest.raises(errors.AuthorizationDenied):
        await catalog.create_test(new_test(), student)


async def test_publication_flags(catalog, teacher, student):
    test = await catalog.create_test(new_test(), teacher)

    with pytest.raises(errors.TestNotFound):
        await catalog.get_test(test.test_id, student)

    await catalog.publish(test.test_id, teacher)
    assert (await catalog.get_test(test.test_id, student)).is_published

    assert (await catalog.publish_results(test.test_id, teacher)).results_published
    assert not (await catalog.unpublish_results(test.test_id, teacher)).results_published
    assert not (await catalog.unpublish(test.test_id, teacher)).is_published


async def test_delete_test_removes_its_attempts(catalog, lifecycle, published_test, student, teacher, repo):
    await lifecycle.start_attempt("t1", student)

    assert await catalog.delete_test("t1", teacher) == 1
    assert repo.attempts == {}
    with pytest.raises(errors.TestNotFound):
        await catalog.delete_test("t1", teacher)


async def test_list_tests_by_role(catalog, repo, student, teacher, admin):
    group = await catalog.create_group(GroupCreate.model_validate({"name": "10-A", "students": ["s1"]}), teacher)
    await repo.create_test(make_test("direct", assigned_to=["s1"]))
    await repo.create_test(make_test("via-group", assigned_groups=[group.group_id]))
    await repo.create_test(make_test("draft", assigned_to=["s1"], is_published=False))
    await repo.create_test(make_test("others", assigned_to=["s2"]))

    visible = {t.test_id for t in await catalog.list_tests(student)}
    assert visible == {"direct", "via-group"}
    assert len(await catalog.list_tests(teacher)) == 4
    assert len(await catalog.list_tests(admin)) == 4


# ===== Groups =====

async def test_groups(catalog, teacher, student, admin):
    group = await catalog.create_group(
        GroupCreate.model_validate({"name": "10-B", "students": ["s1"], "teachers": ["teacher-1"]}), teacher
    )
    await catalog.create_group(GroupCreate.model_validate({"name": "10-C"}), admin)

    assert [g.group_id for g in await catalog.list_groups(student)] == [group.group_id]
    assert len(await catalog.list_groups(admin)) == 2


async def test_assigned_group_cannot_be_deleted(catalog, repo, teacher):
    group = await catalog.create_group(GroupCreate.model_validate({"name": "10-D"}), teacher)
    await repo.create_test(make_test("assigned", assigned_groups=[group.group_id]))

    with pytest.raises(errors.DependencyConflict):
        await catalog.delete_group(group.group_id, teacher)

    await repo.delete_test("assigned")
    await catalog.delete_group(group.group_id, teacher)
    with pytest.raises(errors.GroupNotFound):
        await catalog.delete_group(group.group_id, teacher)
