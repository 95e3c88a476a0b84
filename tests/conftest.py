from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from examhall.auth.jwt_handler import create_access_token
from examhall.main import create_app
from examhall.models import Assessment, Caller, QuestionEntry, Subject, UserRole
from examhall.services import AttemptLifecycle, ReportService, TestCatalog
from examhall.storage import InMemoryAttemptRepository
from examhall.wiring import get_repo

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


def make_test(test_id="t1", *, marks=(5, 5), duration=30, max_attempts=1, subject_id=None, **extra):
    questions = [QuestionEntry(question_id=f"q{i + 1}", marks=m, order=i) for i, m in enumerate(marks)]
    return Assessment(
        test_id=test_id,
        title=extra.pop("title", f"Test {test_id}"),
        subject_id=subject_id,
        questions=questions,
        duration_minutes=duration,
        max_attempts=max_attempts,
        is_published=extra.pop("is_published", True),
        created_by="teacher-1",
        created_at=T0 - timedelta(days=1),
        **extra,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repo():
    return InMemoryAttemptRepository()


@pytest.fixture
def student():
    return Caller(user_id="s1", role=UserRole.student)


@pytest.fixture
def other_student():
    return Caller(user_id="s2", role=UserRole.student)


@pytest.fixture
def teacher():
    return Caller(user_id="teacher-1", role=UserRole.teacher)


@pytest.fixture
def admin():
    return Caller(user_id="admin-1", role=UserRole.admin)


@pytest.fixture
def lifecycle(repo, clock):
    return AttemptLifecycle(repo, auto_submit_expired=True, grace_seconds=30, clock=clock)


@pytest.fixture
def catalog(repo, clock):
    return TestCatalog(repo, clock=clock)


@pytest.fixture
def reports(repo, clock):
    return ReportService(repo, clock=clock)


@pytest.fixture
async def published_test(repo):
    await repo.save_subject(Subject(subject_id="math", name="Mathematics"))
    test = make_test("t1", marks=(5, 5), max_attempts=2, subject_id="math")
    await repo.create_test(test)
    return test


# ===== HTTP =====

@pytest.fixture
def app(repo):
    application = create_app()
    application.dependency_overrides[get_repo] = lambda: repo
    return application


@pytest.fixture
def client(app):
    return TestClient(app)


def auth_headers(user_id, role):
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


@pytest.fixture
def student_headers():
    return auth_headers("s1", "student")


@pytest.fixture
def teacher_headers():
    return auth_headers("teacher-1", "teacher")


@pytest.fixture
def admin_headers():
    return auth_headers("admin-1", "admin")
