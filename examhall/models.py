from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, Field, computed_field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes are taken to be UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class UserRole(str, Enum):
    admin = "admin"
    teacher = "teacher"
    student = "student"


class AttemptStatus(str, Enum):
    pending = "pending"
    submitted = "submitted"
    evaluated = "evaluated"


TERMINAL_STATUSES = (AttemptStatus.submitted, AttemptStatus.evaluated)


class Caller(BaseModel):
    """Authenticated identity passed explicitly into every operation."""

    user_id: str
    role: UserRole

    @property
    def is_student(self) -> bool:
        return self.role == UserRole.student

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.admin, UserRole.teacher)


# ===== Catalog =====

class QuestionEntry(BaseModel):
    question_id: str = Field(validation_alias=AliasChoices("question_id", "question", "questionId"))
    marks: float = Field(0, ge=0)
    order: int = 0


class Assessment(BaseModel):
    """A test: an ordered list of question entries plus attempt rules."""

    test_id: str = Field(default_factory=new_id)
    title: str
    description: Optional[str] = None
    subject_id: Optional[str] = None
    questions: list[QuestionEntry] = Field(default_factory=list)
    duration_minutes: int = Field(ge=1)
    max_attempts: int = Field(1, ge=1)

    is_published: bool = False
    results_published: bool = False
    show_results_immediately: bool = False
    show_correct_answers: bool = False

    assigned_to: list[str] = Field(default_factory=list)
    assigned_groups: list[str] = Field(default_factory=list)
    scheduled_date: Optional[datetime] = None
    deadline: Optional[datetime] = None

    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    @field_validator("scheduled_date", "deadline")
    @classmethod
    def schedule_in_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @computed_field  # type: ignore[misc]
    @property
    def total_marks(self) -> float:
        return sum(q.marks for q in self.questions)

    @property
    def duration_seconds(self) -> int:
        return self.duration_minutes * 60

    @property
    def results_visible(self) -> bool:
        return self.results_published or self.show_results_immediately


class Group(BaseModel):
    group_id: str = Field(default_factory=new_id)
    name: str
    subject_id: Optional[str] = Field(None, validation_alias=AliasChoices("subject_id", "subject", "subjectId"))
    student_ids: list[str] = Field(default_factory=list, validation_alias=AliasChoices("student_ids", "students"))
    teacher_ids: list[str] = Field(default_factory=list, validation_alias=AliasChoices("teacher_ids", "teachers"))
    created_at: datetime = Field(default_factory=utcnow)


class Subject(BaseModel):
    subject_id: str
    name: str


# ===== Attempts =====

class Answer(BaseModel):
    question_id: str
    answer_text: str = ""
    # Raw attachment references; {{attachment:N}} tokens in answer_text point into this list
    attachments: list[str] = Field(default_factory=list)
    marks_obtained: Optional[float] = None
    remarks: Optional[str] = None


class Attempt(BaseModel):
    """One student's try at one test (a "submission")."""

    attempt_id: str = Field(default_factory=new_id)
    test_id: str
    student_id: str
    attempt_number: int = Field(ge=1)
    answers: list[Answer] = Field(default_factory=list)
    status: AttemptStatus = AttemptStatus.pending

    time_taken_seconds: Optional[int] = None
    total_marks_obtained: Optional[float] = None
    auto_submitted: bool = False

    evaluated_by: Optional[str] = None
    evaluated_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def without_marks(self) -> "Attempt":
        """Copy with marks and remarks removed, for students before results are out."""
        answers = [a.model_copy(update={"marks_obtained": None, "remarks": None}) for a in self.answers]
        return self.model_copy(update={"answers": answers, "total_marks_obtained": None})


# ===== Request DTOs =====

class AnswerIn(BaseModel):
    question_id: str = Field(validation_alias=AliasChoices("question", "question_id", "questionId"))
    answer_text: str = Field("", validation_alias=AliasChoices("answer", "answer_text", "answerText"))
    attachments: list[str] = Field(default_factory=list)

    def to_answer(self) -> Answer:
        return Answer(question_id=self.question_id, answer_text=self.answer_text, attachments=self.attachments)


class SubmitAttemptRequest(BaseModel):
    test_id: Optional[str] = Field(None, validation_alias=AliasChoices("testId", "test_id", "test"))
    attempt_id: Optional[str] = Field(None, validation_alias=AliasChoices("attemptId", "attempt_id", "submissionId"))
    answers: list[AnswerIn] = Field(default_factory=list)
    time_taken: Optional[int] = Field(
        None, ge=0, validation_alias=AliasChoices("timeTaken", "time_taken", "time_taken_seconds")
    )


class SaveAnswersRequest(BaseModel):
    answers: list[AnswerIn] = Field(default_factory=list)


class AnswerEvaluation(BaseModel):
    question_id: str = Field(validation_alias=AliasChoices("question", "question_id", "questionId"))
    marks_obtained: float = Field(0, ge=0, validation_alias=AliasChoices("marksObtained", "marks_obtained", "marks"))
    remarks: Optional[str] = None


class EvaluateAttemptRequest(BaseModel):
    answers: list[AnswerEvaluation] = Field(default_factory=list)
    total_marks_obtained: Optional[float] = Field(
        None, validation_alias=AliasChoices("totalMarksObtained", "total_marks_obtained")
    )


class TestCreate(BaseModel):
    __test__ = False

    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    subject_id: Optional[str] = Field(None, validation_alias=AliasChoices("subject", "subject_id", "subjectId"))
    duration_minutes: int = Field(
        ..., ge=1, validation_alias=AliasChoices("duration", "duration_minutes", "durationMinutes")
    )
    questions: list[QuestionEntry] = Field(default_factory=list)
    max_attempts: int = Field(1, ge=1, validation_alias=AliasChoices("attempts", "max_attempts", "maxAttempts"))
    show_results_immediately: bool = Field(
        False, validation_alias=AliasChoices("showResultsImmediately", "show_results_immediately")
    )
    show_correct_answers: bool = Field(
        False, validation_alias=AliasChoices("showCorrectAnswers", "show_correct_answers")
    )
    assigned_to: list[str] = Field(default_factory=list, validation_alias=AliasChoices("assignedTo", "assigned_to"))
    assigned_groups: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("assignedGroups", "assigned_groups")
    )
    scheduled_date: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("scheduledDate", "scheduled_date")
    )
    deadline: Optional[datetime] = None

    @field_validator("scheduled_date", "deadline")
    @classmethod
    def schedule_in_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class TestUpdate(BaseModel):
    __test__ = False

    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    subject_id: Optional[str] = Field(None, validation_alias=AliasChoices("subject", "subject_id", "subjectId"))
    duration_minutes: Optional[int] = Field(
        None, ge=1, validation_alias=AliasChoices("duration", "duration_minutes", "durationMinutes")
    )
    questions: Optional[list[QuestionEntry]] = None
    max_attempts: Optional[int] = Field(
        None, ge=1, validation_alias=AliasChoices("attempts", "max_attempts", "maxAttempts")
    )
    show_results_immediately: Optional[bool] = Field(
        None, validation_alias=AliasChoices("showResultsImmediately", "show_results_immediately")
    )
    show_correct_answers: Optional[bool] = Field(
        None, validation_alias=AliasChoices("showCorrectAnswers", "show_correct_answers")
    )
    assigned_to: Optional[list[str]] = Field(None, validation_alias=AliasChoices("assignedTo", "assigned_to"))
    assigned_groups: Optional[list[str]] = Field(
        None, validation_alias=AliasChoices("assignedGroups", "assigned_groups")
    )
    scheduled_date: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("scheduledDate", "scheduled_date")
    )
    deadline: Optional[datetime] = None

    @field_validator("scheduled_date", "deadline")
    @classmethod
    def schedule_in_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class GroupCreate(BaseModel):
    name: str = Field(..., min_length=1)
    subject_id: Optional[str] = Field(None, validation_alias=AliasChoices("subject", "subject_id", "subjectId"))
    student_ids: list[str] = Field(default_factory=list, validation_alias=AliasChoices("students", "student_ids"))
    teacher_ids: list[str] = Field(default_factory=list, validation_alias=AliasChoices("teachers", "teacher_ids"))


# ===== Response DTOs =====

class StartAttemptResponse(BaseModel):
    message: str
    submission: Attempt
    attempt_number: int
    remaining_seconds: int
    resumed: bool = False


class AttemptDetailResponse(BaseModel):
    submission: Attempt
    remaining_seconds: Optional[int] = None


class AttemptListResponse(BaseModel):
    submissions: list[Attempt]


class SubmitAttemptResponse(BaseModel):
    message: str
    submission: Attempt


class TestListResponse(BaseModel):
    __test__ = False

    tests: list[Assessment]


class DeleteTestResponse(BaseModel):
    message: str
    submissions_deleted: int


# ===== Reports =====

ReportRange = Literal["week", "month", "semester", "all"]


class OverviewStats(BaseModel):
    total_tests: int = 0
    average_score: float = 0
    highest_score: int = 0
    highest_score_subject: str = ""
    study_time_minutes: int = 0
    study_time_hours: float = 0


class PerformancePoint(BaseModel):
    name: str
    score: int
    average: int


class SubjectPerformance(BaseModel):
    name: str
    value: int


class ReportsResponse(BaseModel):
    overview: OverviewStats
    performance: list[PerformancePoint] = Field(default_factory=list)
    subjects: list[SubjectPerformance] = Field(default_factory=list)


class SystemOverview(BaseModel):
    total_tests: int
    total_submissions: int
    evaluated_submissions: int
    pending_submissions: int
    total_groups: int


class SubmissionStatistics(BaseModel):
    total: int
    evaluated: int
    pending: int
    average_score: float
