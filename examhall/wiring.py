from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from examhall.services import AttemptLifecycle, ReportService, TestCatalog
from examhall.settings import settings
from examhall.storage.inmemory import InMemoryAttemptRepository
from examhall.storage.mongo import MongoAttemptRepository
from examhall.storage.repo import AttemptRepository


@lru_cache
def get_repo() -> AttemptRepository:
    backend = (settings.storage_backend or "inmemory").lower()
    if backend == "mongo":
        return MongoAttemptRepository(settings.mongodb_uri, settings.mongodb_db)
    return InMemoryAttemptRepository()


def get_lifecycle(repo: AttemptRepository = Depends(get_repo)) -> AttemptLifecycle:
    return AttemptLifecycle(
        repo,
        auto_submit_expired=settings.auto_submit_expired_attempts,
        grace_seconds=settings.submission_grace_seconds,
    )


def get_catalog(repo: AttemptRepository = Depends(get_repo)) -> TestCatalog:
    return TestCatalog(repo)


def get_reports(repo: AttemptRepository = Depends(get_repo)) -> ReportService:
    return ReportService(
        repo,
        incremental_rounding=settings.subject_rollup_incremental_rounding,
        class_average_scope=settings.class_average_scope,
    )
