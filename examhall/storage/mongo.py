from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional, Sequence

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from examhall.errors import AttemptNotFound, GroupNotFound, TestNotFound
from examhall.models import Assessment, Attempt, AttemptStatus, Group, Subject
from examhall.storage.repo import AttemptRepository

logger = logging.getLogger(__name__)

_NO_ID = {"_id": 0}


def _attempt_doc(attempt: Attempt) -> dict[str, Any]:
    doc = attempt.model_dump()
    doc["status"] = attempt.status.value
    return doc


class MongoAttemptRepository(AttemptRepository):
    def __init__(self, mongo_uri: str, db_name: str) -> None:
        self.client = AsyncIOMotorClient(mongo_uri, tz_aware=True)
        self.db = self.client[db_name]
        self.tests = self.db["tests"]
        self.attempts = self.db["submissions"]
        self.groups = self.db["groups"]
        self.subjects = self.db["subjects"]

    async def ensure_indexes(self) -> None:
        await self.tests.create_index("test_id", unique=True)
        await self.groups.create_index("group_id", unique=True)
        await self.attempts.create_index("attempt_id", unique=True)
        await self.attempts.create_index(
            [("test_id", ASCENDING), ("student_id", ASCENDING), ("attempt_number", ASCENDING)],
            unique=True,
            name="attempt_number_per_student",
        )
        await self.attempts.create_index(
            [("test_id", ASCENDING), ("student_id", ASCENDING)],
            unique=True,
            partialFilterExpression={"status": AttemptStatus.pending.value},
            name="one_pending_attempt_per_student",
        )
        await self.attempts.create_index([("status", ASCENDING), ("submitted_at", ASCENDING)])
        logger.info("MongoDB indexes ensured")

    async def close(self) -> None:
        self.client.close()
        logger.info("MongoDB connection closed")

    # ===== Tests =====

    async def create_test(self, test: Assessment) -> Assessment:
        await self.tests.insert_one(test.model_dump())
        return test

    async def get_test(self, test_id: str) -> Assessment:
        doc = await self.tests.find_one({"test_id": test_id}, _NO_ID)
        if not doc:
            raise TestNotFound()
        return Assessment.model_validate(doc)

    async def get_tests(self, test_ids: Sequence[str]) -> dict[str, Assessment]:
        cursor = self.tests.find({"test_id": {"$in": list(set(test_ids))}}, _NO_ID)
        docs = await cursor.to_list(length=None)
        return {d["test_id"]: Assessment.model_validate(d) for d in docs}

    async def save_test(self, test: Assessment) -> Assessment:
        result = await self.tests.replace_one({"test_id": test.test_id}, test.model_dump())
        if result.matched_count == 0:
            raise TestNotFound()
        return test

    async def delete_test(self, test_id: str) -> int:
        if await self.tests.count_documents({"test_id": test_id}, limit=1) == 0:
            raise TestNotFound()
        deleted = await self.attempts.delete_many({"test_id": test_id})
        await self.tests.delete_one({"test_id": test_id})
        return deleted.deleted_count

    async def _find_tests(self, query: dict[str, Any]) -> list[Assessment]:
        cursor = self.tests.find(query, _NO_ID).sort("created_at", DESCENDING)
        docs = await cursor.to_list(length=None)
        return [Assessment.model_validate(d) for d in docs]

    async def list_tests(self) -> list[Assessment]:
        return await self._find_tests({})

    async def list_tests_for_student(self, student_id: str, group_ids: Sequence[str]) -> list[Assessment]:
        return await self._find_tests(
            {
                "is_published": True,
                "$or": [{"assigned_to": student_id}, {"assigned_groups": {"$in": list(group_ids)}}],
            }
        )

    async def list_tests_for_teacher(self, teacher_id: str, subject_ids: Sequence[str]) -> list[Assessment]:
        return await self._find_tests(
            {"$or": [{"created_by": teacher_id}, {"subject_id": {"$in": list(subject_ids)}}]}
        )

    async def count_tests(self) -> int:
        return await self.tests.count_documents({})

    # ===== Groups & subjects =====

    async def create_group(self, group: Group) -> Group:
        await self.groups.insert_one(group.model_dump())
        return group

    async def get_group(self, group_id: str) -> Group:
        doc = await self.groups.find_one({"group_id": group_id}, _NO_ID)
        if not doc:
            raise GroupNotFound()
        return Group.model_validate(doc)

    async def list_groups(self, member_id: Optional[str] = None) -> list[Group]:
        query: dict[str, Any] = {}
        if member_id is not None:
            query = {"$or": [{"student_ids": member_id}, {"teacher_ids": member_id}]}
        docs = await self.groups.find(query, _NO_ID).sort("name", ASCENDING).to_list(length=None)
        return [Group.model_validate(d) for d in docs]

    async def delete_group(self, group_id: str) -> None:
        result = await self.groups.delete_one({"group_id": group_id})
        if result.deleted_count == 0:
            raise GroupNotFound()

    async def group_is_assigned(self, group_id: str) -> bool:
        return await self.tests.count_documents({"assigned_groups": group_id}, limit=1) > 0

    async def count_groups(self) -> int:
        return await self.groups.count_documents({})

    async def save_subject(self, subject: Subject) -> Subject:
        await self.subjects.update_one(
            {"subject_id": subject.subject_id}, {"$set": subject.model_dump()}, upsert=True
        )
        return subject

    async def get_subject_names(self, subject_ids: Sequence[str]) -> dict[str, str]:
        cursor = self.subjects.find({"subject_id": {"$in": list(set(subject_ids))}}, _NO_ID)
        return {d["subject_id"]: d["name"] for d in await cursor.to_list(length=None)}

    # ===== Attempts =====

    async def get_attempt(self, attempt_id: str) -> Attempt:
        doc = await self.attempts.find_one({"attempt_id": attempt_id}, _NO_ID)
        if not doc:
            raise AttemptNotFound()
        return Attempt.model_validate(doc)

    async def find_pending_attempt(self, test_id: str, student_id: str) -> Optional[Attempt]:
        doc = await self.attempts.find_one(
            {"test_id": test_id, "student_id": student_id, "status": AttemptStatus.pending.value}, _NO_ID
        )
        return Attempt.model_validate(doc) if doc else None

    async def count_attempts(self, test_id: str, student_id: str, statuses: Sequence[AttemptStatus]) -> int:
        return await self.attempts.count_documents(
            {"test_id": test_id, "student_id": student_id, "status": {"$in": [s.value for s in statuses]}}
        )

    async def latest_attempt_number(self, test_id: str, student_id: str) -> int:
        doc = await self.attempts.find_one(
            {"test_id": test_id, "student_id": student_id},
            {"_id": 0, "attempt_number": 1},
            sort=[("attempt_number", DESCENDING)],
        )
        return doc["attempt_number"] if doc else 0

    async def insert_attempt_if_absent(self, attempt: Attempt) -> tuple[Attempt, bool]:
        key = {
            "test_id": attempt.test_id,
            "student_id": attempt.student_id,
            "attempt_number": attempt.attempt_number,
        }
        try:
            doc = await self.attempts.find_one_and_update(
                key,
                {"$setOnInsert": _attempt_doc(attempt)},
                projection=_NO_ID,
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # Two upserts raced on the same key; the loser reads the winner's document
            doc = await self.attempts.find_one(key, _NO_ID)
            if doc is None:
                doc = await self.attempts.find_one(
                    {
                        "test_id": attempt.test_id,
                        "student_id": attempt.student_id,
                        "status": AttemptStatus.pending.value,
                    },
                    _NO_ID,
                )
            if doc is None:
                raise
        stored = Attempt.model_validate(doc)
        return stored, stored.attempt_id == attempt.attempt_id

    async def update_attempt(self, attempt: Attempt, expected_status: AttemptStatus) -> bool:
        result = await self.attempts.replace_one(
            {"attempt_id": attempt.attempt_id, "status": expected_status.value}, _attempt_doc(attempt)
        )
        return result.matched_count == 1

    async def list_attempts(
        self,
        *,
        test_id: Optional[str] = None,
        student_id: Optional[str] = None,
        status: Optional[AttemptStatus] = None,
    ) -> list[Attempt]:
        query: dict[str, Any] = {}
        if test_id:
            query["test_id"] = test_id
        if student_id:
            query["student_id"] = student_id
        if status:
            query["status"] = status.value
        cursor = self.attempts.find(query, _NO_ID).sort(
            [("submitted_at", DESCENDING), ("created_at", DESCENDING)]
        )
        return [Attempt.model_validate(d) for d in await cursor.to_list(length=None)]

    async def list_evaluated_attempts(
        self, *, student_id: Optional[str] = None, since: Optional[datetime] = None
    ) -> list[Attempt]:
        query: dict[str, Any] = {"status": AttemptStatus.evaluated.value}
        if student_id:
            query["student_id"] = student_id
        if since is not None:
            query["submitted_at"] = {"$gte": since}
        cursor = self.attempts.find(query, _NO_ID).sort("submitted_at", ASCENDING)
        return [Attempt.model_validate(d) for d in await cursor.to_list(length=None)]

    async def average_marks_by_test(
        self, test_ids: Sequence[str], exclude_student: Optional[str] = None
    ) -> dict[str, float]:
        match: dict[str, Any] = {
            "test_id": {"$in": list(set(test_ids))},
            "status": AttemptStatus.evaluated.value,
        }
        if exclude_student is not None:
            match["student_id"] = {"$ne": exclude_student}
        pipeline = [
            {"$match": match},
            {"$group": {"_id": "$test_id", "avg_score": {"$avg": "$total_marks_obtained"}}},
        ]
        cursor = self.attempts.aggregate(pipeline)
        return {row["_id"]: row["avg_score"] or 0 for row in await cursor.to_list(length=None)}

    async def count_attempts_by_status(self) -> dict[AttemptStatus, int]:
        counts = {s: 0 for s in AttemptStatus}
        cursor = self.attempts.aggregate([{"$group": {"_id": "$status", "count": {"$sum": 1}}}])
        for row in await cursor.to_list(length=None):
            counts[AttemptStatus(row["_id"])] = row["count"]
        return counts
