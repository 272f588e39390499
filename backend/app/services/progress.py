"""
User progress persistence - saves test results into the per-user aggregate.

passed_tests is stored as a mapping keyed by test id, so insert-or-replace of
a result is a single atomic upsert on one document:

    {"$set": {"passed_tests.<test_id>": result}}

A replaced entry keeps its position, a new test id is appended and a missing
aggregate is created by the upsert. Concurrent submissions for the same test
resolve as last-write-wins and can never produce two entries for one test.
A legacy list-shaped aggregate is converted to the mapping after the failed
write, and that write gets one extra attempt on top of the configured ones.
Transient storage errors are retried a bounded number of times; when every
attempt fails the payload and all errors go to the diagnostic log and
ProgressPersistenceFailure is raised.
"""

import asyncio
from datetime import datetime, timezone
from typing import Optional

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from app import config
from app.database import db
from app.config import logger
from app.exceptions import (
    ProgressPersistenceFailure,
    TransientStorageError,
    ValidationFailure,
)
from app.models.progress import TestResult, UserProgress, normalize_passed_tests
from app.services.diagnostics import log_to_file


def check_test_id(test_id: str) -> str:
    """Test ids become document keys, so they can't be empty, start with $ or contain dots"""
    test_id = str(test_id) if test_id is not None else ""
    if not test_id or test_id.startswith("$") or "." in test_id:
        raise ValidationFailure(f"Invalid test id: {test_id!r}")
    return test_id


def build_result_document(test_id: str, result: TestResult) -> dict:
    doc = result.model_dump()
    doc["test_id"] = test_id
    return doc


async def upgrade_legacy_aggregate(user_id: str) -> bool:
    """Convert a list-shaped passed_tests into the keyed mapping. Returns True if converted."""
    legacy_query = {"user_id": user_id, "passed_tests": {"$type": "array"}}
    legacy = await db.user_progress.find_one(legacy_query, {"_id": 0, "passed_tests": 1})
    if not legacy:
        return False

    result = await db.user_progress.update_one(
        legacy_query,
        {"$set": {"passed_tests": normalize_passed_tests(legacy["passed_tests"])}}
    )
    if result.modified_count:
        logger.info(f"Converted legacy passed_tests list of user {user_id} to mapping")
    return result.modified_count > 0


async def save_test_progress(user_id: str, test_id: str, result: TestResult) -> UserProgress:
    """
    Record result as the user's only entry for test_id (last write wins).
    Returns the aggregate after the write.
    """
    user_id = str(user_id)
    test_id = check_test_id(test_id)
    payload = build_result_document(test_id, result)
    attempts = config.PROGRESS_SAVE_ATTEMPTS
    errors = []

    logger.info(f"Saving progress for test {test_id} of user {user_id}")

    attempt = 0
    while attempt < attempts:
        attempt += 1
        now = datetime.now(timezone.utc).isoformat()
        try:
            doc = await db.user_progress.find_one_and_update(
                {"user_id": user_id},
                {
                    "$set": {
                        f"passed_tests.{test_id}": payload,
                        "updated_at": now,
                    },
                    "$setOnInsert": {
                        "completed_lessons": [],
                        "solved_tasks": [],
                        "created_at": now,
                    },
                },
                projection={"_id": 0},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
            progress = UserProgress(**doc)
            logger.info(
                f"Progress saved for user {user_id} (attempt {attempt}, "
                f"{len(progress.passed_tests)} tests recorded)"
            )
            return progress
        except PyMongoError as e:
            error = TransientStorageError(attempt, e)
            errors.append(error)
            logger.warning(f"Saving progress for test {test_id} of user {user_id}: {error}")

        # A list-shaped passed_tests rejects the keyed $set until it is converted
        try:
            upgraded = await upgrade_legacy_aggregate(user_id)
        except PyMongoError as e:
            logger.warning(f"Legacy progress check failed for user {user_id}: {e}")
            upgraded = False

        if upgraded and attempt == attempts:
            attempts += 1
        if attempt < attempts:
            await asyncio.sleep(config.PROGRESS_RETRY_DELAY * attempt)

    log_to_file("All attempts to save test progress failed", {
        "user_id": user_id,
        "test_id": test_id,
        "test_data": payload,
        "errors": [e.to_dict() for e in errors],
    })
    raise ProgressPersistenceFailure(user_id, test_id, payload, errors)


async def get_user_progress(user_id: str) -> Optional[UserProgress]:
    doc = await db.user_progress.find_one({"user_id": str(user_id)}, {"_id": 0})
    if not doc:
        return None
    return UserProgress(**doc)


async def get_passed_test(user_id: str, test_id: str) -> Optional[TestResult]:
    """The user's stored result for one test, if any"""
    progress = await get_user_progress(user_id)
    if progress is None:
        return None
    return progress.passed_tests.get(str(test_id))
