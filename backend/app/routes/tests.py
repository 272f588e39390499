"""Test routes - create, list, view, update, delete, submit answers, results."""

from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi.responses import JSONResponse
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import uuid

from pydantic import ValidationError
from pymongo import ReturnDocument

from app import config
from app.database import db
from app.deps import get_current_user
from app.config import logger
from app.exceptions import TestNotFound, ValidationFailure, ProgressPersistenceFailure
from app.models.user import User, Group
from app.models.test import TestCreate, TestUpdate, TestDefinition
from app.models.progress import TestSubmission, TestResult, UserProgress
from app.services.scoring import get_test_definition, evaluate_answers
from app.services.progress import save_test_progress, get_passed_test
from app.utils.serialization import serialize_doc

router = APIRouter(tags=["tests"])

PERSISTENCE_WARNING = "Test completed but progress may not be saved properly. Please contact support."


async def _get_group(group_id: str) -> Group:
    group = await db.groups.find_one({"group_id": group_id}, {"_id": 0})
    if not group:
        raise HTTPException(status_code=404, detail="Group not found")
    return Group(**group)


async def _get_test(test_id: str, group_id: str) -> TestDefinition:
    try:
        return await get_test_definition(test_id, group_id)
    except TestNotFound:
        raise HTTPException(status_code=404, detail="Test not found")


def _deadline_passed(deadline: Optional[str]) -> bool:
    if not deadline:
        return False
    deadline_dt = datetime.fromisoformat(deadline.replace("Z", "+00:00"))
    if deadline_dt.tzinfo is None:
        deadline_dt = deadline_dt.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc) > deadline_dt


def _answer_view(result: TestResult) -> list:
    return [
        {"question_id": a.question_id, "option_id": a.option_id, "correct": a.correct}
        for a in result.answers
    ]


@router.post("/groups/{group_id}/tests", status_code=201)
async def create_test(
    group_id: str,
    request: TestCreate,
    user: User = Depends(get_current_user)
):
    """Create a test for a group (group teacher only)"""
    group = await _get_group(group_id)
    if not group.is_teacher(user):
        raise HTTPException(status_code=403, detail="You are not authorized to create tests for this group")

    test_id = f"test_{uuid.uuid4().hex[:12]}"
    doc = request.to_document(
        test_id=test_id,
        group_id=group_id,
        created_by=user.user_id,
        created_at=datetime.now(timezone.utc).isoformat()
    )
    await db.tests.insert_one(doc)
    logger.info(f"Test {test_id} created in group {group_id} by {user.user_id}")
    return serialize_doc(doc)


@router.get("/groups/{group_id}/tests")
async def get_group_tests(group_id: str, user: User = Depends(get_current_user)):
    """List a group's tests; students get question counts instead of questions"""
    group = await _get_group(group_id)
    if not group.is_teacher(user) and not group.is_student(user):
        raise HTTPException(status_code=403, detail="You are not authorized to view tests for this group")

    tests = await db.tests.find({"group_id": group_id}, {"_id": 0}).sort("created_at", -1).to_list(500)

    if user.role == "student":
        return [
            {
                "test_id": t["test_id"],
                "title": t.get("title", ""),
                "description": t.get("description"),
                "time_limit": t.get("time_limit"),
                "deadline": t.get("deadline"),
                "created_by": t.get("created_by"),
                "created_at": t.get("created_at"),
                "question_count": len(t.get("questions", [])),
            }
            for t in tests
        ]
    return tests


@router.get("/groups/{group_id}/tests/{test_id}")
async def get_test(group_id: str, test_id: str, user: User = Depends(get_current_user)):
    """Get one test; correct answers are hidden from students"""
    group = await _get_group(group_id)
    if not group.is_teacher(user) and not group.is_student(user):
        raise HTTPException(status_code=403, detail="You are not authorized to view this test")

    test = await _get_test(test_id, group_id)
    if user.role == "student":
        return test.student_view()
    return test.model_dump()


@router.put("/groups/{group_id}/tests/{test_id}")
async def update_test(
    group_id: str,
    test_id: str,
    request: TestUpdate,
    user: User = Depends(get_current_user)
):
    """Update a test's fields (group teacher only)"""
    group = await _get_group(group_id)
    if not group.is_teacher(user):
        raise HTTPException(status_code=403, detail="You are not authorized to update tests for this group")

    update = request.to_update()
    update["updated_at"] = datetime.now(timezone.utc).isoformat()

    doc = await db.tests.find_one_and_update(
        {"test_id": test_id, "group_id": group_id},
        {"$set": update},
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER
    )
    if not doc:
        raise HTTPException(status_code=404, detail="Test not found")

    logger.info(f"Test {test_id} updated by {user.user_id}: {sorted(update)}")
    return serialize_doc(doc)


@router.delete("/groups/{group_id}/tests/{test_id}")
async def delete_test(group_id: str, test_id: str, user: User = Depends(get_current_user)):
    """Delete a test (group teacher only). Stored results stay in user progress."""
    group = await _get_group(group_id)
    if not group.is_teacher(user):
        raise HTTPException(status_code=403, detail="You are not authorized to delete tests for this group")

    result = await db.tests.delete_one({"test_id": test_id, "group_id": group_id})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Test not found")

    logger.info(f"Test {test_id} deleted from group {group_id} by {user.user_id}")
    return {"message": "Test deleted successfully"}


@router.post("/groups/{group_id}/tests/{test_id}/submit")
async def submit_test(
    group_id: str,
    test_id: str,
    payload: Dict[str, Any] = Body(...),
    user: User = Depends(get_current_user)
):
    """Score submitted answers and record the result in the student's progress"""
    logger.info(f"Test submission: group={group_id} test={test_id} user={user.user_id}")

    try:
        submission = TestSubmission(**payload)
    except ValidationError as e:
        logger.warning(f"Rejected submission from {user.user_id}: {e.errors()[0].get('msg')}")
        raise HTTPException(status_code=400, detail="Answers are missing or have an invalid format")

    group = await _get_group(group_id)
    if not group.is_student(user):
        raise HTTPException(status_code=403, detail="You are not authorized to submit answers for this test")

    test = await _get_test(test_id, group_id)

    if _deadline_passed(test.deadline):
        raise HTTPException(status_code=400, detail="Test deadline has passed")

    try:
        result = evaluate_answers(
            test,
            submission.answers,
            time_spent=submission.time_spent,
            strict=config.STRICT_ANSWER_VALIDATION
        )
    except ValidationFailure as e:
        raise HTTPException(status_code=400, detail={"message": str(e), "problems": e.problems})

    logger.info(f"Test {test_id} evaluated: score={result.score}/{result.total_points} ({result.percentage}%)")

    response = {
        "score": result.score,
        "total_points": result.total_points,
        "percentage": result.percentage,
        "time_spent": result.time_spent,
    }

    try:
        await save_test_progress(user.user_id, test.test_id, result)
    except (ProgressPersistenceFailure, ValidationFailure) as e:
        logger.error(f"Progress not saved for test {test.test_id} of user {user.user_id}: {e}")
        return JSONResponse(status_code=206, content={**response, "warning": PERSISTENCE_WARNING})

    return response


@router.get("/groups/{group_id}/tests/{test_id}/results")
async def get_test_results(group_id: str, test_id: str, user: User = Depends(get_current_user)):
    """Student: own result. Teacher: results of every student who took the test."""
    group = await _get_group(group_id)
    is_teacher = group.is_teacher(user)
    if not is_teacher and not group.is_student(user):
        raise HTTPException(status_code=403, detail="You are not authorized to view results for this test")

    test = await _get_test(test_id, group_id)

    if user.role == "student":
        result = await get_passed_test(user.user_id, test.test_id)
        if not result:
            return {"student_result": None}
        return {
            "student_result": {
                "test_id": test.test_id,
                "student_id": user.user_id,
                "answers": _answer_view(result),
                "score": result.score,
                "total_points": result.total_points,
                "percentage": result.percentage,
                "completed_at": result.passed_at,
                "time_spent": result.time_spent,
            }
        }

    students = await db.users.find({"user_id": {"$in": group.students}}, {"_id": 0}).to_list(None)
    progress_docs = await db.user_progress.find({"user_id": {"$in": group.students}}, {"_id": 0}).to_list(None)
    progress_by_user = {d["user_id"]: UserProgress(**d) for d in progress_docs}

    rows = []
    for student in students:
        user_progress = progress_by_user.get(student["user_id"])
        result = user_progress.passed_tests.get(test.test_id) if user_progress else None
        if not result:
            continue
        rows.append({
            "user_id": student["user_id"],
            "first_name": student.get("first_name", ""),
            "last_name": student.get("last_name", ""),
            "answers": _answer_view(result),
            "score": result.score,
            "total_points": result.total_points,
            "percentage": result.percentage,
            "completed_at": result.passed_at,
            "time_spent": result.time_spent,
        })
    return {"students": rows}


@router.get("/groups/{group_id}/tests/{test_id}/results/all")
async def get_all_student_results(group_id: str, test_id: str, user: User = Depends(get_current_user)):
    """Teacher table of every group student, completed or not, with summary stats"""
    group = await _get_group(group_id)
    if not group.is_teacher(user):
        raise HTTPException(status_code=403, detail="You are not authorized to view all student results for this test")

    test = await _get_test(test_id, group_id)

    students = await db.users.find({"user_id": {"$in": group.students}}, {"_id": 0}).to_list(None)
    students_by_id = {s["user_id"]: s for s in students}
    progress_docs = await db.user_progress.find({"user_id": {"$in": group.students}}, {"_id": 0}).to_list(None)
    progress_by_user = {d["user_id"]: UserProgress(**d) for d in progress_docs}

    results = []
    for student_id in group.students:
        student = students_by_id.get(student_id)
        if not student:
            continue

        row = {
            "id": f"{student_id}_{test.test_id}",
            "student_id": student_id,
            "student": {
                "user_id": student_id,
                "first_name": student.get("first_name", ""),
                "last_name": student.get("last_name", ""),
            },
            "completed": False,
            "answers": [],
            "score": 0,
            "total_points": test.total_points,
            "percentage": 0,
            "time_spent": 0,
        }

        user_progress = progress_by_user.get(student_id)
        result = user_progress.passed_tests.get(test.test_id) if user_progress else None
        if result:
            row.update({
                "completed": True,
                "answers": _answer_view(result),
                "score": result.score,
                "total_points": result.total_points,
                "percentage": result.percentage,
                "submitted_at": result.passed_at,
                "time_spent": result.time_spent,
            })
        results.append(row)

    completed = [r for r in results if r["completed"]]
    average_score = sum(r["percentage"] for r in completed) / len(completed) if completed else 0

    return {
        "test_id": test.test_id,
        "test_title": test.title,
        "total_students": len(group.students),
        "completed_count": len(completed),
        "average_score": average_score,
        "results": results,
    }
