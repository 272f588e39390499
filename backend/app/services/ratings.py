"""
Student ratings - completion stats and ranking recomputed from progress,
assignment submissions and material views on every call.
"""

import math
from typing import Dict, List, Any

from app.database import db
from app.config import logger
from app.models.progress import TestResult, UserProgress
from app.models.user import User

EVALUATED_STATUSES = ["ai_evaluated", "teacher_evaluated"]
RECENT_LIMIT = 5


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def submission_score(submission: dict) -> float:
    """Teacher evaluation overrides the AI evaluation"""
    teacher_score = (submission.get("teacher_evaluation") or {}).get("score")
    if teacher_score is not None:
        return teacher_score
    ai_score = (submission.get("ai_evaluation") or {}).get("score")
    return ai_score if ai_score is not None else 0


def tests_average(passed_tests: Dict[str, TestResult]) -> int:
    if not passed_tests:
        return 0
    total = sum(t.percentage for t in passed_tests.values())
    return round_half_up(total / len(passed_tests))


def assignments_average(submissions: List[dict]) -> int:
    if not submissions:
        return 0
    return round_half_up(sum(submission_score(s) for s in submissions) / len(submissions))


def materials_progress(materials: List[dict], user_id: str) -> int:
    if not materials:
        return 0
    viewed = sum(
        1 for m in materials
        if any(v.get("user_id") == user_id for v in (m.get("viewed_by") or []))
    )
    return round_half_up(viewed / len(materials) * 100)


def summarize_student(user_id: str, passed_tests: Dict[str, TestResult],
                      submissions: List[dict], materials: List[dict]) -> Dict[str, Any]:
    t_avg = tests_average(passed_tests)
    a_avg = assignments_average(submissions)
    m_progress = materials_progress(materials, user_id)
    return {
        "overall_score": round_half_up((t_avg + a_avg + m_progress) / 3),
        "tests_completed": len(passed_tests),
        "tests_average": t_avg,
        "assignments_completed": len(submissions),
        "assignments_average": a_avg,
        "materials_progress": m_progress,
    }


async def _load_materials() -> List[dict]:
    return await db.materials.find({}, {"_id": 0, "material_id": 1, "viewed_by": 1}).to_list(None)


async def _collect_student_summaries(materials: List[dict]) -> List[Dict[str, Any]]:
    """Summaries for every student, in the order the users collection returns them"""
    students = await db.users.find({"role": "student"}, {"_id": 0}).to_list(None)
    student_ids = [s["user_id"] for s in students]

    progress_docs = await db.user_progress.find(
        {"user_id": {"$in": student_ids}}, {"_id": 0}
    ).to_list(None)
    progress_by_user = {d["user_id"]: UserProgress(**d) for d in progress_docs}

    submissions = await db.submissions.find(
        {"student_id": {"$in": student_ids}, "status": {"$in": EVALUATED_STATUSES}},
        {"_id": 0}
    ).to_list(None)
    submissions_by_user: Dict[str, List[dict]] = {}
    for sub in submissions:
        submissions_by_user.setdefault(sub["student_id"], []).append(sub)

    summaries = []
    for student in students:
        user_id = student["user_id"]
        progress = progress_by_user.get(user_id)
        summary = summarize_student(
            user_id,
            progress.passed_tests if progress else {},
            submissions_by_user.get(user_id, []),
            materials,
        )
        summary["student"] = student
        summaries.append(summary)
    return summaries


def rank_students(summaries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Descending by overall_score; ties keep their input order"""
    return sorted(summaries, key=lambda s: s["overall_score"], reverse=True)


async def _recent_test_results(passed_tests: Dict[str, TestResult]) -> List[dict]:
    recent = sorted(passed_tests.values(), key=lambda t: t.passed_at or "", reverse=True)[:RECENT_LIMIT]
    if not recent:
        return []

    tests = await db.tests.find(
        {"test_id": {"$in": [t.test_id for t in recent]}},
        {"_id": 0, "test_id": 1, "title": 1}
    ).to_list(None)
    titles = {t["test_id"]: t.get("title") or "Test" for t in tests}

    return [
        {
            "id": t.test_id,
            "type": "test",
            "title": titles.get(t.test_id, "Test"),
            "score": t.score,
            "max_score": t.total_points,
            "percentage": t.percentage,
            "date": t.passed_at,
        }
        for t in recent
    ]


async def _recent_assignment_results(submissions: List[dict]) -> List[dict]:
    recent = [s for s in submissions if s.get("assignment_id")]
    recent = sorted(recent, key=lambda s: s.get("submitted_at") or "", reverse=True)[:RECENT_LIMIT]
    if not recent:
        return []

    assignments = await db.assignments.find(
        {"assignment_id": {"$in": [s["assignment_id"] for s in recent]}},
        {"_id": 0, "assignment_id": 1, "title": 1}
    ).to_list(None)
    titles = {a["assignment_id"]: a.get("title") or "Assignment" for a in assignments}

    return [
        {
            "id": s["assignment_id"],
            "type": "assignment",
            "title": titles.get(s["assignment_id"], "Assignment"),
            "score": submission_score(s),
            "max_score": 100,
            "date": s.get("submitted_at"),
        }
        for s in recent
    ]


async def compute_student_rating(user_id: str) -> Dict[str, Any]:
    """Rating card of one student, including rank among all students"""
    materials = await _load_materials()

    progress_doc = await db.user_progress.find_one({"user_id": user_id}, {"_id": 0})
    passed_tests = UserProgress(**progress_doc).passed_tests if progress_doc else {}

    submissions = await db.submissions.find(
        {"student_id": user_id, "status": {"$in": EVALUATED_STATUSES}},
        {"_id": 0}
    ).to_list(None)

    summary = summarize_student(user_id, passed_tests, submissions, materials)

    ranking = rank_students(await _collect_student_summaries(materials))
    rank = next(
        (i + 1 for i, s in enumerate(ranking) if s["student"]["user_id"] == user_id),
        0
    )

    recent_tests = await _recent_test_results(passed_tests)
    recent_assignments = await _recent_assignment_results(submissions)
    recent_results = sorted(
        recent_tests + recent_assignments,
        key=lambda r: r.get("date") or "",
        reverse=True
    )[:RECENT_LIMIT]

    logger.info(
        f"Rating for {user_id}: overall={summary['overall_score']} rank={rank}/{len(ranking)}"
    )

    return {
        **summary,
        "rank": rank,
        "total_students": len(ranking),
        "recent_test_results": recent_tests,
        "recent_results": recent_results,
    }


async def compute_all_ratings() -> List[Dict[str, Any]]:
    """Every student's rating, best first"""
    materials = await _load_materials()
    ranking = rank_students(await _collect_student_summaries(materials))

    return [
        {
            "id": s["student"]["user_id"],
            "name": User(**s["student"]).full_name,
            "grade": s["student"].get("grade") or "",
            "overall_score": s["overall_score"],
            "tests_average": s["tests_average"],
            "assignments_average": s["assignments_average"],
            "materials_progress": s["materials_progress"],
        }
        for s in ranking
    ]
