"""Submission, test result and user progress Pydantic models"""

from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SubmittedAnswer(BaseModel):
    """One selected option for one question"""
    question_id: str
    option_id: str

    @field_validator("question_id", "option_id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        if v is None:
            raise ValueError("id is required")
        return str(v)


class TestSubmission(BaseModel):
    """Request body of a test submission"""
    answers: List[SubmittedAnswer]
    time_spent: float = 0

    @field_validator("answers", mode="before")
    @classmethod
    def require_answers(cls, v):
        if not isinstance(v, list) or not v:
            raise ValueError("Answers are missing or have an invalid format")
        return v

    @field_validator("time_spent", mode="before")
    @classmethod
    def clamp_time_spent(cls, v):
        if v is None:
            return 0
        return max(0, float(v))


class EvaluatedAnswer(BaseModel):
    question_id: str
    option_id: str
    correct: bool = False
    points: float = 0


class TestResult(BaseModel):
    """Outcome of one user's attempt at one test, stored in user_progress"""
    model_config = ConfigDict(extra="ignore")
    test_id: str
    score: float = 0
    total_points: float = 0
    percentage: float = 0
    answers: List[EvaluatedAnswer] = []
    time_spent: float = 0
    passed_at: str = Field(default_factory=_now_iso)

    @field_validator("score", "total_points", "percentage", "time_spent", mode="before")
    @classmethod
    def null_as_zero(cls, v):
        return 0 if v is None else v


def normalize_passed_tests(value: Any) -> Dict[str, Any]:
    """
    Accept passed_tests either as the keyed mapping or as a legacy list of
    entries carrying "test_id" (or "test"). For repeated test ids in a list the
    last entry wins.
    """
    if value is None:
        return {}
    if isinstance(value, dict):
        return {
            key: {**entry, "test_id": entry.get("test_id") or key} if isinstance(entry, dict) else entry
            for key, entry in value.items()
        }
    mapping = {}
    for entry in value:
        if not isinstance(entry, dict):
            continue
        test_id = entry.get("test_id") or entry.get("test")
        if not test_id:
            continue
        test_id = str(test_id)
        mapping[test_id] = {**entry, "test_id": test_id}
    return mapping


class UserProgress(BaseModel):
    """Per-user progress aggregate"""
    model_config = ConfigDict(extra="ignore")
    user_id: str
    completed_lessons: List[Dict[str, Any]] = []
    passed_tests: Dict[str, TestResult] = {}
    solved_tasks: List[Dict[str, Any]] = []
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @field_validator("passed_tests", mode="before")
    @classmethod
    def accept_legacy_list(cls, v):
        return normalize_passed_tests(v)

    @field_validator("completed_lessons", "solved_tasks", mode="before")
    @classmethod
    def default_empty(cls, v):
        return v or []
