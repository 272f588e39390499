"""Test (quiz) definition Pydantic models"""

import uuid
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
from typing import Optional, List
from datetime import datetime


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class Option(BaseModel):
    option_id: str
    text: str = ""
    is_correct: bool = False


class Question(BaseModel):
    model_config = ConfigDict(extra="ignore")
    question_id: str
    text: str = ""
    points: int = 1
    options: List[Option] = []

    def find_option(self, option_id: str) -> Optional[Option]:
        for option in self.options:
            if option.option_id == option_id:
                return option
        return None


class TestDefinition(BaseModel):
    """Stored test as read by the scoring core. Constraints are enforced by TestCreate."""
    model_config = ConfigDict(extra="ignore")
    test_id: str
    group_id: Optional[str] = None
    title: str = ""
    description: Optional[str] = None
    time_limit: int = 30
    deadline: Optional[str] = None
    questions: List[Question] = []
    created_by: Optional[str] = None
    created_at: Optional[str] = None

    @property
    def total_points(self) -> int:
        return sum(q.points for q in self.questions)

    def find_question(self, question_id: str) -> Optional[Question]:
        for question in self.questions:
            if question.question_id == question_id:
                return question
        return None

    def student_view(self) -> dict:
        """Test without the correct-answer flags"""
        data = self.model_dump()
        for question in data["questions"]:
            for option in question["options"]:
                option.pop("is_correct", None)
        return data


class OptionCreate(BaseModel):
    text: str = Field(min_length=1)
    is_correct: bool = False


class QuestionCreate(BaseModel):
    text: str = Field(min_length=1)
    points: int = Field(default=1, ge=1, le=10)
    options: List[OptionCreate]

    @model_validator(mode="after")
    def check_options(self):
        if len(self.options) < 2:
            raise ValueError("Each question must have at least two options")
        if not any(o.is_correct for o in self.options):
            raise ValueError("Each question must have at least one correct answer")
        return self


def _question_documents(questions: List[QuestionCreate]) -> List[dict]:
    """Stored questions with freshly assigned question and option ids"""
    return [
        {
            "question_id": _new_id("q"),
            "text": q.text,
            "points": q.points,
            "options": [
                {"option_id": _new_id("opt"), "text": o.text, "is_correct": o.is_correct}
                for o in q.options
            ],
        }
        for q in questions
    ]


def _check_title(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if not v:
        raise ValueError("Title must not be blank")
    return v


def _check_questions(v):
    if v is not None and not v:
        raise ValueError("Test must contain at least one question")
    return v


class TestCreate(BaseModel):
    """Model for creating a test in a group"""
    title: str = Field(min_length=1)
    description: Optional[str] = None
    time_limit: int = Field(default=30, ge=1, le=180)
    deadline: Optional[datetime] = None
    questions: List[QuestionCreate]

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        return _check_title(v)

    @field_validator("questions")
    @classmethod
    def require_questions(cls, v):
        return _check_questions(v)

    def to_document(self, test_id: str, group_id: str, created_by: str, created_at: str) -> dict:
        """Build the stored document, assigning ids to questions and options"""
        return {
            "test_id": test_id,
            "group_id": group_id,
            "title": self.title,
            "description": self.description,
            "time_limit": self.time_limit,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "questions": _question_documents(self.questions),
            "created_by": created_by,
            "created_at": created_at,
        }


class TestUpdate(BaseModel):
    """Partial update of a test. Omitted fields are left as they are."""
    title: Optional[str] = None
    description: Optional[str] = None
    time_limit: Optional[int] = Field(default=None, ge=1, le=180)
    deadline: Optional[datetime] = None
    questions: Optional[List[QuestionCreate]] = None

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: Optional[str]) -> Optional[str]:
        return _check_title(v)

    @field_validator("questions")
    @classmethod
    def require_questions(cls, v):
        return _check_questions(v)

    def to_update(self) -> dict:
        """$set fields for the stored test. Only description and deadline can be cleared with null."""
        fields = self.model_dump(exclude_unset=True)
        update = {}
        for key in ("title", "time_limit"):
            if fields.get(key) is not None:
                update[key] = fields[key]
        if "description" in fields:
            update["description"] = self.description
        if "deadline" in fields:
            update["deadline"] = self.deadline.isoformat() if self.deadline else None
        if self.questions is not None:
            update["questions"] = _question_documents(self.questions)
        return update
