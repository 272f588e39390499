"""Pydantic models for the QazaqCode application"""

from .user import User, Group
from .test import (
    Option,
    Question,
    TestDefinition,
    OptionCreate,
    QuestionCreate,
    TestCreate,
    TestUpdate,
)
from .progress import (
    SubmittedAnswer,
    TestSubmission,
    EvaluatedAnswer,
    TestResult,
    UserProgress,
    normalize_passed_tests,
)
