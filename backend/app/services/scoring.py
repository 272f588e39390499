"""
Test scoring - evaluates submitted answers against a test definition.
"""

from typing import Iterable, List, Optional

from app.database import db
from app.config import logger
from app.exceptions import TestNotFound, ValidationFailure
from app.models.test import TestDefinition
from app.models.progress import SubmittedAnswer, EvaluatedAnswer, TestResult


async def get_test_definition(test_id: str, group_id: Optional[str] = None) -> TestDefinition:
    """Load a test, optionally scoped to a group. Raises TestNotFound."""
    query = {"test_id": test_id}
    if group_id:
        query["group_id"] = group_id

    test = await db.tests.find_one(query, {"_id": 0})
    if not test:
        raise TestNotFound(test_id)
    return TestDefinition(**test)


def evaluate_answers(
    test: TestDefinition,
    answers: Iterable[SubmittedAnswer],
    time_spent: float = 0,
    strict: bool = False,
) -> TestResult:
    """
    Score a submission. Each answered question earns its full points when the
    selected option is correct and 0 otherwise; there is no partial credit.

    total_points covers every question of the test, answered or not.
    Unknown question ids are skipped and unknown option ids score 0, unless
    strict is set, in which case they raise ValidationFailure. Only the first
    answer given for a question counts.
    """
    total_points = test.total_points
    score = 0
    evaluated: List[EvaluatedAnswer] = []
    seen = set()
    problems = []

    for answer in answers:
        question = test.find_question(answer.question_id)
        if question is None:
            problems.append(f"Unknown question {answer.question_id}")
            logger.warning(f"Question {answer.question_id} not found in test {test.test_id}, answer skipped")
            continue

        if question.question_id in seen:
            problems.append(f"Duplicate answer for question {question.question_id}")
            continue
        seen.add(question.question_id)

        option = question.find_option(answer.option_id)
        if option is None:
            problems.append(f"Unknown option {answer.option_id} for question {question.question_id}")

        if option is not None and option.is_correct:
            score += question.points
            evaluated.append(EvaluatedAnswer(
                question_id=answer.question_id,
                option_id=answer.option_id,
                correct=True,
                points=question.points,
            ))
        else:
            evaluated.append(EvaluatedAnswer(
                question_id=answer.question_id,
                option_id=answer.option_id,
                correct=False,
                points=0,
            ))

    if strict and problems:
        raise ValidationFailure("Submission does not match the test", problems)

    percentage = (score * 100 / total_points) if total_points > 0 else 0

    return TestResult(
        test_id=test.test_id,
        score=score,
        total_points=total_points,
        percentage=percentage,
        answers=evaluated,
        time_spent=max(0, time_spent or 0),
    )
