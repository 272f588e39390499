"""Domain errors raised by the scoring and progress services."""

from typing import Any, Dict, List, Optional


class QazaqCodeError(Exception):
    """Base class for domain errors"""


class TestNotFound(QazaqCodeError):
    """The requested test definition does not exist"""

    def __init__(self, test_id: str):
        self.test_id = test_id
        super().__init__(f"Test not found: {test_id}")


class ValidationFailure(QazaqCodeError):
    """Malformed submission (missing answers, bad ids, strict-mode violations)"""

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        self.problems = problems or []
        super().__init__(message)


class TransientStorageError(QazaqCodeError):
    """One failed write attempt. Recovered by retrying, never surfaced to callers."""

    def __init__(self, attempt: int, cause: Exception):
        self.attempt = attempt
        self.cause = cause
        super().__init__(f"Attempt {attempt} failed: {type(cause).__name__}: {cause}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt": self.attempt,
            "error_type": type(self.cause).__name__,
            "error": str(self.cause),
        }


class ProgressPersistenceFailure(QazaqCodeError):
    """Every write attempt for a test result failed"""

    def __init__(self, user_id: str, test_id: str, payload: Dict[str, Any],
                 errors: List[TransientStorageError]):
        self.user_id = user_id
        self.test_id = test_id
        self.payload = payload
        self.errors = errors
        super().__init__(
            f"Could not save progress for test {test_id} of user {user_id} "
            f"after {len(errors)} attempt(s)"
        )
