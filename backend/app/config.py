"""
Configuration - env vars, constants, logging setup.
"""

import os
import logging
from pathlib import Path
from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent.parent
load_dotenv(ROOT_DIR / '.env')

# Logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("qazaqcode")

# Database
MONGO_URL = os.environ.get("MONGO_URL", "mongodb://localhost:27017")
DB_NAME = os.environ.get("DB_NAME", "qazaqcode")

# Progress persistence
PROGRESS_SAVE_ATTEMPTS = max(1, int(os.environ.get("PROGRESS_SAVE_ATTEMPTS", "3")))
PROGRESS_RETRY_DELAY = float(os.environ.get("PROGRESS_RETRY_DELAY", "0.2"))
PROGRESS_ERROR_LOG = Path(
    os.environ.get("PROGRESS_ERROR_LOG", str(ROOT_DIR / "logs" / "progress-errors.log"))
)

# Reject unknown question/option ids instead of scoring them as 0
STRICT_ANSWER_VALIDATION = os.environ.get("STRICT_ANSWER_VALIDATION", "false").lower() in ("1", "true", "yes")

if STRICT_ANSWER_VALIDATION:
    logger.info("Strict answer validation is enabled")


def get_version_info():
    """Get deployment version information."""
    git_commit = os.environ.get("GIT_COMMIT_SHA")
    if not git_commit:
        try:
            if os.path.exists(".git_commit"):
                with open(".git_commit", "r") as f:
                    git_commit = f.read().strip()
        except OSError:
            pass

    if not git_commit:
        logger.warning("GIT_COMMIT_SHA not set and .git_commit not found. Build pipeline issue?")
        git_commit = "unknown"

    build_time = os.environ.get("BUILD_TIME", "unknown")
    env = os.environ.get("ENV", os.environ.get("ENVIRONMENT", "development"))

    return {
        "git_commit": git_commit,
        "build_time": build_time,
        "environment": env
    }
