"""
Append-only diagnostic log for progress persistence failures.
Records go through the "qazaqcode.progress_errors" logger, which writes to
PROGRESS_ERROR_LOG and propagates to the application log.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from app import config
from app.config import logger

error_logger = logging.getLogger("qazaqcode.progress_errors")


def _attach_file_handler(log_path: Path) -> None:
    """Point the diagnostic logger at log_path, replacing a handler for another file"""
    target = os.path.abspath(log_path)
    for handler in list(error_logger.handlers):
        if isinstance(handler, logging.FileHandler):
            if handler.baseFilename == target:
                return
            error_logger.removeHandler(handler)
            handler.close()

    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    except OSError as e:
        logger.error(f"Error opening diagnostic log {log_path}: {e}")
        return
    handler.setFormatter(logging.Formatter("[%(asctime)s] %(message)s"))
    error_logger.addHandler(handler)


def log_to_file(message: str, data: Dict[str, Any], path: Optional[Path] = None) -> None:
    """Append a timestamped JSON block to the diagnostic log. Never raises."""
    _attach_file_handler(Path(path or config.PROGRESS_ERROR_LOG))

    try:
        body = json.dumps(data, indent=2, default=str, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        body = f"<unserializable payload: {e}>"

    error_logger.error(f"{message}\n{body}\n")
