"""Workflow-tagged step logging for the indexing and matching pipelines."""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any

LOGGER = logging.getLogger("uploadmatch.workflow")


def create_workflow_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def round_score(value: float, digits: int = 4) -> float:
    return round(float(value), digits)


def log_step(workflow_id: str, step: str, details: Any = None, *, level: int = logging.DEBUG) -> None:
    if not LOGGER.isEnabledFor(level):
        return
    if details is None:
        LOGGER.log(level, "[%s] %s", workflow_id, step)
    else:
        LOGGER.log(level, "[%s] %s %s", workflow_id, step, json.dumps(details, default=str, ensure_ascii=False))
