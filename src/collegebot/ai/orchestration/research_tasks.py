"""Extraction of ``[RESEARCH_TASK]`` blocks embedded in answers.

An answer may carry follow-up research items for the client to track::

    [RESEARCH_TASK]{"type": "college", "name": "MIT", "findings": [...]}[/RESEARCH_TASK]

Blocks that fail to parse or validate are skipped; the answer text itself is
left untouched.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, ValidationError

__all__ = ["RESEARCH_TASK_RE", "Finding", "ResearchTask", "extract_research_tasks"]

LOGGER = logging.getLogger(__name__)

RESEARCH_TASK_RE = re.compile(r"\[RESEARCH_TASK\]\s*(\{[\s\S]*?\})\s*\[/RESEARCH_TASK\]")


class Finding(BaseModel):
    model_config = ConfigDict(extra="ignore")

    detail: str
    category: Literal["deadline", "requirement", "contact", "financial", "other"]
    confidence: Literal["high", "medium", "low"]
    source: str | None = None


class ResearchTask(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Literal["college", "scholarship"]
    name: str
    findings: list[Finding]

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


def extract_research_tasks(content: str) -> list[ResearchTask]:
    """Return every valid research task found in ``content``, in order."""

    tasks: list[ResearchTask] = []
    for match in RESEARCH_TASK_RE.finditer(content or ""):
        raw = match.group(1)
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            LOGGER.warning("Error parsing research task: %s", exc)
            continue
        try:
            tasks.append(ResearchTask.model_validate(data))
        except ValidationError as exc:
            LOGGER.warning("Skipping invalid research task: %s", exc.errors(include_url=False))
    return tasks
