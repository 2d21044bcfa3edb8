"""Tests for research task extraction from answers."""

from __future__ import annotations

import json

from collegebot.ai.orchestration.research_tasks import extract_research_tasks


def _block(payload: object) -> str:
    return f"[RESEARCH_TASK]{json.dumps(payload)}[/RESEARCH_TASK]"


def test_extracts_tasks_in_order() -> None:
    content = (
        "Here is your plan.\n"
        + _block(
            {
                "type": "college",
                "name": "Stanford",
                "findings": [
                    {
                        "detail": "REA deadline is November 1",
                        "category": "deadline",
                        "confidence": "high",
                        "source": "admission.stanford.edu",
                    }
                ],
            }
        )
        + "\n"
        + _block({"type": "scholarship", "name": "Coca-Cola Scholars", "findings": []})
    )

    tasks = extract_research_tasks(content)

    assert [task.name for task in tasks] == ["Stanford", "Coca-Cola Scholars"]
    assert tasks[0].findings[0].category == "deadline"
    assert tasks[1].to_payload() == {"type": "scholarship", "name": "Coca-Cola Scholars", "findings": []}


def test_optional_source_is_omitted_from_payload() -> None:
    finding = {"detail": "Needs two letters", "category": "requirement", "confidence": "medium"}
    tasks = extract_research_tasks(_block({"type": "college", "name": "MIT", "findings": [finding], "extra": 1}))

    assert tasks[0].to_payload() == {"type": "college", "name": "MIT", "findings": [finding]}


def test_invalid_blocks_are_skipped() -> None:
    content = (
        "[RESEARCH_TASK]{not json}[/RESEARCH_TASK]"
        + _block({"type": "internship", "name": "X", "findings": []})
        + _block({"type": "college", "name": "Yale", "findings": []})
    )

    tasks = extract_research_tasks(content)

    assert [task.name for task in tasks] == ["Yale"]


def test_no_blocks() -> None:
    assert extract_research_tasks("Just an answer.") == []
    assert extract_research_tasks("") == []
