"""
Zeroed — AI brain dump and task breakdown.

Both helpers send free text to the configured LLM with a fixed prompt and
validate the returned JSON against pydantic models. When no LLM key is
configured, or the call or parse fails, a deterministic keyword fallback
produces a usable result instead, so neither function raises.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import date
from typing import Literal

from pydantic import BaseModel, Field, ValidationError

from zeroed.core import llm

logger = logging.getLogger(__name__)

Priority = Literal["low", "normal", "high", "urgent"]


# ---------------------------------------------------------------------------
# Shared JSON contract
# ---------------------------------------------------------------------------

class ParsedTask(BaseModel):
    """One task extracted from a brain dump.

    JSON example:
    {
        "title": "Email landlord about the leak",
        "notes": "Kitchen sink, since Monday",
        "priority": "high",
        "due_date": "2025-02-14",
        "estimated_minutes": 15,
        "subtasks": ["Take photos", "Find lease"]
    }
    """
    title: str
    notes: str | None = None
    priority: Priority = "normal"
    due_date: str | None = None        # ISO format YYYY-MM-DD
    estimated_minutes: int | None = None
    subtasks: list[str] = Field(default_factory=list)


class ParsedBrainDump(BaseModel):
    tasks: list[ParsedTask] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)


class GeneratedSubtask(BaseModel):
    title: str
    estimated_minutes: int | None = None
    notes: str | None = None


class TaskBreakdownResult(BaseModel):
    subtasks: list[GeneratedSubtask] = Field(default_factory=list)
    suggested_estimate: int | None = None


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

_BRAIN_DUMP_PROMPT = """\
You are a task extraction assistant for a productivity app called Bruh. Your job is to take messy, unstructured text (a "brain dump") and extract actionable tasks from it.

Rules:
1. Extract clear, actionable tasks from the text
2. Each task should have a concise, imperative title (start with a verb)
3. If there's additional context, add it as notes
4. Infer priority based on urgency words (ASAP, urgent, important = high/urgent; eventually, someday = low)
5. If dates/times are mentioned, extract them as due dates in ISO format
6. If time estimates are mentioned, extract estimated_minutes
7. If a task has sub-items, extract them as subtasks
8. Ignore filler text, greetings, and non-actionable content
9. General thoughts that aren't actionable become notes

Output valid JSON matching this schema:
{
  "tasks": [
    {
      "title": "string (required, imperative verb phrase)",
      "notes": "string (optional, additional context)",
      "priority": "low" | "normal" | "high" | "urgent" (optional, default normal),
      "due_date": "YYYY-MM-DD" (optional, only if date mentioned),
      "estimated_minutes": number (optional, only if time mentioned),
      "subtasks": ["string"] (optional, list of subtask titles)
    }
  ],
  "notes": ["string"] (optional, non-actionable thoughts)
}

Be aggressive about extracting tasks. When in doubt, make it a task."""

_BREAKDOWN_PROMPT = """\
You are a task breakdown assistant for a productivity app called Bruh. Your job is to take a complex task and break it down into smaller, actionable subtasks.

Rules:
1. Break down the task into 3-8 clear, specific subtasks
2. Each subtask should be a single, actionable step
3. Use imperative verbs (start with action words)
4. Keep subtask titles concise (under 50 characters ideally)
5. Order subtasks logically (what comes first)
6. Estimate time in minutes for each subtask (5, 10, 15, 30, 45, 60, etc.)
7. Add brief notes only if the step needs clarification
8. Don't over-complicate simple tasks

Output valid JSON matching this schema:
{
  "subtasks": [
    {
      "title": "string (required, imperative verb phrase)",
      "estimated_minutes": number (optional, realistic estimate),
      "notes": "string (optional, only if clarification needed)"
    }
  ],
  "suggested_estimate": number (optional, total minutes for entire task)
}"""


# ---------------------------------------------------------------------------
# Response cleaning
# ---------------------------------------------------------------------------

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def _extract_json(raw_text: str) -> str:
    """Return the contents of the first code fence, or the text itself."""
    match = _FENCE_RE.search(raw_text)
    if match:
        return match.group(1).strip()
    return raw_text.strip()


# ---------------------------------------------------------------------------
# Keyword fallbacks
# ---------------------------------------------------------------------------

_LIST_MARKER_RE = re.compile(r"^(?:[-*•→>]\s*|\d+[.)]\s*)")
_URGENT_RE = re.compile(r"\b(?:asap|urgent|immediately|critical)\b", re.I)
_HIGH_RE = re.compile(r"\b(?:important|priority|must)\b", re.I)
_LOW_RE = re.compile(r"\b(?:eventually|someday|maybe|later)\b", re.I)
_PRIORITY_WORDS_RE = re.compile(
    r"\b(?:asap|urgent|immediately|critical|important|priority|must|eventually|someday|maybe|later)\b",
    re.I,
)
_DURATION_RE = re.compile(r"\b(\d+)\s*(minutes|minute|min|hours|hour|hr|h|m)\b", re.I)


def fallback_brain_dump(text: str) -> ParsedBrainDump:
    """One task per non-trivial line, with priority and minutes inferred from keywords."""
    tasks: list[ParsedTask] = []

    for line in (text or "").splitlines():
        line = line.strip()
        if len(line) < 3:
            continue

        clean = _LIST_MARKER_RE.sub("", line).strip()
        if not clean:
            continue

        if _URGENT_RE.search(clean):
            priority = "urgent"
        elif _HIGH_RE.search(clean):
            priority = "high"
        elif _LOW_RE.search(clean):
            priority = "low"
        else:
            priority = "normal"

        estimated_minutes = None
        duration = _DURATION_RE.search(clean)
        if duration:
            amount = int(duration.group(1))
            estimated_minutes = amount * 60 if duration.group(2).lower().startswith("h") else amount

        title = _PRIORITY_WORDS_RE.sub("", clean)
        title = _DURATION_RE.sub("", title)
        title = re.sub(r"\s+", " ", title).strip()
        if len(title) < 2:
            continue

        tasks.append(ParsedTask(
            title=title[0].upper() + title[1:],
            priority=priority,
            estimated_minutes=estimated_minutes,
        ))

    return ParsedBrainDump(tasks=tasks)


# keyword set → (subtasks, suggested_estimate)
_BREAKDOWN_TEMPLATES: list[tuple[tuple[str, ...], list[tuple[str, int]], int]] = [
    (("write", "create", "draft"), [
        ("Outline main points", 15),
        ("Write first draft", 30),
        ("Review and edit", 20),
        ("Final polish", 10),
    ], 75),
    (("plan", "organize"), [
        ("Define goals and requirements", 15),
        ("Research options", 20),
        ("Create initial plan", 25),
        ("Review and finalize", 15),
    ], 75),
    (("review", "analyze"), [
        ("Gather materials", 10),
        ("Initial review", 20),
        ("Take notes", 15),
        ("Summarize findings", 15),
    ], 60),
    (("prepare", "setup"), [
        ("Identify requirements", 10),
        ("Gather necessary items", 15),
        ("Complete preparation", 20),
        ("Final check", 10),
    ], 55),
]

_GENERIC_BREAKDOWN = ([
    ("Define scope and goals", 15),
    ("Complete main work", 30),
    ("Review and finalize", 15),
], 60)


def fallback_breakdown(task_title: str) -> TaskBreakdownResult:
    """Template subtasks chosen by keywords in the title."""
    lowered = task_title.lower()
    steps, estimate = _GENERIC_BREAKDOWN
    for keywords, template, total in _BREAKDOWN_TEMPLATES:
        if any(k in lowered for k in keywords):
            steps, estimate = template, total
            break

    return TaskBreakdownResult(
        subtasks=[GeneratedSubtask(title=t, estimated_minutes=m) for t, m in steps],
        suggested_estimate=estimate,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def parse_brain_dump(text: str, today: date | None = None) -> ParsedBrainDump:
    """Extract tasks (and loose notes) from unstructured text."""
    if not llm.is_configured():
        return fallback_brain_dump(text)

    today = today or date.today()
    raw_text = ""
    try:
        raw_text = await llm.complete(
            system=_BRAIN_DUMP_PROMPT,
            user_message=f"Today's date is {today.isoformat()}. Parse this brain dump into tasks:\n\n{text}",
            max_tokens=2000,
            json_output=True,
        )
        result = ParsedBrainDump.model_validate(json.loads(_extract_json(raw_text)))
        logger.info("Brain dump parsed into %d task(s)", len(result.tasks))
        return result
    except json.JSONDecodeError as exc:
        logger.error("Failed to parse brain dump response as JSON: %s — raw: '%s'", exc, raw_text)
    except ValidationError as exc:
        logger.error("Brain dump response did not match schema: %s", exc)
    except Exception as exc:
        logger.error("AI brain dump failed, using fallback: %s", exc)
    return fallback_brain_dump(text)


async def breakdown_task(
    task_title: str,
    task_notes: str | None = None,
    context: str | None = None,
) -> TaskBreakdownResult:
    """Split a task into 3-8 ordered subtasks with estimates."""
    if not llm.is_configured():
        return fallback_breakdown(task_title)

    prompt = f"Break down this task into subtasks:\n\nTask: {task_title}"
    if task_notes:
        prompt += f"\n\nNotes: {task_notes}"
    if context:
        prompt += f"\n\nContext: {context}"

    raw_text = ""
    try:
        raw_text = await llm.complete(
            system=_BREAKDOWN_PROMPT,
            user_message=prompt,
            max_tokens=1500,
            json_output=True,
        )
        result = TaskBreakdownResult.model_validate(json.loads(_extract_json(raw_text)))
        if not result.subtasks:
            raise ValueError("no subtasks in response")
        return result
    except json.JSONDecodeError as exc:
        logger.error("Failed to parse breakdown response as JSON: %s — raw: '%s'", exc, raw_text)
    except ValidationError as exc:
        logger.error("Breakdown response did not match schema: %s", exc)
    except Exception as exc:
        logger.error("AI breakdown failed, using fallback: %s", exc)
    return fallback_breakdown(task_title)
