"""
Zeroed — Quick-add parser.

Turns a free-text quick-entry string such as

    "Call dentist tomorrow at 3pm !urgent ~30m #health @Personal"

into structured task fields. Extraction is a fixed sequence of regex passes
(tags, list, priority, estimate, time, date); every recognised marker is cut
out of the working text and whatever remains becomes the title.

The parser is best-effort and never raises: unrecognised or out-of-range
markers ("25:00", "13/45") are simply left in the title.
"""

from __future__ import annotations

import calendar
import logging
import re
from datetime import date, timedelta
from typing import Any, Callable

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class ParsedTaskInput(BaseModel):
    """Fields extracted from a quick-add string.

    JSON example:
    {
        "title": "Call dentist",
        "due_date": "2025-02-14",
        "due_time": "15:00",
        "priority": "urgent",
        "tags": ["health"],
        "estimated_minutes": 30,
        "list_name": "Personal"
    }
    """
    title: str
    due_date: str | None = None       # ISO format YYYY-MM-DD
    due_time: str | None = None       # HH:MM in 24h format
    priority: str | None = None
    tags: list[str] | None = None
    estimated_minutes: int | None = None
    list_name: str | None = None

    def to_dict(self) -> dict:
        """Only the fields that were actually found."""
        return self.model_dump(exclude_none=True)


# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

_TAG_RE = re.compile(r"#(\w+)")
_LIST_RE = re.compile(r"@(\w+)")

_PRIORITY_RULES: list[tuple[re.Pattern, str]] = [
    (re.compile(r"!!!|!(?:urgent|u)\b", re.I), "urgent"),
    (re.compile(r"!!|!(?:high|h)\b", re.I), "high"),
    (re.compile(r"!(?:low|l)\b", re.I), "low"),
    (re.compile(r"!(?:normal|n)\b", re.I), "normal"),
    (re.compile(r"\bp1\b", re.I), "urgent"),
    (re.compile(r"\bp2\b", re.I), "high"),
    (re.compile(r"\bp3\b", re.I), "normal"),
    (re.compile(r"\bp4\b", re.I), "low"),
    (re.compile(r"(?<!\S)!(?!\S)"), "normal"),
]

# (pattern, minutes per unit); a leading "~" belongs to the marker
_ESTIMATE_RULES: list[tuple[re.Pattern, int]] = [
    (re.compile(r"(?:(?<!\S)~|\b)(\d+)\s*(?:min|mins|minutes?)\b", re.I), 1),
    (re.compile(r"(?:(?<!\S)~|\b)(\d+)\s*(?:hr|hrs|hours?)\b", re.I), 60),
    (re.compile(r"(?<!\S)~(\d+)\s*m\b", re.I), 1),
    (re.compile(r"(?<!\S)~(\d+)\s*h\b", re.I), 60),
]

_TIME_RULES: list[tuple[re.Pattern, None]] = [
    (re.compile(r"\bat\s+(?P<hour>\d{1,2}):(?P<minute>\d{2})\s*(?P<ampm>am|pm)?\b", re.I), None),
    (re.compile(r"\bat\s+(?P<hour>\d{1,2})\s*(?P<ampm>am|pm)\b", re.I), None),
    (re.compile(r"\b(?P<hour>\d{1,2}):(?P<minute>\d{2})\s*(?P<ampm>am|pm)?\b", re.I), None),
    (re.compile(r"\b(?P<hour>\d{1,2})\s*(?P<ampm>am|pm)\b", re.I), None),
]

# estimates beyond a week are not treated as markers
MAX_ESTIMATE_MINUTES = 7 * 24 * 60

_WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def add_months(day: date, months: int) -> date:
    """Shift by whole months, clamping the day to the target month's length."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last))


def _next_weekday(today: date, weekday: int) -> date:
    """Strictly-next occurrence of weekday (today's weekday → one week out)."""
    delta = (weekday - today.weekday()) % 7
    return today + timedelta(days=delta or 7)


def _month_day(match: re.Match, today: date) -> date | None:
    try:
        candidate = date(today.year, int(match.group(1)), int(match.group(2)))
    except ValueError:
        return None
    if candidate < today:
        try:
            candidate = candidate.replace(year=today.year + 1)
        except ValueError:
            # Feb 29 rolled into a non-leap year
            return None
    return candidate


_DateHandler = Callable[[re.Match, date], "date | None"]

_DATE_RULES: list[tuple[re.Pattern, _DateHandler]] = [
    (re.compile(r"\bin\s+(\d+)\s+days?\b", re.I),
     lambda m, today: today + timedelta(days=int(m.group(1)))),
    (re.compile(r"\bin\s+(\d+)\s+weeks?\b", re.I),
     lambda m, today: today + timedelta(weeks=int(m.group(1)))),
    (re.compile(r"\btoday\b", re.I), lambda m, today: today),
    (re.compile(r"\btomorrow\b", re.I), lambda m, today: today + timedelta(days=1)),
    (re.compile(r"\byesterday\b", re.I), lambda m, today: today - timedelta(days=1)),
    (re.compile(r"\bnext\s+week\b", re.I), lambda m, today: today + timedelta(weeks=1)),
    (re.compile(r"\bnext\s+month\b", re.I), lambda m, today: add_months(today, 1)),
    (re.compile(r"\b(?:(?:next|this)\s+)?(" + "|".join(_WEEKDAYS) + r")\b", re.I),
     lambda m, today: _next_weekday(today, _WEEKDAYS.index(m.group(1).lower()))),
    (re.compile(r"\b(\d{1,2})[/-](\d{1,2})\b"), _month_day),
]


# ---------------------------------------------------------------------------
# Converters: return None for an out-of-range match
# ---------------------------------------------------------------------------

def _to_priority(match: re.Match, priority: str) -> str:
    return priority


def _to_minutes(match: re.Match, unit: int) -> int | None:
    digits = match.group(1)
    if len(digits) > 6:
        return None
    minutes = int(digits) * unit
    return minutes if 0 < minutes <= MAX_ESTIMATE_MINUTES else None


def _to_time(match: re.Match, _: None) -> str | None:
    hour = int(match.group("hour"))
    minute = int(match.groupdict().get("minute") or 0)
    ampm = (match.group("ampm") or "").lower()

    if minute > 59:
        return None
    if ampm:
        if not 1 <= hour <= 12:
            return None
        if ampm == "pm" and hour < 12:
            hour += 12
        elif ampm == "am" and hour == 12:
            hour = 0
    elif hour > 23:
        return None
    return f"{hour:02d}:{minute:02d}"


def _date_converter(today: date) -> Callable[[re.Match, _DateHandler], str | None]:
    def convert(match: re.Match, handler: _DateHandler) -> str | None:
        try:
            resolved = handler(match, today)
        except (OverflowError, ValueError):
            # "in 99999999 days" lands past date.max
            return None
        return resolved.isoformat() if resolved else None
    return convert


def _scan(
    rules: list[tuple[re.Pattern, Any]],
    text: str,
    convert: Callable[[re.Match, Any], Any],
) -> tuple[Any, str]:
    """First valid value across rules (in order), and text with every valid match blanked."""
    value = None
    for pattern, arg in rules:
        for match in pattern.finditer(text):
            value = convert(match, arg)
            if value is not None:
                break
        if value is not None:
            break

    for pattern, arg in rules:
        text = pattern.sub(
            lambda m, arg=arg: " " if convert(m, arg) is not None else m.group(0),
            text,
        )
    return value, text


def _clean_title(text: str) -> str:
    text = re.sub(r"\s+", " ", text).strip()
    return re.sub(r"^[,\s]+|[,\s]+$", "", text)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def _extract_pass(text: str, today: date, result: ParsedTaskInput) -> str:
    """Run every extractor once, filling only fields that are still unset."""
    tags = [m.group(1) for m in _TAG_RE.finditer(text)]
    if tags:
        merged = list(result.tags or [])
        merged += [t for t in dict.fromkeys(tags) if t not in merged]
        result.tags = merged
        text = _TAG_RE.sub(" ", text)

    list_match = _LIST_RE.search(text)
    if list_match:
        if result.list_name is None:
            result.list_name = list_match.group(1)
        text = _LIST_RE.sub(" ", text)

    priority, text = _scan(_PRIORITY_RULES, text, _to_priority)
    if result.priority is None:
        result.priority = priority

    minutes, text = _scan(_ESTIMATE_RULES, text, _to_minutes)
    if result.estimated_minutes is None:
        result.estimated_minutes = minutes

    due_time, text = _scan(_TIME_RULES, text, _to_time)
    if result.due_time is None:
        result.due_time = due_time

    due_date, text = _scan(_DATE_RULES, text, _date_converter(today))
    if result.due_date is None:
        result.due_date = due_date

    return _clean_title(text)


def parse_task_input(text: str, today: date | None = None) -> ParsedTaskInput:
    """Parse a quick-add string into task fields.

    `today` anchors relative dates and defaults to date.today().
    Passes repeat until nothing more is removed, so the returned title
    contains no marker the parser would recognise.
    """
    today = today or date.today()
    result = ParsedTaskInput(title="")

    working = _clean_title(text or "")
    while True:
        remaining = _extract_pass(working, today, result)
        if remaining == working:
            break
        working = remaining

    result.title = working
    logger.debug("Parsed quick-add %r -> %s", text, result.to_dict())
    return result


_NL_HINTS = [
    re.compile(r"\btoday\b", re.I),
    re.compile(r"\btomorrow\b", re.I),
    re.compile(r"\bnext\b", re.I),
    re.compile(r"\b(?:" + "|".join(_WEEKDAYS) + r")\b", re.I),
    re.compile(r"\bat \d", re.I),
    re.compile(r"!+[a-z]?", re.I),
    re.compile(r"#\w+"),
    re.compile(r"@\w+"),
    re.compile(r"~\d+\s*[mh]\b", re.I),
    re.compile(r"\bin \d+ (?:days?|weeks?)\b", re.I),
    re.compile(r"\bp[1-4]\b", re.I),
]


def has_natural_language_elements(text: str) -> bool:
    """True if the input contains any marker worth previewing as parsed fields."""
    return any(p.search(text) for p in _NL_HINTS)
