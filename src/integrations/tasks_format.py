"""
Obsidian Tasks line format

Parser for task lines such as:

    - [ ] Call the bank ⏫ 🔁 every month on the 20th 🛫 2026-02-20 📅 2026-03-08 #finance

and the line mutators used by surgical edits. Mutators only ever touch the
status character, a date's digits, a priority glyph, or append/remove a
single marker; everything else on the line is kept byte for byte.
"""

import re
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Tuple

from reconciliation.models import Priority, SourceInfo, Task
from reconciliation.recurrence import NextDates, RecurrenceRule


DUE = "📅"
START = "🛫"
SCHEDULED = "⏳"
DONE = "✅"
RECURRENCE = "🔁"

PRIORITY_GLYPHS = {
    "⏫": Priority.HIGH,
    "🔺": Priority.HIGH,
    "🔼": Priority.MEDIUM,
    "🔽": Priority.LOW,
    "⏬": Priority.LOW,
}
GLYPH_FOR_PRIORITY = {
    Priority.HIGH: "⏫",
    Priority.MEDIUM: "🔼",
    Priority.LOW: "🔽",
}

_CHECKBOX = re.compile(r'^(\s*- \[)(.)(\] )')
_PRIORITY = re.compile(r'(?:⏫|🔺|🔼|🔽|⏬)\ufe0f?')
_TAG = re.compile(r'(?<!\S)#[\w-]+(?:/[\w-]+)*')
_RECURRENCE_RULE = re.compile(
    RECURRENCE + r'\ufe0f?\s*(.+?)(?=\s*(?:📅|🛫|⏳|✅|⏫|🔺|🔼|🔽|⏬|#)|$)'
)


def _date_pattern(marker: str) -> re.Pattern:
    return re.compile(re.escape(marker) + r'\ufe0f?\s*(\d{4}-\d{2}-\d{2})')


_DATE_PATTERNS = {marker: _date_pattern(marker) for marker in (DUE, START, SCHEDULED, DONE)}


@dataclass
class LineEdit:
    """Replacement for one line, with optional new lines inserted above it"""
    line: str
    insert_above: List[str] = field(default_factory=list)
    insert_action: str = "insertLine"


# ==================== Parsing ====================

def _extract_date(content: str, marker: str) -> Tuple[Optional[date], str]:
    match = _DATE_PATTERNS[marker].search(content)
    if not match:
        return None, content
    try:
        value = date.fromisoformat(match.group(1))
    except ValueError:
        return None, content
    return value, content[:match.start()] + content[match.end():]


def line_dates(line: str) -> Tuple[Optional[date], Optional[date], Optional[date]]:
    """(due, start, scheduled) found on a line"""
    due, _ = _extract_date(line, DUE)
    start, _ = _extract_date(line, START)
    scheduled, _ = _extract_date(line, SCHEDULED)
    return due, start, scheduled


def parse_recurrence(line: str) -> Optional[RecurrenceRule]:
    """Recurrence rule written after 🔁, if any"""
    match = _RECURRENCE_RULE.search(line)
    if not match:
        return None
    return RecurrenceRule.parse(match.group(1))


def parse_task_line(line: str, file_path: str, line_number: int) -> Optional[Task]:
    """
    Parse one markdown line into a Task

    Args:
        line: Raw line as read from the file
        file_path: Vault-relative path with a leading '/'
        line_number: 1-based line number

    Returns:
        Task, or None if the line is not a task or has an empty title
    """
    match = _CHECKBOX.match(line)
    if not match:
        return None

    completed = match.group(2) in ('x', 'X')
    content = line[match.end():].rstrip('\r\n')

    due_date, content = _extract_date(content, DUE)
    start_date, content = _extract_date(content, START)
    scheduled_date, content = _extract_date(content, SCHEDULED)
    completed_date, content = _extract_date(content, DONE)

    priority = Priority.NONE
    glyph = _PRIORITY.search(content)
    if glyph:
        priority = PRIORITY_GLYPHS[glyph.group(0).rstrip('\ufe0f')]
    content = _PRIORITY.sub('', content)

    rule = _RECURRENCE_RULE.search(content)
    recurrence = rule.group(1).strip() if rule else None

    tags = _TAG.findall(content)
    target_list = None
    if tags:
        # "#work/clients/acme" targets "work"
        target_list = tags[0][1:].split('/')[0]

    title = _TAG.sub('', content)
    if RECURRENCE in title:
        title = title[:title.index(RECURRENCE)]
    title = " ".join(title.split())

    if not title:
        return None

    return Task(
        title=title,
        completed=completed,
        priority=priority,
        due_date=due_date,
        start_date=start_date,
        scheduled_date=scheduled_date,
        completed_date=completed_date,
        tags=tags,
        target_list=target_list,
        recurrence=recurrence,
        source=SourceInfo(file_path=file_path, line_number=line_number, original_line=line),
    )


# ==================== Mutators ====================

def set_status(line: str, completed: bool) -> str:
    """Flip only the status character inside '- [ ]'"""
    match = _CHECKBOX.match(line)
    if not match:
        return line
    status = 'x' if completed else ' '
    if (match.group(2) in ('x', 'X')) == completed:
        return line
    return line[:match.start(2)] + status + line[match.end(2):]


def set_date(line: str, marker: str, value: date) -> str:
    """Replace the digits of an existing marker date, or append the marker"""
    match = _DATE_PATTERNS[marker].search(line)
    if match:
        return line[:match.start(1)] + value.isoformat() + line[match.end(1):]
    return f"{line.rstrip()} {marker} {value.isoformat()}"


def remove_date(line: str, marker: str) -> str:
    """Remove a marker and its date together with the whitespace before it"""
    pattern = re.compile(r'\s*' + _DATE_PATTERNS[marker].pattern)
    return pattern.sub('', line, count=1)


def set_priority(line: str, priority: Priority) -> str:
    """Swap the priority glyph, append one, or remove it for Priority.NONE"""
    match = _PRIORITY.search(line)
    if priority == Priority.NONE:
        if not match:
            return line
        return re.sub(r'\s*' + _PRIORITY.pattern, '', line, count=1)

    glyph = GLYPH_FOR_PRIORITY[priority]
    if match:
        if PRIORITY_GLYPHS[match.group(0).rstrip('\ufe0f')] == priority:
            return line
        return line[:match.start()] + glyph + line[match.end():]
    return f"{line.rstrip()} {glyph}"


def append_completion(line: str, completed_on: date) -> str:
    if DONE in line:
        return line
    return f"{line.rstrip()} {DONE} {completed_on.isoformat()}"


def remove_completion(line: str) -> str:
    return remove_date(line, DONE)


def build_recurrence_line(line: str, dates: NextDates) -> str:
    """
    Next instance of a recurring task, derived from its current line

    The checkbox is reopened, dates get the next values and the completion
    marker is dropped. A start date produced by the rule is inserted before
    the due date when the line has none.
    """
    new_line = set_status(line, False)

    if dates.due_date and _DATE_PATTERNS[DUE].search(new_line):
        new_line = set_date(new_line, DUE, dates.due_date)

    if dates.start_date:
        if _DATE_PATTERNS[START].search(new_line):
            new_line = set_date(new_line, START, dates.start_date)
        elif DUE in new_line:
            at = new_line.index(DUE)
            new_line = f"{new_line[:at]}{START} {dates.start_date.isoformat()} {new_line[at:]}"
        else:
            new_line = set_date(new_line, START, dates.start_date)

    if dates.scheduled_date and _DATE_PATTERNS[SCHEDULED].search(new_line):
        new_line = set_date(new_line, SCHEDULED, dates.scheduled_date)

    return remove_completion(new_line)


def format_new_task_line(task: Task) -> str:
    """Render a brand-new task (one with no existing line) in Obsidian Tasks format"""
    parts = ["- [x]" if task.completed else "- [ ]", task.title]

    if task.priority != Priority.NONE:
        parts.append(GLYPH_FOR_PRIORITY[task.priority])
    if task.start_date:
        parts.append(f"{START} {task.start_date.isoformat()}")
    if task.scheduled_date:
        parts.append(f"{SCHEDULED} {task.scheduled_date.isoformat()}")
    if task.due_date:
        parts.append(f"{DUE} {task.due_date.isoformat()}")
    if task.completed and task.completed_date:
        parts.append(f"{DONE} {task.completed_date.isoformat()}")

    for tag in task.tags:
        tag = tag if tag.startswith('#') else f"#{tag}"
        if tag not in parts:
            parts.append(tag)

    return " ".join(parts)
