"""
Recurrence Engine

Computes the next occurrence of a repeating task. Pure date arithmetic: no
I/O and no clock access.

Grammar (case-insensitive):

    every [N] <day|week|month|year>[s] [on the <Nth|last>] [when done]
    every weekday
    daily | weekly | monthly | yearly | annually  (after "every")

Two modes:

- Regular rules advance strictly from the reference date using the full rule
  ("every month on the 20th", due Feb 9 -> Mar 20).
- "When done" rules advance the due date from the completion date using the
  pure interval. An "on the Nth" clause then yields a separate start date:
  the next matching day after completion ("every month on the 20th when
  done", completed Feb 8 -> start Feb 20, due Mar 8).
"""

import calendar
import logging
import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional


logger = logging.getLogger("TaskSync.Recurrence")

_WHEN_DONE = re.compile(r'\s*when\s+done\s*$', re.IGNORECASE)
_ON_THE = re.compile(r'^(?:(\d+)\s*)?months?\s+on\s+the\s+(.+)$')
_ON_THE_SUFFIX = re.compile(r'\s+on\s+the\s+.*$')
_INTERVAL = re.compile(r'^(?:(\d+)\s*)?(day|week|month|year)s?$')
_DAY_OF_MONTH = re.compile(r'^(\d{1,2})(?:st|nd|rd|th)?$')

_ALIASES = {
    'daily': 'day',
    'weekly': 'week',
    'monthly': 'month',
    'yearly': 'year',
    'annually': 'year',
}

# Upper bound on month steps when searching for a day-of-month match
_MAX_MONTH_STEPS = 24


@dataclass(frozen=True)
class RecurrenceRule:
    """A recurrence rule with any trailing "when done" split off"""
    text: str
    when_done: bool = False

    @classmethod
    def parse(cls, raw: str) -> Optional["RecurrenceRule"]:
        """
        Parse rule text such as "every 2 weeks when done"

        Returns None for empty text. The body is not validated here;
        compute_next_date() returns None for rules it cannot evaluate.
        """
        if not raw or not raw.strip():
            return None
        text = " ".join(raw.split())
        when_done = bool(_WHEN_DONE.search(text))
        if when_done:
            text = _WHEN_DONE.sub('', text).strip()
        return cls(text=text, when_done=when_done)


@dataclass(frozen=True)
class RecurrenceResult:
    """Next reference date, plus a start date when an "on the Nth" anchor applies"""
    reference_date: date
    start_date: Optional[date] = None


@dataclass(frozen=True)
class NextDates:
    """Dates for the next instance of a recurring task"""
    due_date: Optional[date] = None
    start_date: Optional[date] = None
    scheduled_date: Optional[date] = None


# ==================== Calendar helpers ====================

def add_months(value: date, months: int) -> date:
    """Add calendar months, clamping the day to the target month's length"""
    index = value.year * 12 + (value.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def _next_weekday(value: date) -> date:
    candidate = value + timedelta(days=1)
    while candidate.weekday() >= 5:
        candidate += timedelta(days=1)
    return candidate


def _monthly_on_the(day_spec: str, interval: int, after: date, include_current: bool) -> Optional[date]:
    """
    Walk forward in `interval`-month steps to the first matching day strictly
    after `after`

    With include_current the walk starts in the month of `after`, otherwise
    one interval later.
    """
    day_spec = day_spec.strip()
    if day_spec == 'last':
        wanted = None
    else:
        match = _DAY_OF_MONTH.match(day_spec)
        if not match:
            return None
        wanted = int(match.group(1))
        if not 1 <= wanted <= 31:
            return None

    index = after.year * 12 + (after.month - 1)
    if not include_current:
        index += interval

    for _ in range(_MAX_MONTH_STEPS):
        year, month = divmod(index, 12)
        month += 1
        month_length = calendar.monthrange(year, month)[1]
        day = month_length if wanted is None else min(wanted, month_length)
        candidate = date(year, month, day)
        if candidate > after:
            return candidate
        index += interval

    return None


def _next_occurrence(body: str, base: date) -> Optional[date]:
    """Evaluate a rule body (text after "every ") against `base`"""
    body = _ALIASES.get(body, body)

    if body in ('weekday', 'weekdays'):
        return _next_weekday(base)

    match = _ON_THE.match(body)
    if match:
        interval = int(match.group(1)) if match.group(1) else 1
        if interval < 1:
            return None
        return _monthly_on_the(match.group(2), interval, base, include_current=False)

    match = _INTERVAL.match(body)
    if not match:
        logger.debug(f"Could not parse recurrence rule: 'every {body}'")
        return None

    count = int(match.group(1)) if match.group(1) else 1
    if count < 1:
        return None

    unit = match.group(2)
    if unit == 'day':
        return base + timedelta(days=count)
    if unit == 'week':
        return base + timedelta(weeks=count)
    if unit == 'month':
        return add_months(base, count)
    return add_months(base, 12 * count)


# ==================== Public API ====================

def compute_next_date(rule: RecurrenceRule, reference_date: date, completion_date: date) -> Optional[RecurrenceResult]:
    """
    Compute the next occurrence for `rule`

    Args:
        rule: Parsed recurrence rule
        reference_date: Current reference date (due > scheduled > start)
        completion_date: Day the current instance was completed

    Returns:
        RecurrenceResult, or None when the rule cannot be evaluated
    """
    lowered = " ".join(rule.text.lower().split())
    if not lowered.startswith('every '):
        logger.debug(f"Recurrence rule does not start with 'every': '{rule.text}'")
        return None
    body = lowered[len('every '):].strip()

    if not rule.when_done:
        next_date = _next_occurrence(body, reference_date)
        return RecurrenceResult(next_date) if next_date else None

    start_date = None
    match = _ON_THE.match(body)
    if match:
        interval = int(match.group(1)) if match.group(1) else 1
        start_date = _monthly_on_the(match.group(2), max(interval, 1), completion_date, include_current=True)

    interval_only = _ON_THE_SUFFIX.sub('', body).strip()
    next_due = _next_occurrence(interval_only, completion_date)
    if next_due is None:
        return None
    return RecurrenceResult(next_due, start_date)


def next_occurrence_dates(
    rule: RecurrenceRule,
    due_date: Optional[date],
    start_date: Optional[date],
    scheduled_date: Optional[date],
    completion_date: date
) -> Optional[NextDates]:
    """
    Dates for the next instance of a recurring task

    The reference date is due, else scheduled, else start. Every other date
    keeps its whole-day offset from the reference, except a start date
    produced by an "on the Nth" anchor, which is used as-is.

    Returns:
        NextDates, or None when there is no reference date or the rule
        cannot be evaluated
    """
    reference = due_date or scheduled_date or start_date
    if reference is None:
        logger.debug("Recurring task has no date fields, skipping recurrence")
        return None

    result = compute_next_date(rule, reference, completion_date)
    if result is None:
        return None

    def shifted(value: Optional[date]) -> Optional[date]:
        if value is None:
            return None
        return result.reference_date + (value - reference)

    next_start = result.start_date if result.start_date else shifted(start_date)

    return NextDates(
        due_date=shifted(due_date),
        start_date=next_start,
        scheduled_date=shifted(scheduled_date),
    )
