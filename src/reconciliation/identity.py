"""
Identity and change-detection hashes for tasks

Both values are base64 of the joined field values. They are collision
tolerant fingerprints, not security hashes.
"""

import base64
from datetime import date
from typing import Iterable, Optional

from .models import Task


def _iso(value: Optional[date]) -> str:
    return value.isoformat() if value else ""


def _encode(components: Iterable[str]) -> str:
    return base64.b64encode("|".join(components).encode("utf-8")).decode("ascii")


def generate_id(task: Task) -> str:
    """
    Generate a content-derived ID for a source task

    Changing the file, title, due/start/scheduled dates, tags or priority
    produces a new ID. The line number is deliberately not part of it, so
    reordering lines keeps IDs stable.
    """
    if task.source is None:
        return _encode([task.title, task.target_list or ""])

    return _encode([
        task.source.file_path,
        task.title,
        _iso(task.due_date),
        _iso(task.start_date),
        _iso(task.scheduled_date),
        ",".join(sorted(task.tags)),
        str(int(task.priority)),
    ])


def generate_hash(task: Task) -> str:
    """Fingerprint of every field that should trigger a re-sync when it changes"""
    return _encode([
        task.title,
        str(task.completed),
        str(int(task.priority)),
        _iso(task.due_date),
        _iso(task.start_date),
        _iso(task.scheduled_date),
        _iso(task.completed_date),
        task.target_list or "",
        ",".join(sorted(task.tags)),
    ])
