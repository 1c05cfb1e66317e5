"""
Deduplication of a freshly scanned source snapshot

Runs before matching so that stale duplicates never claim a mapping.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from .models import Task


logger = logging.getLogger("TaskSync.Dedup")


@dataclass
class DedupResult:
    tasks: Dict[str, Task]
    dropped: List[Tuple[str, Task, str]] = field(default_factory=list)  # (id, task, reason)


def _normalize_path(path: Optional[str]) -> str:
    return (path or "").lstrip("/")


def drop_completed_recurring_pairs(tasks: Dict[str, Task]) -> DedupResult:
    """
    Pass A: same file + same title, one open and one done

    The completed record is the instance that was just finished; its
    successor already exists, so only the open one is kept.
    """
    open_keys: Set[Tuple[str, str]] = set()
    for task in tasks.values():
        if task.source is not None and not task.completed:
            open_keys.add((task.source.file_path, task.title))

    kept: Dict[str, Task] = {}
    dropped = []
    for task_id, task in tasks.items():
        if (
            task.completed
            and task.source is not None
            and (task.source.file_path, task.title) in open_keys
        ):
            dropped.append((task_id, task, "completed instance of recurring task"))
            continue
        kept[task_id] = task

    return DedupResult(kept, dropped)


def drop_title_duplicates(tasks: Dict[str, Task], mapped_ids: Set[str], inbox_path: Optional[str]) -> DedupResult:
    """
    Pass B: several records share a title

    Keep one per title, preferring open over completed, a non-inbox file over
    the inbox, and an already-mapped record over an unmapped one. Ties keep
    scan order.
    """
    inbox = _normalize_path(inbox_path)
    groups: Dict[str, List[str]] = {}
    for task_id, task in tasks.items():
        groups.setdefault(task.title, []).append(task_id)

    losers: Dict[str, str] = {}
    for title, ids in groups.items():
        if len(ids) < 2:
            continue

        def rank(task_id: str) -> Tuple[int, int, int]:
            task = tasks[task_id]
            in_inbox = bool(inbox) and _normalize_path(task.file_path) == inbox
            return (
                1 if task.completed else 0,
                1 if in_inbox else 0,
                0 if task_id in mapped_ids else 1,
            )

        ranked = sorted(ids, key=rank)
        for task_id in ranked[1:]:
            losers[task_id] = f"duplicate of '{title[:40]}'"

    kept = {tid: t for tid, t in tasks.items() if tid not in losers}
    dropped = [(tid, tasks[tid], reason) for tid, reason in losers.items()]
    return DedupResult(kept, dropped)


def deduplicate(tasks: Dict[str, Task], mapped_ids: Set[str], inbox_path: Optional[str] = None) -> DedupResult:
    """
    Run both passes over a source map (id -> task)

    Args:
        tasks: Scanned source tasks keyed by source ID
        mapped_ids: Source IDs that already have a mapping
        inbox_path: Vault-relative path of the inbox note

    Returns:
        DedupResult with surviving tasks and what was dropped
    """
    first = drop_completed_recurring_pairs(tasks)
    second = drop_title_duplicates(first.tasks, mapped_ids, inbox_path)
    dropped = first.dropped + second.dropped

    if dropped:
        logger.info(f"Deduplication: {len(tasks)} → {len(second.tasks)} ({len(dropped)} dropped)")
        for _, task, reason in dropped:
            logger.debug(f"Dropped '{task.title[:40]}' from {task.file_path}: {reason}")

    return DedupResult(second.tasks, dropped)
