"""
Reconciliation Engine

Diffs a fresh source scan and a fresh destination fetch against the persisted
mappings and converges the two sides. The vault is the source of truth; only
completion, due date, start date, priority and brand-new tasks may flow back
into it, each behind its own toggle.
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set, Tuple

from .config import SyncConfig
from .dedup import deduplicate
from .errors import (
    DestinationError,
    FileModifiedDuringSyncError,
    MissingSourceInfoError,
    SafetyAbortError,
    SourceError,
    SyncAlreadyRunningError,
)
from .identity import generate_hash
from .interfaces import TaskDestination, TaskSource
from .models import FieldChange, MetadataChanges, Task
from .result import SyncAction, SyncResult, SyncResultBuilder
from .state import MappingStore, TaskMapping


# Below this many mappings the collapsed-scan check is not meaningful
SAFETY_MIN_MAPPINGS = 10

RELINK_TITLE_SCORE = 10
RELINK_SAME_LIST_SCORE = 5
RELINK_PATH_IN_NOTES_SCORE = 3


@dataclass
class _Run:
    """Scratch state for a single sync run"""
    config: SyncConfig
    result: SyncResultBuilder
    scan_started: datetime
    source_map: Dict[str, Task] = field(default_factory=dict)
    destination_map: Dict[str, Task] = field(default_factory=dict)
    mapped_source_ids: Set[str] = field(default_factory=set)
    mapped_destination_ids: Set[str] = field(default_factory=set)
    processed: Set[str] = field(default_factory=set)  # source IDs handled this run
    claimed: Set[str] = field(default_factory=set)  # destination IDs handled this run
    shifts: Dict[str, List[Tuple[int, int]]] = field(default_factory=dict)  # path -> [(line, inserted)]

    @property
    def dry_run(self) -> bool:
        return self.config.dry_run


class SyncEngine:
    """
    Runs one reconciliation at a time between a TaskSource and a TaskDestination

    Collaborators are injected; the engine holds no global state besides the
    MappingStore it was given.
    """

    def __init__(
        self,
        source: TaskSource,
        destination: TaskDestination,
        store: MappingStore,
        config: SyncConfig,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.source = source
        self.destination = destination
        self.store = store
        self.config = config
        self.clock = clock
        self.logger = logging.getLogger("TaskSync.Engine")
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def run(self, dry_run: Optional[bool] = None) -> SyncResult:
        """
        Perform one sync

        Args:
            dry_run: Override the configured dry-run flag for this run

        Returns:
            SyncResult describing every action taken (or that would be taken)

        Raises:
            SyncAlreadyRunningError: another run is in progress
            ConfigurationError: the source collection is missing or invalid
            SafetyAbortError: the source scan collapsed; nothing was changed
        """
        if not self._lock.acquire(blocking=False):
            raise SyncAlreadyRunningError()

        try:
            config = self.config if dry_run is None else replace(self.config, dry_run=dry_run)
            return self._run(config)
        finally:
            self._lock.release()

    # ==================== Run ====================

    def _run(self, config: SyncConfig) -> SyncResult:
        started = self.clock()
        run = _Run(config=config, result=SyncResultBuilder(config.dry_run, started), scan_started=started)

        self.logger.info(f"Starting sync (dry_run={config.dry_run})")

        # Step 1: scan and deduplicate the source
        scanned = self.source.scan(config)
        source_map: Dict[str, Task] = {}
        for task in scanned:
            source_map[self.source.generate_id(task)] = task

        run.mapped_source_ids = self.store.source_ids()
        run.mapped_destination_ids = self.store.destination_ids()

        dedup = deduplicate(source_map, run.mapped_source_ids, config.inbox_file)
        run.source_map = dedup.tasks
        self.logger.info(
            f"Found {len(scanned)} source tasks ({len(run.source_map)} after deduplication), "
            f"{len(self.store)} existing mappings"
        )

        # Step 2: refuse to run against a collapsed scan, before touching the destination
        mapping_count = len(self.store)
        if mapping_count > SAFETY_MIN_MAPPINGS and len(run.source_map) < mapping_count / 2:
            self.logger.error(
                f"Safety abort: {len(run.source_map)} source tasks vs {mapping_count} mappings"
            )
            raise SafetyAbortError(mapping_count, len(run.source_map))

        # Step 3: destination snapshot
        try:
            destination_tasks = self.destination.fetch_all()
        except DestinationError as e:
            self.logger.error(f"Failed to fetch destination tasks: {e}")
            run.result.error(Task(title="Sync failed"), e)
            return run.result.build(self.clock())

        run.destination_map = {t.destination_id: t for t in destination_tasks if t.destination_id}
        self.logger.info(f"Found {len(run.destination_map)} destination tasks")

        # Step 4: existing mappings
        for mapping in list(self.store.mappings):
            self._process_mapping(run, mapping)

        # Step 5: source tasks with no mapping
        self._sync_unmapped_sources(run)

        # Step 6: destination-only tasks into the vault inbox
        if config.new_task_writeback:
            self._write_back_new_tasks(run)

        # Step 7: persist
        if not config.dry_run:
            self.store.last_sync = self.clock()
            try:
                self.store.save()
            except OSError as e:
                self.logger.error(f"Failed to save sync state: {e}")
                run.result.error(Task(title="Save sync state"), e)

        result = run.result.build(self.clock())
        self.logger.info(f"Sync complete: {result.summary} ({result.duration:.2f}s)")
        return result

    def _process_mapping(self, run: _Run, mapping: TaskMapping) -> None:
        source_task = run.source_map.get(mapping.source_id)
        destination_task = run.destination_map.get(mapping.destination_id)

        if source_task is not None and destination_task is not None:
            self._converge(run, mapping, source_task, destination_task)
        elif source_task is not None:
            self._restore_destination(run, mapping, source_task)
        elif destination_task is not None:
            self._relink_or_delete(run, mapping, destination_task)
        else:
            self.logger.debug(f"Both sides gone, dropping mapping {mapping.source_id[:12]}...")
            if not run.dry_run:
                self.store.remove(source_id=mapping.source_id)

    # ==================== Both sides present ====================

    def _converge(self, run: _Run, mapping: TaskMapping, source_task: Task, destination_task: Task) -> None:
        run.processed.add(mapping.source_id)
        run.claimed.add(mapping.destination_id)

        destination_hash = generate_hash(destination_task)
        source_changed = mapping.source_changed(generate_hash(source_task))
        destination_changed = mapping.destination_changed(destination_hash)
        completion_differs = source_task.completed != destination_task.completed

        if not (source_changed or destination_changed or completion_differs):
            return

        if completion_differs:
            self.logger.debug(
                f"Completion differs for '{source_task.title[:40]}': "
                f"source={source_task.completed}, destination={destination_task.completed}"
            )

        merged = source_task
        changes = MetadataChanges()
        if source_changed and destination_changed:
            # The source ID is unchanged, so the vault side can only have changed completion
            self.logger.warning(
                f"Conflict on '{source_task.title[:40]}': both sides changed, keeping vault completion"
            )
            run.result.conflict(source_task, destination_task)
            merged, changes = self._merge_destination_changes(
                run.config, source_task, destination_task, completion=False
            )
        elif destination_changed:
            merged, changes = self._merge_destination_changes(run.config, source_task, destination_task)
        elif not source_changed:
            # No drift: the source was mirrored last run, so the mismatch came from the destination
            merged, changes = self._merge_destination_changes(
                run.config, source_task, destination_task, metadata=False
            )

        written, ok = self._write_back(run, source_task, merged, changes)
        if not ok:
            if written is not source_task and not run.dry_run:
                # Partial writeback; keep the old destination hash so the rest is retried
                self._refresh_mapping(mapping, written, mapping.destination_id, mapping.last_destination_hash)
            return

        view = self._destination_view(run.config, merged)
        new_destination_hash = destination_hash
        if generate_hash(view) != destination_hash:
            if not run.dry_run:
                try:
                    self._push(mapping.destination_id, view, destination_task)
                except DestinationError as e:
                    self.logger.error(f"Failed to update '{source_task.title[:40]}': {e}")
                    run.result.error(source_task, e)
                    if written is not source_task:
                        self._refresh_mapping(mapping, written, mapping.destination_id, mapping.last_destination_hash)
                    return
            new_destination_hash = generate_hash(view)
            run.result.record(SyncAction.UPDATED, source_task)

        if not run.dry_run:
            self._refresh_mapping(mapping, written, mapping.destination_id, new_destination_hash)

    def _merge_destination_changes(
        self,
        config: SyncConfig,
        source_task: Task,
        destination_task: Task,
        completion: bool = True,
        metadata: bool = True
    ) -> Tuple[Task, MetadataChanges]:
        """
        Take what changed on the destination side

        Completion follows the destination unless `completion` is off. Due
        date, start date and priority follow it only when `metadata` is on
        and their writeback toggle is on; otherwise the vault value is pushed
        back over the destination.
        """
        merged = replace(source_task, tags=list(source_task.tags))

        if completion and source_task.completed != destination_task.completed:
            merged.completed = destination_task.completed
            if destination_task.completed:
                merged.completed_date = destination_task.completed_date or self.clock().date()
            else:
                merged.completed_date = None

        due = FieldChange.unchanged()
        start = FieldChange.unchanged()
        priority = FieldChange.unchanged()

        if not metadata:
            return merged, MetadataChanges(due_date=due, start_date=start, priority=priority)

        if config.due_date_writeback and destination_task.due_date != source_task.due_date:
            merged.due_date = destination_task.due_date
            due = FieldChange.between(source_task.due_date, destination_task.due_date)
        if config.start_date_writeback and destination_task.start_date != source_task.start_date:
            merged.start_date = destination_task.start_date
            start = FieldChange.between(source_task.start_date, destination_task.start_date)
        if config.priority_writeback and destination_task.priority != source_task.priority:
            merged.priority = destination_task.priority
            priority = FieldChange.between(source_task.priority, destination_task.priority)

        return merged, MetadataChanges(due_date=due, start_date=start, priority=priority)

    def _write_back(self, run: _Run, source_task: Task, merged: Task, changes: MetadataChanges) -> Tuple[Task, bool]:
        """
        Apply metadata and completion writeback to the vault

        Returns:
            (task as the vault now holds it, success flag). On failure the
            task reflects whatever was written before the error.
        """
        config = run.config
        wants_completion = config.completion_writeback and merged.completed != source_task.completed
        if not (changes.has_changes or wants_completion):
            return source_task, True

        written = source_task
        try:
            if source_task.source is None:
                raise MissingSourceInfoError(source_task.title)

            if self.source.has_changed_since(source_task, run.scan_started):
                raise FileModifiedDuringSyncError(source_task.source.file_path)

            current = self._shifted(run, source_task)

            if changes.has_changes:
                if not run.dry_run:
                    outcome = self.source.update_metadata(current, changes)
                    current = replace(current, source=outcome.source)
                written = replace(
                    written,
                    due_date=merged.due_date,
                    start_date=merged.start_date,
                    priority=merged.priority,
                    source=current.source,
                )
                self.logger.info(f"✅ Metadata written back: '{source_task.title[:40]}'")
                run.result.record(SyncAction.METADATA_WRITEBACK, source_task)

            if wants_completion:
                if not run.dry_run:
                    if merged.completed:
                        outcome = self.source.mark_complete(current, merged.completed_date)
                        if outcome.inserted:
                            run.shifts.setdefault(source_task.source.file_path, []).append(
                                (source_task.source.line_number, outcome.inserted)
                            )
                    else:
                        outcome = self.source.mark_incomplete(current)
                    current = replace(current, source=outcome.source)
                written = replace(
                    written,
                    completed=merged.completed,
                    completed_date=merged.completed_date,
                    source=current.source,
                )
                state = "complete" if merged.completed else "incomplete"
                self.logger.info(f"✅ Marked {state} in vault: '{source_task.title[:40]}'")
                run.result.record(SyncAction.COMPLETION_WRITEBACK, source_task)

        except (SourceError, OSError) as e:
            self.logger.error(f"Writeback failed for '{source_task.title[:40]}': {e}")
            run.result.error(source_task, e)
            return written, False

        return written, True

    def _shifted(self, run: _Run, task: Task) -> Task:
        """Adjust a scanned line number for lines inserted earlier in this run"""
        shifts = run.shifts.get(task.source.file_path)
        if not shifts:
            return task
        line = task.source.line_number
        offset = sum(count for inserted_at, count in shifts if line > inserted_at)
        if not offset:
            return task
        return replace(task, source=replace(task.source, line_number=line + offset))

    # ==================== Source present, destination gone ====================

    def _restore_destination(self, run: _Run, mapping: TaskMapping, source_task: Task) -> None:
        run.processed.add(mapping.source_id)

        candidate = self._find_destination_by_title(run, source_task)
        if candidate is not None:
            self._relink(run, mapping.source_id, source_task, candidate)
        else:
            self._create(run, mapping.source_id, source_task)

    # ==================== Source gone, destination present ====================

    def _relink_or_delete(self, run: _Run, mapping: TaskMapping, destination_task: Task) -> None:
        destination_id = mapping.destination_id

        if destination_id in run.claimed:
            self.logger.debug(f"Destination {destination_id} already relinked, dropping stale mapping")
            if not run.dry_run:
                self.store.remove(source_id=mapping.source_id)
            return

        candidate_id = self._best_source_candidate(run, destination_task)
        if candidate_id is not None:
            if not run.dry_run:
                self.store.remove(source_id=mapping.source_id)
            self._relink(run, candidate_id, run.source_map[candidate_id], destination_task)
            return

        run.claimed.add(destination_id)
        if not run.dry_run:
            try:
                self.destination.delete(destination_id)
            except DestinationError as e:
                self.logger.error(f"Failed to delete '{destination_task.title[:40]}': {e}")
                run.result.error(destination_task, e)
                return
            self.store.remove(source_id=mapping.source_id)

        self.logger.info(f"🗑️  Deleted from destination: '{destination_task.title[:40]}'")
        run.result.record(SyncAction.DELETED, destination_task)

    def _best_source_candidate(self, run: _Run, destination_task: Task) -> Optional[str]:
        """
        Find the unmatched source task that most likely is this destination record

        Title equality is required. Same list and a notes reference to the
        candidate's file raise the score.
        """
        best_id = None
        best_score = 0
        for source_id, task in run.source_map.items():
            if source_id in run.processed or source_id in run.mapped_source_ids:
                continue
            if task.title != destination_task.title:
                continue

            score = RELINK_TITLE_SCORE
            if run.config.list_for_tag(task.target_list) == destination_task.target_list:
                score += RELINK_SAME_LIST_SCORE
            if task.file_path and destination_task.notes and task.file_path in destination_task.notes:
                score += RELINK_PATH_IN_NOTES_SCORE

            if score > best_score:
                best_id, best_score = source_id, score

        return best_id

    # ==================== Unmapped source tasks ====================

    def _sync_unmapped_sources(self, run: _Run) -> None:
        for source_id, task in run.source_map.items():
            if source_id in run.processed:
                continue

            if task.completed and not run.config.sync_completed_tasks:
                run.result.record(SyncAction.SKIPPED, task, "Completed task skipped")
                continue

            run.processed.add(source_id)
            candidate = self._find_destination_by_title(run, task)
            if candidate is not None:
                self._relink(run, source_id, task, candidate)
            else:
                self._create(run, source_id, task)

    def _find_destination_by_title(self, run: _Run, task: Task) -> Optional[Task]:
        """Unmatched destination record with the same title, same list first"""
        wanted_list = run.config.list_for_tag(task.target_list)
        fallback = None
        for destination_id, candidate in run.destination_map.items():
            if destination_id in run.claimed or destination_id in run.mapped_destination_ids:
                continue
            if candidate.title != task.title:
                continue
            if candidate.target_list == wanted_list:
                return candidate
            if fallback is None:
                fallback = candidate
        return fallback

    # ==================== Destination-only tasks ====================

    def _write_back_new_tasks(self, run: _Run) -> None:
        for destination_id, destination_task in run.destination_map.items():
            if destination_id in run.claimed or destination_id in run.mapped_destination_ids:
                continue
            if destination_task.completed:
                continue

            run.claimed.add(destination_id)
            incoming = self._source_view(run.config, destination_task)

            if run.dry_run:
                run.result.record(SyncAction.NEW_TASK_WRITEBACK, incoming)
                continue

            try:
                written = self.source.append_new(incoming)
            except (SourceError, OSError) as e:
                self.logger.error(f"Failed to add '{destination_task.title[:40]}' to vault: {e}")
                run.result.error(destination_task, e)
                continue

            self.store.upsert(
                self.source.generate_id(written),
                destination_id,
                generate_hash(written),
                generate_hash(destination_task),
                when=self.clock(),
            )
            self.logger.info(f"📥 Added to vault inbox: '{written.title[:40]}'")
            run.result.record(SyncAction.NEW_TASK_WRITEBACK, written)

    # ==================== Destination operations ====================

    def _create(self, run: _Run, source_id: str, task: Task) -> None:
        view = self._destination_view(run.config, task)

        if not run.dry_run:
            try:
                destination_id = self.destination.create(view, view.target_list)
            except DestinationError as e:
                self.logger.error(f"Failed to create '{task.title[:40]}': {e}")
                run.result.error(task, e)
                return
            run.claimed.add(destination_id)
            self.store.upsert(source_id, destination_id, generate_hash(task), generate_hash(view), when=self.clock())

        self.logger.info(f"➕ Created: '{task.title[:40]}' → {view.target_list}")
        run.result.record(SyncAction.CREATED, task)

    def _relink(self, run: _Run, source_id: str, source_task: Task, destination_task: Task) -> None:
        """Reconnect a source task to an existing destination record (source wins)"""
        destination_id = destination_task.destination_id
        run.processed.add(source_id)
        run.claimed.add(destination_id)
        run.result.relinked()
        self.logger.info(f"🔗 Relinked '{source_task.title[:40]}' to destination {destination_id}")

        view = self._destination_view(run.config, source_task)
        destination_hash = generate_hash(destination_task)
        if generate_hash(view) != destination_hash:
            if not run.dry_run:
                try:
                    self._push(destination_id, view, destination_task)
                except DestinationError as e:
                    self.logger.error(f"Failed to update '{source_task.title[:40]}': {e}")
                    run.result.error(source_task, e)
                    return
            destination_hash = generate_hash(view)
            run.result.record(SyncAction.UPDATED, source_task)

        if not run.dry_run:
            self.store.upsert(source_id, destination_id, generate_hash(source_task), destination_hash, when=self.clock())

    def _push(self, destination_id: str, view: Task, destination_task: Task) -> None:
        self.destination.update(destination_id, view)
        if view.target_list != destination_task.target_list:
            self.destination.move(destination_id, view.target_list)

    def _refresh_mapping(self, mapping: TaskMapping, written: Task, destination_id: str, destination_hash: str) -> None:
        """Store fresh hashes, re-keying the mapping if writeback changed the source ID"""
        new_source_id = self.source.generate_id(written)
        if new_source_id != mapping.source_id:
            self.store.remove(source_id=mapping.source_id)
        self.store.upsert(new_source_id, destination_id, generate_hash(written), destination_hash, when=self.clock())

    # ==================== Views ====================

    def _destination_view(self, config: SyncConfig, task: Task) -> Task:
        """The task as the destination should hold it"""
        notes = [task.notes] if task.notes else []
        if task.file_path:
            notes.append(f"Source: {task.file_path}")
        return replace(
            task,
            tags=list(task.tags),
            target_list=config.list_for_tag(task.target_list),
            notes="\n".join(notes) or None,
        )

    def _source_view(self, config: SyncConfig, task: Task) -> Task:
        """A destination-only task as it should be written into the vault"""
        tags = list(task.tags)
        tag = config.tag_for_list(task.target_list)
        if tag and f"#{tag}".lower() not in (t.lower() for t in tags):
            tags.insert(0, f"#{tag}")
        return replace(task, tags=tags, target_list=tag, source=None)
