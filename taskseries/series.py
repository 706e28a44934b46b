"""Advance a recurring task series when one of its instances is completed.

Completing an instance is committed first and is never rolled back. After
that the next occurrence is computed from the instance's due date and, when
the series has not ended, a successor is created under the same root with
the next free ``recurrence_index``. Failures after the completion are
reported on the returned :class:`AdvanceResult` rather than raised, so the
caller can tell the user that a recurring task finished without producing
its successor. Completing an already completed instance again returns the
successor created the first time, or creates it if that attempt failed.
"""
from dataclasses import dataclass
from datetime import date, datetime
import logging
from typing import Any, Optional

from . import config
from .occurrence import next_occurrence
from .store import DuplicateIndexError, PersistenceError, SeriesMember, TaskNotFoundError, TaskSnapshot, TaskStore
from .utils import now_utc

logger = logging.getLogger(__name__)


@dataclass
class AdvanceResult:
    completed_task_id: int
    series_root_id: Optional[int] = None
    next_task_id: Optional[int] = None
    next_due_date: Optional[date] = None
    recurrence_index: Optional[int] = None
    series_ended: bool = False
    # the instance had been completed before and its successor already existed
    already_advanced: bool = False
    # successor exists but its assignees could not be copied
    assignee_copy_failed: bool = False
    # set when the successor could not be created at all
    error: Optional[str] = None
    warning: Optional[str] = None

    @property
    def next_task(self) -> Optional[dict[str, Any]]:
        if self.next_task_id is None:
            return None
        return {
            'id': self.next_task_id,
            'due_date': self.next_due_date,
            'recurrence_index': self.recurrence_index,
            'parent_task_id': self.series_root_id,
        }

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        nt = self.next_task
        if nt is not None and nt['due_date'] is not None:
            nt = dict(nt, due_date=nt['due_date'].isoformat())
        return {
            'completed_task_id': self.completed_task_id,
            'series_root_id': self.series_root_id,
            'next_task': nt,
            'series_ended': self.series_ended,
            'already_advanced': self.already_advanced,
            'assignee_copy_failed': self.assignee_copy_failed,
            'error': self.error,
            'warning': self.warning,
        }


@dataclass(frozen=True)
class Series:
    """A series root and its members ordered by recurrence_index."""
    root_id: int
    members: tuple[SeriesMember, ...]

    @property
    def instance_ids(self) -> tuple[int, ...]:
        return tuple(m.id for m in self.members)

    @property
    def last_index(self) -> int:
        return max((m.recurrence_index for m in self.members), default=0)

    def successor(self, after_index: int, due: date) -> Optional[SeriesMember]:
        """Return the first member after after_index that is due on due."""
        return next((m for m in self.members if m.recurrence_index > after_index and m.due_date == due), None)

    def __len__(self) -> int:
        return len(self.members)


async def load_series(store: TaskStore, root_id: int) -> Series:
    members = await store.get_instances_by_series_root(root_id)
    return Series(root_id=root_id, members=tuple(members))


class SeriesAdvancer:
    def __init__(self, store: TaskStore, initial_status: Optional[str] = None):
        self.store = store
        self.initial_status = initial_status or config.INITIAL_TASK_STATUS

    async def complete(self, task_id: int, completed_at: Optional[datetime] = None) -> AdvanceResult:
        """Mark task_id complete and create its successor when it is recurring.

        Raises TaskNotFoundError for an unknown task and PersistenceError when
        the completion itself cannot be stored. Everything after that is
        reported on the result.
        """
        task = await self.store.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        await self.store.mark_complete(task_id, completed_at or now_utc())
        return await self.advance(task)

    async def advance(self, task: TaskSnapshot) -> AdvanceResult:
        """Create the successor of an already-completed instance."""
        result = AdvanceResult(completed_task_id=task.id)
        if not task.is_recurring or task.recurrence is None or task.due_date is None:
            return result

        next_date = next_occurrence(task.recurrence, task.due_date)
        root_id = task.series_root_id
        result.series_root_id = root_id
        if next_date is None:
            logger.info('series %s ended after task %s (due %s)', root_id, task.id, task.due_date)
            result.series_ended = True
            return result

        try:
            series = await load_series(self.store, root_id)
            if task.completed_at is not None or task.status == config.COMPLETED_TASK_STATUS:
                # completing again (e.g. a retried request) must not fork the series
                existing = series.successor(task.recurrence_index, next_date)
                if existing is not None:
                    logger.info('task %s was already advanced to %s; not creating another', task.id, existing.id)
                    result.next_task_id = existing.id
                    result.next_due_date = existing.due_date
                    result.recurrence_index = existing.recurrence_index
                    result.already_advanced = True
                    return result
            new_id, index = await self._create_successor(task, root_id, next_date, series.last_index + 1)
        except PersistenceError as e:
            logger.exception('task %s completed but its successor could not be created', task.id)
            result.error = f'recurring task {task.id} completed without creating its next instance: {e}'
            return result
        result.next_task_id = new_id
        result.next_due_date = next_date
        result.recurrence_index = index
        logger.info('series %s advanced: task %s -> %s due %s (index %s)', root_id, task.id, new_id, next_date, index)

        try:
            await self.store.copy_assignees(task.id, new_id)
        except PersistenceError as e:
            logger.exception('assignees of task %s were not copied to successor %s', task.id, new_id)
            result.assignee_copy_failed = True
            result.warning = f'next instance {new_id} was created without its assignees: {e}'
        return result

    async def _next_index(self, root_id: int) -> int:
        series = await load_series(self.store, root_id)
        return series.last_index + 1

    def _successor_fields(self, task: TaskSnapshot, root_id: int, index: int, due: date) -> dict[str, Any]:
        return {
            'title': task.title,
            'description': task.description,
            'effort': task.effort,
            'importance': task.importance,
            'project_id': task.project_id,
            'tags': list(task.tags),
            'is_recurring': True,
            'recurrence': task.recurrence,
            'due_date': due,
            'status': self.initial_status,
            'progress': 0,
            'parent_task_id': root_id,
            'recurrence_index': index,
        }

    async def _create_successor(self, task: TaskSnapshot, root_id: int, due: date, index: int) -> tuple[int, int]:
        # a sibling completed concurrently may take the index we computed;
        # re-read the series once and retry before giving up
        try:
            return await self.store.create_task_instance(self._successor_fields(task, root_id, index, due)), index
        except DuplicateIndexError:
            logger.warning('index %s already taken in series %s; retrying', index, root_id)
        index = await self._next_index(root_id)
        return await self.store.create_task_instance(self._successor_fields(task, root_id, index, due)), index


async def complete_task(store: TaskStore, task_id: int, completed_at: Optional[datetime] = None) -> AdvanceResult:
    return await SeriesAdvancer(store).complete(task_id, completed_at)
