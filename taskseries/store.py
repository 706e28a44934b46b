"""Persistence collaborator for the series advancer.

``TaskStore`` documents the small contract the advancer relies on;
``SqlTaskStore`` implements it on top of the SQLModel tables. Every
operation runs in its own session and commits before returning, so a task
marked complete is visible to the next read.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
import logging
from typing import Any, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import selectinload
from sqlmodel import select

from . import config
from .db import async_session
from .models import Tag, Task, TaskAssignee, TaskTag
from .recurrence import RecurrenceRule, rule_from_columns, rule_to_columns
from .utils import normalize_tags, now_utc

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """A read or write against the task store failed."""


class TaskNotFoundError(PersistenceError):
    def __init__(self, task_id):
        super().__init__(f'task {task_id} not found')
        self.task_id = task_id


class DuplicateIndexError(PersistenceError):
    """Another instance of the series already holds the requested index."""


@dataclass(frozen=True)
class SeriesMember:
    id: int
    recurrence_index: int
    parent_task_id: Optional[int]
    due_date: Optional[date] = None


@dataclass(frozen=True)
class TaskSnapshot:
    """Plain, session-independent copy of a task row."""
    id: int
    title: str
    description: Optional[str] = None
    effort: Optional[int] = None
    importance: Optional[int] = None
    project_id: Optional[int] = None
    status: str = 'todo'
    progress: int = 0
    due_date: Optional[date] = None
    completed_at: Optional[datetime] = None
    is_recurring: bool = False
    recurrence: Optional[RecurrenceRule] = None
    parent_task_id: Optional[int] = None
    recurrence_index: int = 0
    tags: tuple[str, ...] = ()
    assignee_ids: tuple[int, ...] = field(default_factory=tuple)

    @property
    def series_root_id(self) -> int:
        return self.parent_task_id if self.parent_task_id is not None else self.id


class TaskStore:
    """Operations the series advancer needs from persistence.

    Implementations raise PersistenceError (or a subclass) on failure.
    """

    async def get_task(self, task_id: int) -> Optional[TaskSnapshot]:
        raise NotImplementedError

    async def get_instances_by_series_root(self, root_id: int) -> list[SeriesMember]:
        """Return the root and every instance whose parent is root_id."""
        raise NotImplementedError

    async def create_task_instance(self, fields: dict[str, Any]) -> int:
        """Insert a task and return its id; DuplicateIndexError on an index clash."""
        raise NotImplementedError

    async def copy_assignees(self, source_task_id: int, dest_task_id: int) -> int:
        """Copy assignee rows between tasks and return how many were copied."""
        raise NotImplementedError

    async def mark_complete(self, task_id: int, completed_at: datetime) -> None:
        raise NotImplementedError


def _is_series_index_conflict(e: IntegrityError) -> bool:
    msg = str(getattr(e, 'orig', e))
    return 'uq_task_series_index' in msg or 'recurrence_index' in msg


class SqlTaskStore(TaskStore):
    def __init__(self, session_factory=None):
        self._session = session_factory or async_session

    async def get_task(self, task_id: int) -> Optional[TaskSnapshot]:
        try:
            async with self._session() as sess:
                q = select(Task).where(Task.id == task_id).options(selectinload(Task.tags))
                res = await sess.exec(q)
                task = res.first()
                if task is None:
                    return None
                ares = await sess.exec(
                    select(TaskAssignee.user_id).where(TaskAssignee.task_id == task_id).order_by(TaskAssignee.user_id)
                )
                assignee_ids = tuple(ares.all())
                return TaskSnapshot(
                    id=task.id,
                    title=task.title,
                    description=task.description,
                    effort=task.effort,
                    importance=task.importance,
                    project_id=task.project_id,
                    status=task.status,
                    progress=task.progress,
                    due_date=task.due_date,
                    completed_at=task.completed_at,
                    is_recurring=task.is_recurring,
                    recurrence=rule_from_columns(task),
                    parent_task_id=task.parent_task_id,
                    recurrence_index=task.recurrence_index,
                    tags=tuple(sorted(t.tag for t in task.tags)),
                    assignee_ids=assignee_ids,
                )
        except SQLAlchemyError as e:
            raise PersistenceError(f'failed to load task {task_id}: {e}') from e

    async def get_instances_by_series_root(self, root_id: int) -> list[SeriesMember]:
        try:
            async with self._session() as sess:
                q = (
                    select(Task.id, Task.recurrence_index, Task.parent_task_id, Task.due_date)
                    .where(or_(Task.id == root_id, Task.parent_task_id == root_id))
                    .order_by(Task.recurrence_index, Task.id)
                )
                res = await sess.exec(q)
                return [
                    SeriesMember(id=r[0], recurrence_index=r[1], parent_task_id=r[2], due_date=r[3])
                    for r in res.all()
                ]
        except SQLAlchemyError as e:
            raise PersistenceError(f'failed to load series {root_id}: {e}') from e

    async def _tags_in(self, sess, tags) -> list[Tag]:
        """Look up or add each tag inside sess; nothing is committed here."""
        rows: list[Tag] = []
        for t in tags:
            res = await sess.exec(select(Tag).where(Tag.tag == t))
            row = res.first()
            if row is None:
                row = Tag(tag=t)
                sess.add(row)
            rows.append(row)
        return rows

    async def _insert_task(self, data: dict[str, Any], tags: list[str], assignee_ids) -> int:
        # tags, task and link rows share one transaction so a failed insert
        # leaves no orphaned tags behind
        async with self._session() as sess:
            try:
                tag_rows = await self._tags_in(sess, tags)
                task = Task(**data)
                sess.add(task)
                await sess.flush()
                for tag in tag_rows:
                    sess.add(TaskTag(task_id=task.id, tag_id=tag.id))
                for uid in dict.fromkeys(assignee_ids):
                    sess.add(TaskAssignee(task_id=task.id, user_id=uid))
                await sess.commit()
            except IntegrityError:
                await sess.rollback()
                raise
            logger.debug('created task %s (parent=%s index=%s)', task.id, task.parent_task_id, task.recurrence_index)
            return task.id

    async def create_task_instance(self, fields: dict[str, Any]) -> int:
        data = dict(fields)
        tags = normalize_tags(data.pop('tags', None) or ())
        assignee_ids = data.pop('assignee_ids', None) or ()
        rule = data.pop('recurrence', None)
        data.update(rule_to_columns(rule))
        data.setdefault('is_recurring', rule is not None)
        try:
            try:
                return await self._insert_task(data, tags, assignee_ids)
            except IntegrityError as e:
                if _is_series_index_conflict(e) or not tags:
                    raise
                # a tag was created concurrently; it is visible now
                logger.debug('tag insert collided for %r; retrying', tags)
            return await self._insert_task(data, tags, assignee_ids)
        except IntegrityError as e:
            if _is_series_index_conflict(e):
                raise DuplicateIndexError(
                    f"series {data.get('parent_task_id')} already has index {data.get('recurrence_index')}"
                ) from e
            raise PersistenceError(f'failed to create task: {e}') from e
        except SQLAlchemyError as e:
            raise PersistenceError(f'failed to create task: {e}') from e

    async def copy_assignees(self, source_task_id: int, dest_task_id: int) -> int:
        try:
            async with self._session() as sess:
                res = await sess.exec(select(TaskAssignee.user_id).where(TaskAssignee.task_id == source_task_id))
                user_ids = list(res.all())
                for uid in user_ids:
                    sess.add(TaskAssignee(task_id=dest_task_id, user_id=uid))
                await sess.commit()
                return len(user_ids)
        except SQLAlchemyError as e:
            raise PersistenceError(f'failed to copy assignees {source_task_id} -> {dest_task_id}: {e}') from e

    async def mark_complete(self, task_id: int, completed_at: datetime) -> None:
        try:
            async with self._session() as sess:
                task = await sess.get(Task, task_id)
                if task is None:
                    raise TaskNotFoundError(task_id)
                task.status = config.COMPLETED_TASK_STATUS
                task.completed_at = completed_at
                task.modified_at = now_utc()
                sess.add(task)
                await sess.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f'failed to mark task {task_id} complete: {e}') from e
