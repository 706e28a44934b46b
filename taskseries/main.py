from fastapi import FastAPI, HTTPException, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, Optional
import logging
import sys

from . import config
from .db import init_db
from .interpreter import interpret
from .occurrence import upcoming_occurrences
from .recurrence import InvalidRuleError, describe_rule, rule_from_dict, rule_to_dict, rule_to_rrule_string
from .series import SeriesAdvancer, load_series
from .store import PersistenceError, SqlTaskStore, TaskNotFoundError, TaskSnapshot, TaskStore
from .utils import normalize_tags, today_in_timezone

logger = logging.getLogger(__name__)
# Ensure INFO-level messages from this package appear on the server console
# when no handlers are configured (safe fallback for development/testing).
_pkg_logger = logging.getLogger('taskseries')
if not _pkg_logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter('%(asctime)s %(levelname)s:%(name)s: %(message)s')
    handler.setFormatter(formatter)
    _pkg_logger.addHandler(handler)
_pkg_logger.setLevel(getattr(logging, config.LOG_LEVEL, logging.INFO))


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    logger.info('task series service started (timezone=%s)', config.DEFAULT_TIMEZONE)
    yield


app = FastAPI(lifespan=lifespan)


def get_store() -> TaskStore:
    return SqlTaskStore()


def _reference_date(today: Optional[date], tz_name: Optional[str]) -> date:
    return today or today_in_timezone(tz_name or config.DEFAULT_TIMEZONE)


def _rule_or_422(data: Optional[dict]):
    if data is None:
        return None
    try:
        return rule_from_dict(data)
    except InvalidRuleError as e:
        raise HTTPException(status_code=422, detail=f'invalid recurrence: {e}')


def _serialize_rule(rule) -> Optional[dict]:
    if rule is None:
        return None
    return {
        **rule_to_dict(rule),
        'description': describe_rule(rule),
        'rrule': rule_to_rrule_string(rule),
    }


def _serialize_task(task: TaskSnapshot) -> dict[str, Any]:
    return {
        'id': task.id,
        'title': task.title,
        'description': task.description,
        'effort': task.effort,
        'importance': task.importance,
        'project_id': task.project_id,
        'status': task.status,
        'progress': task.progress,
        'due_date': task.due_date.isoformat() if task.due_date else None,
        'completed_at': task.completed_at.isoformat() if task.completed_at else None,
        'is_recurring': task.is_recurring,
        'recurrence': _serialize_rule(task.recurrence),
        'parent_task_id': task.parent_task_id,
        'recurrence_index': task.recurrence_index,
        'series_root_id': task.series_root_id,
        'tags': list(task.tags),
        'assignee_ids': list(task.assignee_ids),
    }


class InterpretRequest(BaseModel):
    text: str
    today: Optional[date] = None
    timezone: Optional[str] = None


@app.post('/interpret')
async def interpret_text(req: InterpretRequest):
    """Preview how free text would be read as a due date and/or recurrence."""
    today = _reference_date(req.today, req.timezone)
    result = interpret(req.text, today)
    return {
        'matched': result.matched,
        'date': result.date.isoformat() if result.date else None,
        'recurrence': _serialize_rule(result.recurrence),
        'label': result.label,
    }


class TaskCreate(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    effort: Optional[int] = Field(default=None, ge=0)
    importance: Optional[int] = Field(default=None, ge=1, le=10)
    project_id: Optional[int] = None
    due_date: Optional[date] = None
    # free text such as 'every monday' or 'next friday'; fills due_date and
    # recurrence when those are not given explicitly
    when: Optional[str] = None
    recurrence: Optional[dict] = None
    tags: list[str] = []
    assignee_ids: list[int] = []
    today: Optional[date] = None
    timezone: Optional[str] = None


@app.post('/tasks')
async def create_task(req: TaskCreate, store: TaskStore = Depends(get_store)):
    """Create a task; a recurring one becomes the root of a new series."""
    rule = _rule_or_422(req.recurrence)
    due = req.due_date
    label = None
    if req.when:
        found = interpret(req.when, _reference_date(req.today, req.timezone))
        label = found.label or None
        if due is None:
            due = found.date
        if rule is None:
            rule = found.recurrence
    try:
        tags = normalize_tags(req.tags)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    fields = {
        'title': req.title,
        'description': req.description,
        'effort': req.effort,
        'importance': req.importance,
        'project_id': req.project_id,
        'due_date': due,
        'status': config.INITIAL_TASK_STATUS,
        'recurrence': rule,
        'is_recurring': rule is not None,
        'recurrence_index': 0,
        'tags': tags,
        'assignee_ids': req.assignee_ids,
    }
    try:
        task_id = await store.create_task_instance(fields)
        task = await store.get_task(task_id)
    except PersistenceError:
        logger.exception('failed to create task %r', req.title)
        raise HTTPException(status_code=500, detail='failed to create task')
    out = _serialize_task(task)
    out['label'] = label
    return out


@app.get('/tasks/{task_id}')
async def get_task(task_id: int, store: TaskStore = Depends(get_store)):
    task = await store.get_task(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail='task not found')
    return _serialize_task(task)


class CompleteRequest(BaseModel):
    completed_at: Optional[datetime] = None


@app.post('/tasks/{task_id}/complete')
async def complete_task(task_id: int, req: Optional[CompleteRequest] = None, store: TaskStore = Depends(get_store)):
    """Complete a task and, for a recurring one, create the next instance.

    A 502 response means the completion was stored but the next instance was
    not; the body carries the message to show the user.
    """
    advancer = SeriesAdvancer(store)
    try:
        result = await advancer.complete(task_id, req.completed_at if req else None)
    except TaskNotFoundError:
        raise HTTPException(status_code=404, detail='task not found')
    except PersistenceError:
        logger.exception('failed to complete task %s', task_id)
        raise HTTPException(status_code=500, detail='failed to complete task')
    if not result.ok:
        return JSONResponse(status_code=502, content=result.to_dict())
    return result.to_dict()


@app.get('/series/{root_id}')
async def get_series(root_id: int, store: TaskStore = Depends(get_store)):
    series = await load_series(store, root_id)
    if not series.instance_ids:
        raise HTTPException(status_code=404, detail='series not found')
    return {
        'root_id': series.root_id,
        'count': len(series),
        'instances': [
            {'id': m.id, 'recurrence_index': m.recurrence_index, 'parent_task_id': m.parent_task_id}
            for m in series.members
        ],
    }


class PreviewRequest(BaseModel):
    recurrence: dict
    from_date: date
    limit: int = Field(default=5, ge=1)


@app.post('/recurrence/preview')
async def preview_recurrence(req: PreviewRequest):
    rule = _rule_or_422(req.recurrence)
    limit = min(req.limit, config.MAX_PREVIEW_OCCURRENCES)
    dates = upcoming_occurrences(rule, req.from_date, limit)
    return {
        'recurrence': _serialize_rule(rule),
        'dates': [d.isoformat() for d in dates],
    }


def serve():
    import uvicorn
    uvicorn.run('taskseries.main:app', host=config.HOST, port=config.PORT)
