from typing import List, Optional
from datetime import date, datetime
from .utils import now_utc
from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import UniqueConstraint


class TaskTag(SQLModel, table=True):
    task_id: Optional[int] = Field(default=None, foreign_key="task.id", primary_key=True)
    tag_id: Optional[int] = Field(default=None, foreign_key="tag.id", primary_key=True)


class TaskAssignee(SQLModel, table=True):
    """Assignee membership of a task. Users live in an external directory, so
    user_id is not a foreign key here."""
    task_id: Optional[int] = Field(default=None, foreign_key="task.id", primary_key=True)
    user_id: Optional[int] = Field(default=None, primary_key=True)
    assigned_at: datetime | None = Field(default_factory=now_utc)


class Tag(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tag: str = Field(sa_column_kwargs={"unique": True, "index": True})
    tasks: List["Task"] = Relationship(back_populates="tags", link_model=TaskTag)


class Task(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: Optional[str] = None
    # Estimated effort in minutes
    effort: Optional[int] = None
    # Optional per-task importance: 1 (lowest) .. 10 (highest). Null means unset.
    importance: Optional[int] = Field(default=None, index=True)
    # Projects are owned by an external collaborator; only the id is kept.
    project_id: Optional[int] = Field(default=None, index=True)
    status: str = Field(default="todo", index=True)
    progress: int = Field(default=0)
    due_date: Optional[date] = Field(default=None, index=True)
    completed_at: Optional[datetime] = None
    created_at: datetime | None = Field(default_factory=now_utc)
    modified_at: datetime | None = Field(default_factory=now_utc)

    # Recurrence columns; see recurrence.rule_to_columns / rule_from_columns
    is_recurring: bool = Field(default=False)
    recurrence_frequency: Optional[str] = None
    recurrence_interval: Optional[int] = None
    recurrence_end_date: Optional[date] = None
    recurrence_days_of_week: Optional[str] = None  # JSON-encoded list of 0..6
    recurrence_day_of_month: Optional[int] = None

    # Series linkage. The root instance has no parent and index 0; every
    # generated instance points at the root and carries a larger index.
    parent_task_id: Optional[int] = Field(default=None, foreign_key="task.id", index=True)
    recurrence_index: int = Field(default=0)

    tags: List[Tag] = Relationship(back_populates="tasks", link_model=TaskTag)

    __table_args__ = (
        UniqueConstraint('parent_task_id', 'recurrence_index', name='uq_task_series_index'),
    )
