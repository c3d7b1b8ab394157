# apps/tasks/domain/entities.py
from dataclasses import dataclass, fields, replace
from datetime import date, datetime
from enum import Enum
from typing import Optional, Tuple

from apps.core.domain.records import (
    SyncState, coerce_enum, is_temporary_id, isoformat, parse_date, parse_timestamp, required, text,
)


class TaskStatus(str, Enum):
    TODO = 'todo'
    IN_PROGRESS = 'in-progress'
    DONE = 'done'


class TaskPriority(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'


def normalize_tag(tag) -> str:
    return str(tag or '').strip()


def unique_tags(tags) -> Tuple[str, ...]:
    """Uporządkowany zbiór tagów: kolejność pierwszego wystąpienia, bez pustych."""
    seen = []
    for tag in tags or ():
        tag = normalize_tag(tag.get('tag') if isinstance(tag, dict) else tag)
        if tag and tag not in seen:
            seen.append(tag)
    return tuple(seen)


@dataclass(frozen=True)
class Assignee:
    id: str
    name: str
    avatar: Optional[str] = None

    @classmethod
    def from_record(cls, row) -> Optional['Assignee']:
        if not row:
            return None
        if isinstance(row, Assignee):
            return row
        return cls(
            id=str(required(row, 'id', 'assignee')),
            name=text(row.get('name')),
            avatar=row.get('avatar') or row.get('avatar_url'),
        )

    def to_dict(self) -> dict:
        return {'id': self.id, 'name': self.name, 'avatar': self.avatar}


def _comment_count(value) -> int:
    # comments(count) przychodzi jako [{"count": N}]
    if isinstance(value, list):
        return int(value[0].get('count') or 0) if value and isinstance(value[0], dict) else 0
    if isinstance(value, int):
        return value
    return 0


@dataclass(frozen=True)
class TaskEntity:
    id: str
    title: str
    project_id: str
    description: str = ""
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM

    # Osoby
    assignee_id: Optional[str] = None
    assignee: Optional[Assignee] = None  # zdenormalizowane z profiles
    created_by: Optional[str] = None

    # Pod-encje
    tags: Tuple[str, ...] = ()
    comment_count: int = 0

    # Czas
    due_date: Optional[date] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    sync_state: SyncState = SyncState.SYNCED

    WRITABLE = ('title', 'description', 'status', 'priority', 'project_id',
                'assignee_id', 'created_by', 'due_date', 'completed_at')

    @property
    def is_temporary(self) -> bool:
        return is_temporary_id(self.id)

    @property
    def is_done(self) -> bool:
        return self.status == TaskStatus.DONE

    def has_tag(self, tag: str) -> bool:
        return normalize_tag(tag) in self.tags

    @classmethod
    def from_record(cls, row: dict, sync_state: SyncState = SyncState.SYNCED) -> 'TaskEntity':
        tags = row.get('tags')
        if tags is None:
            tags = row.get('task_tags')
        comments = row.get('comment_count', row.get('comments'))

        return cls(
            id=str(required(row, 'id', 'task')),
            title=text(required(row, 'title', 'task')),
            project_id=str(required(row, 'project_id', 'task')),
            description=text(row.get('description')),
            status=coerce_enum(TaskStatus, row.get('status'), 'status', TaskStatus.TODO),
            priority=coerce_enum(TaskPriority, row.get('priority'), 'priority', TaskPriority.MEDIUM),
            assignee_id=row.get('assignee_id'),
            assignee=Assignee.from_record(row.get('assignee')),
            created_by=row.get('created_by'),
            tags=unique_tags(tags),
            comment_count=_comment_count(comments),
            due_date=parse_date(row.get('due_date')),
            completed_at=parse_timestamp(row.get('completed_at')),
            created_at=parse_timestamp(row.get('created_at')),
            updated_at=parse_timestamp(row.get('updated_at')),
            sync_state=sync_state,
        )

    @classmethod
    def fields_from_row(cls, row: dict) -> dict:
        """Kolumny obecne w wierszu. Pola zdenormalizowane (tagi, assignee,
        komentarze) nie przychodzą w zdarzeniach realtime - zostają bez zmian."""
        parsers = {
            'title': text,
            'description': text,
            'status': lambda v: coerce_enum(TaskStatus, v, 'status', TaskStatus.TODO),
            'priority': lambda v: coerce_enum(TaskPriority, v, 'priority', TaskPriority.MEDIUM),
            'project_id': lambda v: str(v) if v is not None else None,
            'assignee_id': lambda v: v,
            'created_by': lambda v: v,
            'due_date': parse_date,
            'completed_at': parse_timestamp,
            'created_at': parse_timestamp,
            'updated_at': parse_timestamp,
        }
        parsed = {key: parse(row[key]) for key, parse in parsers.items() if key in row}
        if parsed.get('project_id') is None:
            parsed.pop('project_id', None)
        return parsed

    @classmethod
    def field_names(cls):
        return {f.name for f in fields(cls)}

    def merged(self, updates: dict) -> 'TaskEntity':
        known = self.field_names() - {'id'}
        clean = {k: v for k, v in updates.items() if k in known}
        if 'tags' in clean:
            clean['tags'] = unique_tags(clean['tags'])
        if 'status' in clean:
            clean['status'] = coerce_enum(TaskStatus, clean['status'], 'status')
        if 'priority' in clean:
            clean['priority'] = coerce_enum(TaskPriority, clean['priority'], 'priority')
        return replace(self, **clean)

    def to_row(self) -> dict:
        return {
            'title': self.title,
            'description': self.description,
            'status': self.status.value,
            'priority': self.priority.value,
            'project_id': self.project_id,
            'assignee_id': self.assignee_id,
            'created_by': self.created_by,
            'due_date': isoformat(self.due_date),
        }

    def to_dict(self) -> dict:
        data = self.to_row()
        data.update({
            'id': self.id,
            'assignee': self.assignee.to_dict() if self.assignee else None,
            'tags': list(self.tags),
            'comments': self.comment_count,
            'completed_at': isoformat(self.completed_at),
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        })
        return data


@dataclass(frozen=True)
class CommentEntity:
    """Komentarz - lista tylko do dopisywania (last-writer-wins)."""
    id: str
    task_id: str
    content: str
    author: str = ""
    user_id: Optional[str] = None
    timestamp: Optional[datetime] = None
    sync_state: SyncState = SyncState.SYNCED

    @property
    def is_temporary(self) -> bool:
        return is_temporary_id(self.id)

    @classmethod
    def from_record(cls, row: dict, sync_state: SyncState = SyncState.SYNCED) -> 'CommentEntity':
        profile = row.get('profiles') or {}
        return cls(
            id=str(required(row, 'id', 'comment')),
            task_id=str(required(row, 'task_id', 'comment')),
            content=text(required(row, 'content', 'comment')),
            author=text(profile.get('name') if isinstance(profile, dict) else None) or text(row.get('user_id')),
            user_id=row.get('user_id'),
            timestamp=parse_timestamp(row.get('created_at')),
            sync_state=sync_state,
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'task_id': self.task_id,
            'content': self.content,
            'author': self.author,
            'user_id': self.user_id,
            'timestamp': isoformat(self.timestamp),
        }
