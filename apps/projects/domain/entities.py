# apps/projects/domain/entities.py
from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime
from typing import Optional

from apps.core.domain.records import (
    SyncState, is_temporary_id, isoformat, parse_date, parse_timestamp, required, text,
)

DEFAULT_COLOR = 'from-blue-500 to-cyan-500'
DONE_STATUS = 'done'


@dataclass(frozen=True)
class TaskSummary:
    total: int = 0
    completed: int = 0

    @classmethod
    def from_statuses(cls, statuses) -> 'TaskSummary':
        statuses = list(statuses)
        return cls(total=len(statuses), completed=sum(1 for s in statuses if s == DONE_STATUS))

    def shifted(self, total: int = 0, completed: int = 0) -> 'TaskSummary':
        """Przyrostowa zmiana liczników, nigdy poniżej zera."""
        new_total = max(0, self.total + total)
        new_completed = min(new_total, max(0, self.completed + completed))
        return TaskSummary(total=new_total, completed=new_completed)

    def to_dict(self) -> dict:
        return {'total': self.total, 'completed': self.completed}


@dataclass(frozen=True)
class ProjectEntity:
    id: str
    name: str
    description: str = ""
    color: str = DEFAULT_COLOR
    due_date: Optional[date] = None
    owner_id: Optional[str] = None

    # Pola wyliczane (nie są kolumnami w bazie)
    members: int = 1  # na razie zawsze tylko właściciel
    tasks: TaskSummary = field(default_factory=TaskSummary)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Stan po stronie klienta
    sync_state: SyncState = SyncState.SYNCED

    # Kolumny, które klient może wysłać do backendu
    WRITABLE = ('name', 'description', 'color', 'due_date', 'owner_id')

    @property
    def is_temporary(self) -> bool:
        return is_temporary_id(self.id)

    @classmethod
    def from_record(cls, row: dict, sync_state: SyncState = SyncState.SYNCED) -> 'ProjectEntity':
        """Wiersz z backendu (lub payload realtime) -> encja."""
        summary = row.get('tasks')
        if isinstance(summary, TaskSummary):
            tasks = summary
        elif isinstance(summary, list):
            # select('*, tasks(status)') -> lista statusów zadań
            tasks = TaskSummary.from_statuses(t.get('status') for t in summary if isinstance(t, dict))
        elif isinstance(summary, dict):
            tasks = TaskSummary(int(summary.get('total') or 0), int(summary.get('completed') or 0))
        else:
            tasks = TaskSummary()

        return cls(
            id=str(required(row, 'id', 'project')),
            name=text(required(row, 'name', 'project')),
            description=text(row.get('description')),
            color=text(row.get('color')) or DEFAULT_COLOR,
            due_date=parse_date(row.get('due_date')),
            owner_id=row.get('owner_id'),
            members=1,
            tasks=tasks,
            created_at=parse_timestamp(row.get('created_at')),
            updated_at=parse_timestamp(row.get('updated_at')),
            sync_state=sync_state,
        )

    @classmethod
    def fields_from_row(cls, row: dict) -> dict:
        """Tylko kolumny obecne w wierszu - do częściowego patchowania cache."""
        parsers = {
            'name': text,
            'description': text,
            'color': lambda v: text(v) or DEFAULT_COLOR,
            'due_date': parse_date,
            'owner_id': lambda v: v,
            'created_at': parse_timestamp,
            'updated_at': parse_timestamp,
        }
        return {key: parse(row[key]) for key, parse in parsers.items() if key in row}

    @classmethod
    def field_names(cls):
        return {f.name for f in fields(cls)}

    def merged(self, updates: dict) -> 'ProjectEntity':
        known = self.field_names() - {'id'}
        return replace(self, **{k: v for k, v in updates.items() if k in known})

    def to_row(self) -> dict:
        """Dane do insertu (bez id i znaczników czasu - nadaje je serwer)."""
        return {
            'name': self.name,
            'description': self.description,
            'color': self.color,
            'due_date': isoformat(self.due_date),
            'owner_id': self.owner_id,
        }

    def to_dict(self) -> dict:
        data = self.to_row()
        data.update({
            'id': self.id,
            'members': self.members,
            'tasks': self.tasks.to_dict(),
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        })
        return data
