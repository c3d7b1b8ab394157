# apps/board/adapters/memory_remote.py
"""Backend w pamięci - do testów i pracy lokalnej bez Supabase.

Zachowuje się jak prawdziwy: nadaje id, zwraca świeże wiersze i (jeśli podpięty
jest ``InMemoryChangeFeed``) rozgłasza zdarzenia realtime o własnych zapisach.
"""
import asyncio
import itertools
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from django.utils import timezone

from apps.board.ports.changes import ChangeCallback, ChannelSpec, IChangeFeed, StatusCallback
from apps.board.ports.remote import IRemoteDataClient
from apps.core.errors import RemoteError
from apps.projects.domain.entities import ProjectEntity
from apps.tasks.domain.entities import CommentEntity, TaskEntity


@dataclass
class MemoryChannel:
    spec: ChannelSpec
    on_change: ChangeCallback
    on_status: StatusCallback

    def matches(self, row: dict) -> bool:
        if not self.spec.filter:
            return True
        # Obsługujemy tylko filtry postaci "kolumna=eq.wartość"
        column, _, condition = self.spec.filter.partition('=')
        _, _, value = condition.partition('eq.')
        return str(row.get(column)) == value


class InMemoryChangeFeed(IChangeFeed):
    def __init__(self):
        self.channels: Dict[str, MemoryChannel] = {}
        self.subscribed: List[str] = []
        self.fail_subscriptions = 0

    async def subscribe(self, spec: ChannelSpec, on_change: ChangeCallback,
                        on_status: StatusCallback) -> Any:
        self.subscribed.append(spec.name)
        if self.fail_subscriptions:
            self.fail_subscriptions -= 1
            raise RemoteError('Realtime unavailable')
        channel = MemoryChannel(spec, on_change, on_status)
        self.channels[spec.name] = channel
        on_status('SUBSCRIBED', None)
        return channel

    async def unsubscribe(self, handle: Any) -> None:
        if self.channels.get(handle.spec.name) is handle:
            del self.channels[handle.spec.name]

    def emit(self, table: str, event_type: str, new: Optional[dict] = None,
             old: Optional[dict] = None) -> None:
        """Zdarzenie w kształcie {eventType, new, old}."""
        row = new if event_type != 'DELETE' else old
        payload = {'eventType': event_type, 'new': dict(new or {}), 'old': dict(old or {})}
        for channel in list(self.channels.values()):
            if channel.spec.table == table and channel.matches(row or {}):
                channel.on_change(payload)

    def emit_payload(self, table: str, payload: Any) -> None:
        for channel in list(self.channels.values()):
            if channel.spec.table == table:
                channel.on_change(payload)

    def set_status(self, table: str, status: str, error: Optional[BaseException] = None) -> None:
        for channel in list(self.channels.values()):
            if channel.spec.table == table:
                channel.on_status(status, error)


class InMemoryRemoteClient(IRemoteDataClient):
    def __init__(self, feed: Optional[InMemoryChangeFeed] = None):
        self.feed = feed
        self.projects: Dict[str, dict] = {}
        self.tasks: Dict[str, dict] = {}
        self.task_tags: Dict[str, List[str]] = {}
        self.comments: Dict[str, dict] = {}
        self.profiles: Dict[str, dict] = {}

        self.calls: List[Tuple[str, tuple]] = []
        self._ids = {'p': itertools.count(1), 't': itertools.count(1), 'c': itertools.count(1)}
        self._failures: Dict[str, RemoteError] = {}
        self._gate: Optional[asyncio.Event] = None

    # --- Sterowanie w testach ---

    def hold(self) -> None:
        """Wstrzymuje odpowiedzi do ``release`` (symulacja wolnej sieci)."""
        self._gate = asyncio.Event()

    def release(self) -> None:
        if self._gate is not None:
            self._gate.set()
            self._gate = None

    def fail(self, operation: str, message: str = 'Database error', code: Optional[str] = None) -> None:
        self._failures[operation] = RemoteError(message, code=code)

    def recover(self, operation: Optional[str] = None) -> None:
        if operation is None:
            self._failures.clear()
        else:
            self._failures.pop(operation, None)

    def called(self, operation: str) -> List[tuple]:
        return [args for name, args in self.calls if name == operation]

    async def _enter(self, operation: str, *args) -> None:
        self.calls.append((operation, args))
        gate = self._gate
        if gate is not None:
            await gate.wait()
        error = self._failures.get(operation)
        if error is not None:
            raise error

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}{next(self._ids[prefix])}"

    def _emit(self, table: str, event_type: str, new=None, old=None) -> None:
        if self.feed is not None:
            self.feed.emit(table, event_type, new=new, old=old)

    # --- Dane startowe ---

    def seed_project(self, **row) -> dict:
        now = timezone.now().isoformat()
        if 'id' not in row:
            row['id'] = self._next_id('p')
        row.setdefault('created_at', now)
        row.setdefault('updated_at', now)
        self.projects[row['id']] = row
        return row

    def seed_task(self, tags=(), **row) -> dict:
        now = timezone.now().isoformat()
        if 'id' not in row:
            row['id'] = self._next_id('t')
        row.setdefault('status', 'todo')
        row.setdefault('priority', 'medium')
        row.setdefault('created_at', now)
        row.setdefault('updated_at', now)
        self.tasks[row['id']] = row
        self.task_tags[row['id']] = list(tags)
        return row

    # --- Widoki wierszy ---

    def _project(self, row: dict) -> ProjectEntity:
        statuses = [{'status': t.get('status')} for t in self.tasks.values() if t['project_id'] == row['id']]
        return ProjectEntity.from_record(dict(row, tasks=statuses))

    def _task(self, row: dict) -> TaskEntity:
        count = sum(1 for c in self.comments.values() if c['task_id'] == row['id'])
        return TaskEntity.from_record(dict(
            row,
            task_tags=[{'tag': t} for t in self.task_tags.get(row['id'], ())],
            comments=[{'count': count}],
            assignee=self.profiles.get(row.get('assignee_id')),
        ))

    def _comment(self, row: dict) -> CommentEntity:
        return CommentEntity.from_record(dict(row, profiles=self.profiles.get(row.get('user_id'))))

    def _stamp(self, row: dict, created: bool = False) -> dict:
        now = timezone.now().isoformat()
        if created:
            row['created_at'] = now
        row['updated_at'] = now
        return row

    # --- Projekty ---

    async def list_projects(self, owner_id: str) -> List[ProjectEntity]:
        await self._enter('list_projects', owner_id)
        rows = [r for r in self.projects.values() if r.get('owner_id') == owner_id]
        return [self._project(r) for r in reversed(rows)]

    async def create_project(self, row: dict) -> ProjectEntity:
        await self._enter('create_project', row)
        created = self._stamp(dict(row, id=self._next_id('p')), created=True)
        self.projects[created['id']] = created
        self._emit('projects', 'INSERT', new=created)
        return self._project(created)

    async def update_project(self, project_id: str, updates: dict) -> ProjectEntity:
        await self._enter('update_project', project_id, updates)
        if project_id not in self.projects:
            raise RemoteError('Record not found', code='PGRST116', status=404)
        row = self._stamp(dict(self.projects[project_id], **updates))
        self.projects[project_id] = row
        self._emit('projects', 'UPDATE', new=row)
        return self._project(row)

    async def delete_project(self, project_id: str) -> None:
        await self._enter('delete_project', project_id)
        row = self.projects.pop(project_id, None)
        for task_id in [t for t, r in self.tasks.items() if r['project_id'] == project_id]:
            self.tasks.pop(task_id)
            self.task_tags.pop(task_id, None)
        if row is not None:
            self._emit('projects', 'DELETE', old={'id': project_id, 'owner_id': row.get('owner_id')})

    # --- Zadania ---

    async def list_tasks(self, project_id: str) -> List[TaskEntity]:
        await self._enter('list_tasks', project_id)
        rows = [r for r in self.tasks.values() if r['project_id'] == project_id]
        return [self._task(r) for r in reversed(rows)]

    async def create_task(self, row: dict) -> TaskEntity:
        await self._enter('create_task', row)
        if row.get('project_id') not in self.projects:
            raise RemoteError('insert or update on table "tasks" violates foreign key constraint',
                              code='23503')
        created = self._stamp(dict(row, id=self._next_id('t')), created=True)
        self.tasks[created['id']] = created
        self.task_tags[created['id']] = []
        self._emit('tasks', 'INSERT', new=created)
        return self._task(created)

    async def update_task(self, task_id: str, updates: dict) -> TaskEntity:
        await self._enter('update_task', task_id, updates)
        if task_id not in self.tasks:
            raise RemoteError('Record not found', code='PGRST116', status=404)
        row = self._stamp(dict(self.tasks[task_id], **updates))
        self.tasks[task_id] = row
        self._emit('tasks', 'UPDATE', new=row)
        return self._task(row)

    async def delete_task(self, task_id: str) -> None:
        await self._enter('delete_task', task_id)
        if self.tasks.pop(task_id, None) is not None:
            self.task_tags.pop(task_id, None)
            self._emit('tasks', 'DELETE', old={'id': task_id})

    async def add_task_tag(self, task_id: str, tag: str) -> None:
        await self._enter('add_task_tag', task_id, tag)
        tags = self.task_tags.setdefault(task_id, [])
        if tag in tags:
            raise RemoteError('duplicate key value violates unique constraint', code='23505')
        tags.append(tag)

    async def remove_task_tag(self, task_id: str, tag: str) -> None:
        await self._enter('remove_task_tag', task_id, tag)
        tags = self.task_tags.get(task_id, [])
        if tag in tags:
            tags.remove(tag)

    # --- Komentarze ---

    async def list_comments(self, task_id: str) -> List[CommentEntity]:
        await self._enter('list_comments', task_id)
        return [self._comment(r) for r in self.comments.values() if r['task_id'] == task_id]

    async def create_comment(self, task_id: str, content: str, user_id: str) -> CommentEntity:
        await self._enter('create_comment', task_id, content, user_id)
        row = {'id': self._next_id('c'), 'task_id': task_id, 'content': content, 'user_id': user_id,
               'created_at': timezone.now().isoformat()}
        self.comments[row['id']] = row
        self._emit('comments', 'INSERT', new=row)
        return self._comment(row)

    async def get_profile(self, user_id: str) -> dict:
        await self._enter('get_profile', user_id)
        if user_id not in self.profiles:
            raise RemoteError('Record not found', code='PGRST116', status=404)
        return dict(self.profiles[user_id])
