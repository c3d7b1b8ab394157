# apps/board/application/realtime.py
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from apps.board.application.coordinator import MutationCoordinator
from apps.board.domain.cache import LocalCacheStore
from apps.board.domain.projection import PROJECTS_SCOPE, BoardProjection
from apps.board.ports.changes import ChannelSpec, ChannelStatus, IChangeFeed
from apps.core.domain.records import MalformedRecord
from apps.core.errors import RemoteError
from apps.projects.domain.entities import ProjectEntity
from apps.tasks.domain.entities import CommentEntity, TaskEntity

logger = logging.getLogger(__name__)

EVENT_TYPES = ('INSERT', 'UPDATE', 'DELETE')


@dataclass(frozen=True)
class ChangeEvent:
    """Znormalizowane powiadomienie o zmianie wiersza."""
    type: str
    new: dict = field(default_factory=dict)
    old: dict = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload) -> 'ChangeEvent':
        """Przyjmuje oba kształty: {eventType, new, old} oraz {data: {type, record, old_record}}."""
        if not isinstance(payload, dict):
            raise MalformedRecord('Change payload must be an object')
        data = payload.get('data')
        if isinstance(data, dict):
            kind, new, old = data.get('type'), data.get('record'), data.get('old_record')
        else:
            kind, new, old = payload.get('eventType') or payload.get('type'), payload.get('new'), payload.get('old')

        kind = str(getattr(kind, 'value', kind) or '').upper()
        if kind not in EVENT_TYPES:
            raise MalformedRecord(f'Unknown change type: {kind!r}')
        new, old = new or {}, old or {}
        if not isinstance(new, dict) or not isinstance(old, dict):
            raise MalformedRecord('Change record must be an object')

        event = cls(kind, new, old)
        if not event.row.get('id'):
            raise MalformedRecord(f'{kind} event without record id')
        return event

    @property
    def row(self) -> dict:
        return self.old if self.type == 'DELETE' else self.new

    @property
    def entity_id(self) -> str:
        return str(self.row['id'])


class RealtimeChangeListener:
    """Stosuje zmiany robione przez innych klientów do lokalnego cache.

    Zdarzenia przychodzą bez odtwarzania historii - stan początkowy musi
    pochodzić z pełnego loadu, a po zerwaniu połączenia robimy resync.
    """

    def __init__(self, user_id: str, feed: IChangeFeed, coordinator: MutationCoordinator,
                 projection: BoardProjection, comments: LocalCacheStore,
                 reload_projects: Callable[[], Awaitable[Any]],
                 resync: Callable[[str], Awaitable[Any]],
                 reload_delay: float = 0.5, reconnect_base: float = 1.0, reconnect_max: float = 30.0):
        self.user_id = user_id
        self.feed = feed
        self.coordinator = coordinator
        self.projection = projection
        self.comments = comments
        self._reload_projects = reload_projects
        self._resync = resync
        self.reload_delay = reload_delay
        self.reconnect_base = reconnect_base
        self.reconnect_max = reconnect_max

        self._handlers = {
            'projects': self.on_project,
            'tasks': self.on_task,
            'comments': self.on_comment,
        }
        self._handles: Dict[str, Any] = {}
        self._generation: Dict[str, int] = {}
        self._attempts: Dict[str, int] = {}
        self._disconnected: Set[str] = set()
        self._reconnecting: Dict[str, asyncio.Task] = {}
        self._reload: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self._stopping = False

    @property
    def tasks(self) -> LocalCacheStore:
        return self.projection.tasks

    def channel_specs(self):
        return (
            ChannelSpec(f'projects-{self.user_id}', 'projects', f'owner_id=eq.{self.user_id}'),
            ChannelSpec(f'tasks-{self.user_id}', 'tasks'),
            ChannelSpec(f'comments-{self.user_id}', 'comments'),
        )

    def backoff(self, attempt: int) -> float:
        return min(self.reconnect_max, self.reconnect_base * (2 ** attempt))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # --- Cykl życia ---

    async def start(self) -> None:
        self._stopping = False
        for spec in self.channel_specs():
            await self._subscribe(spec)

    async def stop(self) -> None:
        self._stopping = True
        pending = list(self._background)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        for name, handle in list(self._handles.items()):
            try:
                await self.feed.unsubscribe(handle)
            except RemoteError as exc:
                logger.warning("Nie udało się zamknąć kanału %s: %s", name, exc)
        self._handles.clear()
        logger.info("Listener realtime zatrzymany (%s)", self.user_id)

    @property
    def connected_channels(self):
        return tuple(name for name in self._handles if name not in self._disconnected)

    async def _subscribe(self, spec: ChannelSpec) -> None:
        generation = self._generation.get(spec.name, 0) + 1
        self._generation[spec.name] = generation
        handler = self._handlers[spec.table]

        def on_change(payload):
            self._dispatch(spec, handler, payload)

        def on_status(status, error=None):
            if self._generation.get(spec.name) == generation:
                self._on_status(spec, status, error)

        try:
            handle = await self.feed.subscribe(spec, on_change, on_status)
        except RemoteError as exc:
            logger.warning("Subskrypcja kanału %s nieudana: %s", spec.name, exc)
            self._schedule_reconnect(spec)
            return
        self._handles[spec.name] = handle

    def _on_status(self, spec: ChannelSpec, status, error=None) -> None:
        try:
            status = ChannelStatus.parse(status)
        except ValueError:
            logger.debug("Nieznany status kanału %s: %r", spec.name, status)
            return

        if status is ChannelStatus.SUBSCRIBED:
            self._attempts.pop(spec.name, None)
            logger.info("Kanał %s zasubskrybowany", spec.name)
            if spec.name in self._disconnected:
                self._disconnected.discard(spec.name)
                # Zdarzenia z czasu rozłączenia przepadły - przeładowujemy zakresy
                self._spawn(self._resync(spec.table))
            return

        if self._stopping:
            return
        logger.warning("Kanał %s: %s (%s)", spec.name, status.value, error)
        self._schedule_reconnect(spec)

    def _schedule_reconnect(self, spec: ChannelSpec) -> None:
        if self._stopping or spec.name in self._reconnecting:
            return
        self._disconnected.add(spec.name)
        attempt = self._attempts.get(spec.name, 0)
        self._attempts[spec.name] = attempt + 1
        delay = self.backoff(attempt)
        logger.info("Ponowne łączenie kanału %s za %.1fs (próba %d)", spec.name, delay, attempt + 1)
        self._reconnecting[spec.name] = self._spawn(self._reconnect(spec, delay))

    async def _reconnect(self, spec: ChannelSpec, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            if self._stopping:
                return
            handle = self._handles.pop(spec.name, None)
            # Statusy ze starego kanału (np. CLOSED po unsubscribe) są już ignorowane
            self._generation[spec.name] = self._generation.get(spec.name, 0) + 1
            if handle is not None:
                try:
                    await self.feed.unsubscribe(handle)
                except RemoteError as exc:
                    logger.debug("Zamknięcie starego kanału %s: %s", spec.name, exc)
        finally:
            self._reconnecting.pop(spec.name, None)
        await self._subscribe(spec)

    # --- Przeładowanie liczników ---

    def schedule_reload(self) -> None:
        """Odroczony reload projektów; kolejne prośby w oknie są łączone."""
        if self._stopping or (self._reload is not None and not self._reload.done()):
            return
        self._reload = self._spawn(self._delayed_reload())

    async def _delayed_reload(self) -> None:
        await asyncio.sleep(self.reload_delay)
        if not self._stopping:
            await self._reload_projects()

    # --- Zdarzenia ---

    def _dispatch(self, spec: ChannelSpec, handler, payload) -> None:
        if self._stopping or self.coordinator.closed:
            return
        try:
            event = ChangeEvent.from_payload(payload)
            handler(event)
        except ValueError as exc:
            # MalformedRecord też jest ValueError
            logger.warning("Pominięto zdarzenie z kanału %s: %s", spec.name, exc)

    def on_project(self, event: ChangeEvent) -> None:
        project_id = event.entity_id
        if event.type == 'DELETE':
            self.coordinator.release_tombstone(project_id)
            removed, _ = self.projection.remove_project(project_id)
            if removed is not None:
                logger.info("Projekt %s usunięty zdalnie", project_id)
            return
        if self.coordinator.is_tombstoned(project_id):
            return

        if self.projection.project(project_id) is None:
            self.projection.upsert_project(ProjectEntity.from_record(event.new))
        else:
            self.projection.projects.patch(PROJECTS_SCOPE, project_id, ProjectEntity.fields_from_row(event.new))

    def on_task(self, event: ChangeEvent) -> None:
        task_id = event.entity_id
        if event.type == 'DELETE':
            own = self.coordinator.release_tombstone(task_id)
            removed = self.projection.drop_task(task_id)
            if removed is not None:
                self.projection.task_changed(removed, None)
            elif not own:
                # Zadania nie ma w cache - nie wiemy, czy było ukończone
                self.schedule_reload()
            return
        if self.coordinator.is_tombstoned(task_id):
            return

        current = self.projection.find_task(task_id)
        if current is None:
            after = TaskEntity.from_record(event.new)
        else:
            # Zdarzenie niesie goły wiersz - tagi/assignee/komentarze zostają z cache
            after = current.merged(TaskEntity.fields_from_row(event.new))

        self.projection.place_task(after)
        if current is None and not self.tasks.is_loaded(after.project_id):
            self.schedule_reload()
            return
        self.projection.task_changed(current, after)

    def on_comment(self, event: ChangeEvent) -> None:
        comment_id = event.entity_id
        task_id = event.row.get('task_id') or self.comments.locate(comment_id)
        if not task_id:
            raise MalformedRecord('Comment event without task_id')
        task_id = str(task_id)

        if event.type == 'DELETE':
            if self.comments.remove(task_id, comment_id) is not None:
                self.projection.shift_comment_count(task_id, -1)
            return
        if event.type == 'UPDATE':
            if 'content' in event.new:
                self.comments.patch(task_id, comment_id, {'content': str(event.new['content'])})
            return

        comment = CommentEntity.from_record(event.new)
        if self.coordinator.claim_comment_echo(comment_id):
            return
        if comment.user_id == self.user_id and self.coordinator.has_pending_comments(task_id):
            # Własny komentarz - podmieni go koordynator po odpowiedzi backendu
            self.coordinator.note_comment_echo(comment_id, task_id)
            return
        if self.comments.contains(task_id, comment_id):
            return
        if self.comments.is_loaded(task_id):
            self.comments.append(task_id, comment)
        self.projection.shift_comment_count(task_id, +1)
