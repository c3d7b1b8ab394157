# apps/board/application/session.py
"""Sesja tablicy jednego użytkownika - kontrakt dla warstwy prezentacji.

Widok czyta stan wyłącznie z cache (``projects``, ``tasks_for``...) i wywołuje
intencje (``create_task``...). Intencje zwracają od razu ``Mutation`` z encją
już widoczną w cache; ``await`` daje wynik z serwera (Ok/Err).
"""
import logging
from typing import Callable, Dict, List, Optional, Tuple

from django.conf import settings
from django.utils import timezone

from apps.board.application.coordinator import SESSION_CLOSED, MutationCoordinator
from apps.board.application.realtime import RealtimeChangeListener
from apps.board.domain.cache import LocalCacheStore
from apps.board.domain.projection import PROJECTS_SCOPE, BoardProjection
from apps.board.domain.results import Err, Mutation, Ok
from apps.board.ports.changes import IChangeFeed
from apps.board.ports.remote import IRemoteDataClient
from apps.board.signals import cache_changed
from apps.core.domain.records import is_temporary_id
from apps.core.errors import RemoteError
from apps.projects.domain.entities import ProjectEntity
from apps.tasks.domain.entities import CommentEntity, TaskEntity

logger = logging.getLogger(__name__)


class BoardSession:
    def __init__(self, user_id: str, remote: IRemoteDataClient, feed: Optional[IChangeFeed] = None, *,
                 reload_delay: Optional[float] = None, reconnect_base: Optional[float] = None,
                 reconnect_max: Optional[float] = None):
        self.user_id = user_id
        self.remote = remote

        self.projects_store = LocalCacheStore('projects')
        self.tasks_store = LocalCacheStore('tasks')
        self.comments_store = LocalCacheStore('comments')
        self.projection = BoardProjection(self.projects_store, self.tasks_store)
        self.coordinator = MutationCoordinator(user_id, remote, self.projection, self.comments_store)

        self.listener = None
        if feed is not None:
            self.listener = RealtimeChangeListener(
                user_id, feed, self.coordinator, self.projection, self.comments_store,
                reload_projects=self.load_projects,
                resync=self.resync,
                reload_delay=_setting(reload_delay, 'TASKFLOW_RELOAD_DELAY', 0.5),
                reconnect_base=_setting(reconnect_base, 'TASKFLOW_RECONNECT_BASE_DELAY', 1.0),
                reconnect_max=_setting(reconnect_max, 'TASKFLOW_RECONNECT_MAX_DELAY', 30.0),
            )

        self.profile: Optional[dict] = None
        self.last_refresh = None
        self._loading = 0
        self._watchers: List[Callable] = []

    def __repr__(self):
        return f"<BoardSession {self.user_id} projects={len(self.projects)}>"

    # --- Odczyt (tylko z cache) ---

    @property
    def projects(self) -> Tuple[ProjectEntity, ...]:
        return self.projects_store.items(PROJECTS_SCOPE)

    def project(self, project_id: str) -> Optional[ProjectEntity]:
        return self.projection.project(project_id)

    def tasks_for(self, project_id: str) -> Tuple[TaskEntity, ...]:
        return self.tasks_store.items(project_id)

    @property
    def tasks_by_project(self) -> Dict[str, Tuple[TaskEntity, ...]]:
        return {scope: self.tasks_store.items(scope) for scope in self.tasks_store.scopes()}

    def task(self, project_id: str, task_id: str) -> Optional[TaskEntity]:
        """Aktualna wersja zadania albo None, jeśli w międzyczasie zniknęło."""
        return self.tasks_store.get(project_id, task_id)

    def comments_for(self, task_id: str) -> Tuple[CommentEntity, ...]:
        return self.comments_store.items(task_id)

    @property
    def is_loading(self) -> bool:
        return self._loading > 0

    @property
    def closed(self) -> bool:
        return self.coordinator.closed

    # --- Ładowanie ---

    async def start(self):
        """Najpierw pełny load projektów, dopiero potem subskrypcja realtime."""
        result = await self.load_projects()
        if self.listener is not None and not self.closed:
            await self.listener.start()
        return result

    async def _load(self, what: str, call, apply):
        if self.closed:
            return Err(SESSION_CLOSED)
        self._loading += 1
        try:
            data = await call()
        except RemoteError as exc:
            logger.warning("Nie udało się załadować %s: %s", what, exc)
            return Err(str(exc), error=exc)
        finally:
            self._loading -= 1
        if self.closed:
            return Err(SESSION_CLOSED, superseded=True)
        apply(data)
        self.last_refresh = timezone.now()
        logger.debug("Załadowano %s (%d)", what, len(data))
        return Ok(data)

    async def load_projects(self):
        return await self._load('projects', lambda: self.remote.list_projects(self.user_id),
                                self._apply_projects)

    def _apply_projects(self, projects) -> None:
        # Lokalne projekty, których serwer jeszcze nie zna, przeżywają pełny load
        pending = [p for p in self.projects if p.is_temporary]
        fresh = [p for p in projects if not self.coordinator.is_tombstoned(p.id)]
        self.projects_store.load(PROJECTS_SCOPE, pending + fresh)

        known = {p.id for p in pending + fresh}
        for scope in self.tasks_store.scopes():
            if scope not in known:
                self.tasks_store.drop(scope)
        self.projection.recompute_all()

    async def load_tasks(self, project_id: str):
        if is_temporary_id(project_id):
            if not self.tasks_store.is_loaded(project_id):
                self.tasks_store.load(project_id, ())
            return Ok(self.tasks_for(project_id))
        return await self._load(f'tasks of {project_id}', lambda: self.remote.list_tasks(project_id),
                                lambda tasks: self._apply_tasks(project_id, tasks))

    def _apply_tasks(self, project_id: str, tasks) -> None:
        if self.project(project_id) is None:
            # Projekt zniknął w trakcie ładowania
            return
        pending = [t for t in self.tasks_for(project_id) if t.is_temporary]
        fresh = [t for t in tasks if not self.coordinator.is_tombstoned(t.id)]
        self.tasks_store.load(project_id, pending + fresh)
        self.projection.recompute_summary(project_id)

    async def load_comments(self, task_id: str):
        if is_temporary_id(task_id):
            return Ok(())
        return await self._load(f'comments of {task_id}', lambda: self.remote.list_comments(task_id),
                                lambda comments: self._apply_comments(task_id, comments))

    def _apply_comments(self, task_id: str, comments) -> None:
        pending = [c for c in self.comments_for(task_id) if c.is_temporary]
        self.comments_store.load(task_id, list(comments) + pending)

    async def load_profile(self):
        return await self._load('profile', self._fetch_profile, self._apply_profile)

    async def _fetch_profile(self):
        profile = await self.remote.get_profile(self.user_id)
        return profile or {}

    def _apply_profile(self, profile: dict) -> None:
        self.profile = dict(profile)

    async def resync(self, table: Optional[str] = None) -> None:
        """Przeładowuje zakresy, które mogły przegapić zdarzenia realtime."""
        logger.info("Resync tablicy (%s)", table or 'all')
        if table in (None, 'projects', 'tasks'):
            await self.load_projects()
        if table in (None, 'tasks'):
            for project_id in self.tasks_store.loaded_scopes():
                await self.load_tasks(project_id)
        if table in (None, 'comments'):
            for task_id in self.comments_store.loaded_scopes():
                await self.load_comments(task_id)

    # --- Intencje ---

    def create_project(self, name: str, description: str = "", color: Optional[str] = None,
                       due_date=None) -> Mutation:
        return self.coordinator.create_project(name, description, color, due_date)

    def update_project(self, project_id: str, **changes) -> Mutation:
        return self.coordinator.update_project(project_id, **changes)

    def delete_project(self, project_id: str) -> Mutation:
        return self.coordinator.delete_project(project_id)

    def create_task(self, project_id: str, title: str, **fields) -> Mutation:
        return self.coordinator.create_task(project_id, title, **fields)

    def update_task(self, task_id: str, **changes) -> Mutation:
        return self.coordinator.update_task(task_id, **changes)

    def delete_task(self, task_id: str) -> Mutation:
        return self.coordinator.delete_task(task_id)

    def add_tag(self, task_id: str, tag: str) -> Mutation:
        return self.coordinator.add_tag(task_id, tag)

    def remove_tag(self, task_id: str, tag: str) -> Mutation:
        return self.coordinator.remove_tag(task_id, tag)

    def add_comment(self, task_id: str, content: str, author: Optional[str] = None) -> Mutation:
        if author is None and self.profile:
            # Autor optymistycznego komentarza - nazwa z profilu zamiast samego id
            author = self.profile.get('name') or None
        return self.coordinator.add_comment(task_id, content, author)

    # --- Powiadomienia ---

    def watch(self, callback: Callable) -> Callable:
        """callback(store_name, scope, action, entity_id) po każdej zmianie cache tej sesji."""
        def receiver(sender, scope, action, entity_id=None, **kwargs):
            callback(sender.name, scope, action, entity_id)

        for store in (self.projects_store, self.tasks_store, self.comments_store):
            cache_changed.connect(receiver, sender=store, weak=False)
        self._watchers.append(receiver)
        return receiver

    def unwatch(self, receiver: Callable) -> None:
        for store in (self.projects_store, self.tasks_store, self.comments_store):
            cache_changed.disconnect(receiver, sender=store)
        if receiver in self._watchers:
            self._watchers.remove(receiver)

    async def close(self) -> None:
        self.coordinator.close()
        if self.listener is not None:
            await self.listener.stop()
        for receiver in list(self._watchers):
            self.unwatch(receiver)
        logger.info("Sesja %s zamknięta", self.user_id)


def _setting(value, name, default):
    if value is not None:
        return value
    return getattr(settings, name, default)
