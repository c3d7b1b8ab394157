# apps/board/application/coordinator.py
"""Optymistyczne mutacje: najpierw cache, potem backend.

Zasady (wspólne dla projektów, zadań, tagów i komentarzy):

* create - encja z tymczasowym id trafia do cache od razu; po sukcesie
  tymczasowe id jest usuwane, a encja z id serwera wstawiana (podmiana, nie
  patch - zmienia się samo id). Porażka zostawia encję z ``sync_state=failed``.
* delete - usunięcie z cache od razu; id tymczasowe nie idzie do backendu;
  porażka backendu przywraca encję.
* update - patch lokalny od razu, potem backend; porażka cofa zmienione pola.
* każda mutacja id serwerowego stempluje je numerem sekwencyjnym - odpowiedź,
  która przyszła po nowszej operacji na tym samym id, jest odrzucana
  (``superseded``). Id tymczasowych nie stemplujemy.
"""
import asyncio
import itertools
import logging
from collections import Counter
from typing import Any, Dict, Optional, Set

from django.utils import timezone

from apps.board.domain.cache import LocalCacheStore
from apps.board.domain.projection import PROJECTS_SCOPE, BoardProjection
from apps.board.domain.results import Err, Mutation, Ok
from apps.board.ports.remote import IRemoteDataClient
from apps.core.domain.records import (
    MalformedRecord, SyncState, is_temporary_id, new_temporary_id, parse_date, to_wire,
)
from apps.core.errors import RemoteError
from apps.projects.domain.entities import DEFAULT_COLOR, ProjectEntity
from apps.tasks.domain.entities import (
    Assignee, CommentEntity, TaskEntity, TaskPriority, TaskStatus, normalize_tag,
)

logger = logging.getLogger(__name__)

SESSION_CLOSED = 'session closed'
SUPERSEDED = 'superseded by a later change'
DELETED_BEFORE_CONFIRMATION = 'deleted before the server confirmed creation'


def _local_edits(candidate, local, writable) -> dict:
    """Pola zmienione lokalnie, gdy encja miała jeszcze tymczasowe id."""
    if local is None:
        return {}
    return {k: getattr(local, k) for k in writable if getattr(local, k) != getattr(candidate, k)}


def _confirmed_fields(confirmed, writable) -> dict:
    return {k: getattr(confirmed, k) for k in tuple(writable) + ('updated_at',)}


class MutationCoordinator:
    def __init__(self, user_id: str, remote: IRemoteDataClient, projection: BoardProjection,
                 comments: LocalCacheStore):
        self.user_id = user_id
        self.remote = remote
        self.projection = projection
        self.comments = comments

        self._sequence = itertools.count(1)
        self._stamps: Dict[str, int] = {}
        self._creating: Dict[str, Any] = {}  # tymczasowe id czekające na backend -> kandydat
        self._abandoned: Set[str] = set()    # tymczasowe id usunięte przed potwierdzeniem
        self._tombstones: Set[str] = set()   # id serwerowe usunięte lokalnie
        self._pending_comments: Counter = Counter()
        self._confirmed_comments: Set[str] = set()  # id zapisane przez sesję, echo jeszcze nie dotarło
        self._early_echoes: Dict[str, str] = {}     # echo przed odpowiedzią backendu: id -> task_id
        self._inflight: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def projects(self) -> LocalCacheStore:
        return self.projection.projects

    @property
    def tasks(self) -> LocalCacheStore:
        return self.projection.tasks

    # --- Infrastruktura ---

    def _stamp(self, key: str) -> int:
        stamp = next(self._sequence)
        self._stamps[key] = stamp
        return stamp

    def _is_current(self, key: str, stamp: int) -> bool:
        return not self._closed and self._stamps.get(key) == stamp

    def _release(self, key: str, stamp: int) -> None:
        if self._stamps.get(key) == stamp:
            del self._stamps[key]

    def _refuse(self) -> Optional[Mutation]:
        """Sprawdzane przed zapisem do cache: pętla asyncio i otwarta sesja."""
        # Bez działającej pętli RuntimeError leci, zanim cokolwiek trafi do cache
        asyncio.get_running_loop()
        if self._closed:
            return self._rejected(SESSION_CLOSED)
        return None

    def _spawn(self, entity, coro) -> Mutation:
        task = asyncio.get_running_loop().create_task(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return Mutation(entity, task)

    def _rejected(self, reason: str) -> Mutation:
        logger.info("Mutacja odrzucona: %s", reason)
        return Mutation.resolved(Err(reason))

    def is_tombstoned(self, entity_id: str) -> bool:
        return entity_id in self._tombstones

    def has_pending_comments(self, task_id: str) -> bool:
        return self._pending_comments[task_id] > 0

    def claim_comment_echo(self, comment_id: str) -> bool:
        """True dla echa komentarza zapisanego przez tę sesję (już policzonego).

        Każde echo zdejmujemy raz - kolejne zdarzenia o tym id to już nie echo.
        """
        if comment_id in self._confirmed_comments:
            self._confirmed_comments.discard(comment_id)
            return True
        return False

    def note_comment_echo(self, comment_id: str, task_id: str) -> None:
        """Echo własnego komentarza dotarło przed odpowiedzią backendu."""
        self._early_echoes[comment_id] = task_id

    def _comment_settled(self, task_id: str) -> None:
        self._pending_comments[task_id] -= 1
        if self._pending_comments[task_id] > 0:
            return
        del self._pending_comments[task_id]
        # Echa innych urządzeń tego samego użytkownika - nie doczekają się odpowiedzi
        for comment_id in [c for c, t in self._early_echoes.items() if t == task_id]:
            del self._early_echoes[comment_id]

    def release_tombstone(self, entity_id: str) -> bool:
        """Zdarzenie DELETE dla id usuniętego lokalnie - później nic o nim nie przyjdzie."""
        if entity_id in self._tombstones:
            self._tombstones.discard(entity_id)
            return True
        return False

    @property
    def closed(self) -> bool:
        return self._closed

    async def drain(self) -> None:
        """Czeka na wszystkie wywołania backendu w locie."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def close(self) -> None:
        """Od teraz odpowiedzi backendu nie piszą już do cache.

        Wywołań w locie nie przerywamy - backend i tak je wykona.
        """
        self._closed = True

    async def _compensate(self, kind: str, entity_id: str, delete_call) -> None:
        """Usuwa na serwerze encję, którą użytkownik skasował przed potwierdzeniem."""
        self._tombstones.add(entity_id)
        try:
            await delete_call(entity_id)
            logger.info("Usunięto osierocony %s %s", kind, entity_id)
        except RemoteError as exc:
            logger.error("Nie udało się usunąć osieroconego %s %s: %s", kind, entity_id, exc)

    # --- Projekty ---

    def create_project(self, name: str, description: str = "", color: Optional[str] = None,
                       due_date=None) -> Mutation:
        refused = self._refuse()
        if refused is not None:
            return refused
        name = (name or '').strip()
        if not name:
            return self._rejected('Project name is required')
        try:
            due = parse_date(due_date)
        except MalformedRecord as exc:
            return self._rejected(str(exc))

        now = timezone.now()
        candidate = ProjectEntity(
            id=new_temporary_id(),
            name=name,
            description=description or '',
            color=color or DEFAULT_COLOR,
            due_date=due,
            owner_id=self.user_id,
            created_at=now,
            updated_at=now,
            sync_state=SyncState.PENDING,
        )
        self.projection.upsert_project(candidate)
        self._creating[candidate.id] = candidate
        logger.info("Projekt %s (%s) dodany optymistycznie", candidate.id, name)
        return self._spawn(candidate, self._confirm_project_create(candidate))

    async def _confirm_project_create(self, candidate: ProjectEntity):
        try:
            created = await self.remote.create_project(to_wire(candidate.to_row()))
        except RemoteError as exc:
            self._creating.pop(candidate.id, None)
            return self._creation_failed(self.projects, PROJECTS_SCOPE, candidate, exc)
        self._creating.pop(candidate.id, None)

        if self._closed:
            return Err(SESSION_CLOSED, entity=created, superseded=True)
        if candidate.id in self._abandoned:
            self._abandoned.discard(candidate.id)
            self.projection.remove_project(created.id)
            await self._compensate('project', created.id, self.remote.delete_project)
            return Err(DELETED_BEFORE_CONFIRMATION, entity=created, superseded=True)

        local = self.projection.project(candidate.id)
        # Podmiana: tymczasowe id znika, a kopia wstawiona przez realtime nie może się zdublować
        self.projects.remove(PROJECTS_SCOPE, candidate.id)
        self.projects.remove(PROJECTS_SCOPE, created.id)
        if self.tasks.is_loaded(candidate.id):
            # Nowy projekt nie ma jeszcze zadań
            self.tasks.drop(candidate.id)
            if not self.tasks.is_loaded(created.id):
                self.tasks.load(created.id, ())
        self.projection.upsert_project(created)
        logger.info("Projekt %s potwierdzony jako %s", candidate.id, created.id)

        pending = _local_edits(candidate, local, ProjectEntity.WRITABLE)
        if pending:
            return await self.update_project(created.id, **pending)
        return Ok(self.projection.project(created.id))

    def update_project(self, project_id: str, **changes) -> Mutation:
        refused = self._refuse()
        if refused is not None:
            return refused
        current = self.projection.project(project_id)
        if current is None:
            return self._rejected('Project not found')
        try:
            updates = ProjectEntity.fields_from_row(
                {k: v for k, v in changes.items() if k in ProjectEntity.WRITABLE})
        except MalformedRecord as exc:
            return self._rejected(str(exc))
        if 'name' in updates and not updates['name'].strip():
            return self._rejected('Project name is required')
        if not updates:
            return Mutation.resolved(Ok(current))

        previous = {k: getattr(current, k) for k in updates}
        patched = self.projects.patch(PROJECTS_SCOPE, project_id, updates)
        if current.is_temporary:
            # Trafi do backendu po potwierdzeniu utworzenia
            return Mutation.resolved(Ok(patched))
        stamp = self._stamp(project_id)
        return self._spawn(patched, self._confirm_project_update(project_id, updates, previous, stamp))

    async def _confirm_project_update(self, project_id, updates, previous, stamp):
        try:
            confirmed = await self.remote.update_project(project_id, to_wire(updates))
        except RemoteError as exc:
            logger.warning("Aktualizacja projektu %s nieudana: %s", project_id, exc)
            if not self._is_current(project_id, stamp):
                return Err(str(exc), error=exc, superseded=True)
            self._release(project_id, stamp)
            restored = self.projects.patch(PROJECTS_SCOPE, project_id, previous)
            return Err(str(exc), error=exc, entity=restored)

        if not self._is_current(project_id, stamp):
            return Err(SUPERSEDED, entity=self.projection.project(project_id), superseded=True)
        self._release(project_id, stamp)
        merged = self.projects.patch(PROJECTS_SCOPE, project_id,
                                     _confirmed_fields(confirmed, ProjectEntity.WRITABLE))
        return Ok(merged)

    def delete_project(self, project_id: str) -> Mutation:
        refused = self._refuse()
        if refused is not None:
            return refused
        had_tasks = self.tasks.is_loaded(project_id)
        removed, dropped = self.projection.remove_project(project_id)

        if is_temporary_id(project_id):
            if project_id in self._creating:
                self._abandoned.add(project_id)
            return Mutation.resolved(Ok(removed))

        stamp = self._stamp(project_id)
        self._tombstones.add(project_id)
        logger.info("Projekt %s usunięty lokalnie", project_id)
        return self._spawn(removed, self._confirm_project_delete(project_id, removed, dropped, had_tasks, stamp))

    async def _confirm_project_delete(self, project_id, removed, dropped, had_tasks, stamp):
        try:
            await self.remote.delete_project(project_id)
        except RemoteError as exc:
            logger.warning("Usunięcie projektu %s nieudane: %s", project_id, exc)
            if not self._is_current(project_id, stamp):
                return Err(str(exc), error=exc, superseded=True)
            self._release(project_id, stamp)
            self._tombstones.discard(project_id)
            if removed is not None:
                self.projection.upsert_project(removed)
                if had_tasks:
                    self.tasks.load(project_id, dropped)
                    self.projection.recompute_summary(project_id)
            return Err(str(exc), error=exc, entity=removed)

        self._release(project_id, stamp)
        return Ok(removed)

    # --- Zadania ---

    def create_task(self, project_id: str, title: str, description: str = "",
                    status=TaskStatus.TODO, priority=TaskPriority.MEDIUM,
                    assignee_id: Optional[str] = None, assignee=None, due_date=None,
                    tags=()) -> Mutation:
        refused = self._refuse()
        if refused is not None:
            return refused
        title = (title or '').strip()
        if not title:
            return self._rejected('Task title is required')
        if is_temporary_id(project_id):
            return self._rejected('Project is not saved yet')
        if self.projection.project(project_id) is None:
            return self._rejected('Project not found')

        now = timezone.now()
        try:
            candidate = TaskEntity.from_record({
                'id': new_temporary_id(),
                'title': title,
                'project_id': project_id,
                'description': description,
                'status': status,
                'priority': priority,
                'assignee_id': assignee_id or getattr(assignee, 'id', None),
                'assignee': assignee,
                'created_by': self.user_id,
                'tags': list(tags or ()),
                'comment_count': 0,
                'due_date': due_date,
                'created_at': now,
                'updated_at': now,
            }, sync_state=SyncState.PENDING)
        except MalformedRecord as exc:
            return self._rejected(str(exc))

        self.projection.place_task(candidate)
        self.projection.task_changed(None, candidate)
        self._creating[candidate.id] = candidate
        logger.info("Zadanie %s dodane optymistycznie do projektu %s", candidate.id, project_id)
        return self._spawn(candidate, self._confirm_task_create(candidate))

    async def _confirm_task_create(self, candidate: TaskEntity):
        try:
            created = await self.remote.create_task(to_wire(candidate.to_row()))
        except RemoteError as exc:
            self._creating.pop(candidate.id, None)
            scope = self.tasks.locate(candidate.id)
            if scope is None and not self._closed and candidate.id not in self._abandoned:
                # Zadanie nie leży w żadnym zakresie - cofamy samo przesunięcie liczników
                self.projection.task_changed(candidate, None)
            return self._creation_failed(self.tasks, scope, candidate, exc)
        self._creating.pop(candidate.id, None)

        if self._closed:
            return Err(SESSION_CLOSED, entity=created, superseded=True)
        if candidate.id in self._abandoned:
            self._abandoned.discard(candidate.id)
            echoed = self.projection.drop_task(created.id)
            if echoed is not None:
                self.projection.task_changed(echoed, None)
            await self._compensate('task', created.id, self.remote.delete_task)
            return Err(DELETED_BEFORE_CONFIRMATION, entity=created, superseded=True)

        local = self.projection.find_task(candidate.id) or candidate
        # Serwer zwraca goły wiersz - pola zdenormalizowane bierzemy z wersji lokalnej
        confirmed = created.merged({
            'assignee': local.assignee,
            'tags': local.tags,
            'comment_count': local.comment_count,
            'project_id': candidate.project_id,
        })
        self.projection.drop_task(candidate.id)
        duplicate = self.projection.drop_task(created.id)
        self.projection.place_task(confirmed)
        self.projection.task_changed(local, confirmed)
        if duplicate is not None:
            self.projection.recompute_summary(confirmed.project_id)
        logger.info("Zadanie %s potwierdzone jako %s", candidate.id, created.id)

        for tag in local.tags:
            try:
                await self.remote.add_task_tag(created.id, tag)
            except RemoteError as exc:
                logger.warning("Tag %r zadania %s nie zapisany: %s", tag, created.id, exc)
                self._set_tag(created.id, tag, present=False)

        pending = _local_edits(candidate, local, TaskEntity.WRITABLE)
        if pending:
            return await self.update_task(created.id, **pending)
        return Ok(self.projection.find_task(created.id) or confirmed)

    def _creation_failed(self, store, scope, candidate, exc: RemoteError):
        logger.warning("Utworzenie %s nieudane: %s", candidate.id, exc)
        if self._closed:
            return Err(str(exc), error=exc, superseded=True)
        if candidate.id in self._abandoned:
            self._abandoned.discard(candidate.id)
            return Err(DELETED_BEFORE_CONFIRMATION, error=exc, superseded=True)
        failed = None
        if scope is not None:
            failed = store.patch(scope, candidate.id, {'sync_state': SyncState.FAILED})
        return Err(str(exc), error=exc, entity=failed)

    def update_task(self, task_id: str, **changes) -> Mutation:
        refused = self._refuse()
        if refused is not None:
            return refused
        current = self.projection.find_task(task_id)
        if current is None:
            return self._rejected('Task not found')
        try:
            assignee = Assignee.from_record(changes.get('assignee'))
            if 'assignee' in changes and 'assignee_id' not in changes:
                # Do backendu idzie tylko kolumna assignee_id
                changes['assignee_id'] = assignee.id if assignee else None
            updates = TaskEntity.fields_from_row(
                {k: v for k, v in changes.items() if k in TaskEntity.WRITABLE})
        except MalformedRecord as exc:
            return self._rejected(str(exc))
        if 'title' in updates and not updates['title'].strip():
            return self._rejected('Task title is required')
        target = updates.get('project_id')
        if target is not None and target != current.project_id:
            if is_temporary_id(target) or self.projection.project(target) is None:
                return self._rejected('Target project not found')
        if 'status' in updates and 'completed_at' not in changes:
            if updates['status'] == TaskStatus.DONE and not current.is_done:
                updates['completed_at'] = timezone.now()
            elif updates['status'] != TaskStatus.DONE and current.is_done:
                updates['completed_at'] = None
        if not updates:
            return Mutation.resolved(Ok(current))

        local = dict(updates)
        if 'assignee' in changes:
            local['assignee'] = assignee
        elif 'assignee_id' in updates and (current.assignee is None
                                           or current.assignee.id != updates['assignee_id']):
            local['assignee'] = None

        previous = {k: getattr(current, k) for k in local}
        after = current.merged(local)
        self.projection.place_task(after)
        self.projection.task_changed(current, after)
        if current.is_temporary:
            return Mutation.resolved(Ok(after))
        stamp = self._stamp(task_id)
        return self._spawn(after, self._confirm_task_update(task_id, updates, after, previous, stamp))

    async def _confirm_task_update(self, task_id, updates, after, previous, stamp):
        try:
            confirmed = await self.remote.update_task(task_id, to_wire(updates))
        except RemoteError as exc:
            logger.warning("Aktualizacja zadania %s nieudana: %s", task_id, exc)
            if not self._is_current(task_id, stamp):
                return Err(str(exc), error=exc, superseded=True)
            self._release(task_id, stamp)
            now = self.projection.find_task(task_id) or after
            restored = now.merged(previous)
            self.projection.place_task(restored)
            self.projection.task_changed(now, restored)
            return Err(str(exc), error=exc, entity=self.projection.find_task(task_id))

        if not self._is_current(task_id, stamp):
            return Err(SUPERSEDED, entity=self.projection.find_task(task_id), superseded=True)
        self._release(task_id, stamp)
        now = self.projection.find_task(task_id)
        if now is None:
            return Ok(confirmed)
        merged = now.merged(_confirmed_fields(confirmed, TaskEntity.WRITABLE))
        self.projection.place_task(merged)
        self.projection.task_changed(now, merged)
        return Ok(merged)

    def delete_task(self, task_id: str) -> Mutation:
        refused = self._refuse()
        if refused is not None:
            return refused
        removed = self.projection.drop_task(task_id)
        if removed is not None:
            self.projection.task_changed(removed, None)
        elif task_id in self._creating and task_id not in self._abandoned:
            # Zakres projektu nie był załadowany - liczniki przesunął tylko create
            self.projection.task_changed(self._creating[task_id], None)

        if is_temporary_id(task_id):
            if task_id in self._creating:
                self._abandoned.add(task_id)
            return Mutation.resolved(Ok(removed))

        stamp = self._stamp(task_id)
        self._tombstones.add(task_id)
        return self._spawn(removed, self._confirm_task_delete(task_id, removed, stamp))

    async def _confirm_task_delete(self, task_id, removed, stamp):
        try:
            await self.remote.delete_task(task_id)
        except RemoteError as exc:
            logger.warning("Usunięcie zadania %s nieudane: %s", task_id, exc)
            if not self._is_current(task_id, stamp):
                return Err(str(exc), error=exc, superseded=True)
            self._release(task_id, stamp)
            self._tombstones.discard(task_id)
            if removed is not None:
                self.projection.place_task(removed)
                self.projection.task_changed(None, removed)
            return Err(str(exc), error=exc, entity=removed)

        self._release(task_id, stamp)
        return Ok(removed)

    # --- Tagi ---

    def _set_tag(self, task_id: str, tag: str, present: bool) -> Optional[TaskEntity]:
        task = self.projection.find_task(task_id)
        if task is None or task.has_tag(tag) == present:
            return task
        if present:
            tags = task.tags + (tag,)
        else:
            tags = tuple(t for t in task.tags if t != tag)
        return self.tasks.patch(task.project_id, task_id, {'tags': tags})

    def add_tag(self, task_id: str, tag: str) -> Mutation:
        return self._change_tag(task_id, tag, present=True)

    def remove_tag(self, task_id: str, tag: str) -> Mutation:
        return self._change_tag(task_id, tag, present=False)

    def _change_tag(self, task_id: str, tag: str, present: bool) -> Mutation:
        refused = self._refuse()
        if refused is not None:
            return refused
        tag = normalize_tag(tag)
        if not tag:
            return self._rejected('Tag is required')
        task = self.projection.find_task(task_id)
        if task is None:
            return self._rejected('Task not found')
        if task.has_tag(tag) == present:
            # Tag już jest (albo już go nie ma) - nic do zrobienia
            return Mutation.resolved(Ok(task))

        patched = self._set_tag(task_id, tag, present)
        if task.is_temporary:
            # Tagi tymczasowego zadania wysyłamy po jego potwierdzeniu
            return Mutation.resolved(Ok(patched))
        key = f"{task_id}#tag:{tag}"
        stamp = self._stamp(key)
        return self._spawn(patched, self._confirm_tag(task_id, tag, present, key, stamp))

    async def _confirm_tag(self, task_id, tag, present, key, stamp):
        call = self.remote.add_task_tag if present else self.remote.remove_task_tag
        try:
            await call(task_id, tag)
        except RemoteError as exc:
            logger.warning("Zmiana tagu %r zadania %s nieudana: %s", tag, task_id, exc)
            if not self._is_current(key, stamp):
                return Err(str(exc), error=exc, superseded=True)
            self._release(key, stamp)
            return Err(str(exc), error=exc, entity=self._set_tag(task_id, tag, not present))
        self._release(key, stamp)
        return Ok(self.projection.find_task(task_id))

    # --- Komentarze ---

    def add_comment(self, task_id: str, content: str, author: Optional[str] = None) -> Mutation:
        refused = self._refuse()
        if refused is not None:
            return refused
        content = (content or '').strip()
        if not content:
            return self._rejected('Comment content is required')
        if is_temporary_id(task_id):
            return self._rejected('Task is not saved yet')

        comment = CommentEntity(
            id=new_temporary_id(),
            task_id=task_id,
            content=content,
            author=author or self.user_id,
            user_id=self.user_id,
            timestamp=timezone.now(),
            sync_state=SyncState.PENDING,
        )
        if self.comments.is_loaded(task_id):
            self.comments.append(task_id, comment)
        self.projection.shift_comment_count(task_id, +1)
        self._pending_comments[task_id] += 1
        return self._spawn(comment, self._confirm_comment(comment))

    async def _confirm_comment(self, comment: CommentEntity):
        try:
            created = await self.remote.create_comment(comment.task_id, comment.content, self.user_id)
        except RemoteError as exc:
            self._comment_settled(comment.task_id)
            logger.warning("Komentarz do zadania %s nie zapisany: %s", comment.task_id, exc)
            if self._closed:
                return Err(str(exc), error=exc, superseded=True)
            self.comments.remove(comment.task_id, comment.id)
            self.projection.shift_comment_count(comment.task_id, -1)
            return Err(str(exc), error=exc, entity=comment)
        if self._early_echoes.pop(created.id, None) is None:
            self._confirmed_comments.add(created.id)
        self._comment_settled(comment.task_id)

        if self._closed:
            return Err(SESSION_CLOSED, entity=created, superseded=True)
        if self.comments.is_loaded(comment.task_id):
            self.comments.remove(comment.task_id, comment.id)
            self.comments.remove(comment.task_id, created.id)
            self.comments.append(comment.task_id, created)
        return Ok(created)
