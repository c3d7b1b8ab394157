# apps/board/adapters/supabase_remote.py
import logging
from typing import Any, List, Optional

from asgiref.sync import sync_to_async
from django.conf import settings
from supabase import AsyncClient, acreate_client

from apps.board.application.session import BoardSession
from apps.board.ports.changes import ChangeCallback, ChannelSpec, IChangeFeed, StatusCallback
from apps.board.ports.remote import IRemoteDataClient
from apps.core.adapters.supabase_backend import SupabaseGateway, get_public_gateway
from apps.core.domain.records import MalformedRecord, to_wire
from apps.core.errors import RemoteError, log_api
from apps.projects.domain.entities import ProjectEntity
from apps.tasks.domain.entities import CommentEntity, TaskEntity

logger = logging.getLogger(__name__)


class SupabaseRemoteClient(IRemoteDataClient):
    """Asynchroniczna fasada na synchroniczny ``SupabaseGateway``.

    Wywołania SDK idą do puli wątków, pętla zdarzeń nie jest blokowana.
    """

    def __init__(self, gateway: SupabaseGateway):
        self.gateway = gateway

    async def _call(self, operation: str, *args):
        method = getattr(self.gateway, operation)
        try:
            return await sync_to_async(method, thread_sensitive=False)(*args)
        except RemoteError:
            raise
        except Exception as exc:
            # Błędy sieci/transportu - jeden typ dla koordynatora
            log_api(operation, exc, args=args)
            raise RemoteError.from_exception(exc) from exc

    @staticmethod
    def _entities(parse, rows, what: str) -> list:
        entities = []
        for row in rows:
            try:
                entities.append(parse(row))
            except MalformedRecord as exc:
                logger.warning("Pominięto wadliwy wiersz %s: %s", what, exc)
        return entities

    @staticmethod
    def _entity(parse, row, operation: str):
        try:
            return parse(row)
        except MalformedRecord as exc:
            raise RemoteError(f'Unexpected response from {operation}: {exc}') from exc

    # --- Projekty ---
    async def list_projects(self, owner_id: str) -> List[ProjectEntity]:
        rows = await self._call('list_projects', owner_id)
        return self._entities(ProjectEntity.from_record, rows, 'projects')

    async def create_project(self, row: dict) -> ProjectEntity:
        created = await self._call('create_project', to_wire(row))
        return self._entity(ProjectEntity.from_record, created, 'create_project')

    async def update_project(self, project_id: str, updates: dict) -> ProjectEntity:
        updated = await self._call('update_project', project_id, to_wire(updates))
        return self._entity(ProjectEntity.from_record, updated, 'update_project')

    async def delete_project(self, project_id: str) -> None:
        await self._call('delete_project', project_id)

    # --- Zadania ---
    async def list_tasks(self, project_id: str) -> List[TaskEntity]:
        rows = await self._call('list_tasks', project_id)
        return self._entities(TaskEntity.from_record, rows, 'tasks')

    async def create_task(self, row: dict) -> TaskEntity:
        created = await self._call('create_task', to_wire(row))
        return self._entity(TaskEntity.from_record, created, 'create_task')

    async def update_task(self, task_id: str, updates: dict) -> TaskEntity:
        updated = await self._call('update_task', task_id, to_wire(updates))
        return self._entity(TaskEntity.from_record, updated, 'update_task')

    async def delete_task(self, task_id: str) -> None:
        await self._call('delete_task', task_id)

    async def add_task_tag(self, task_id: str, tag: str) -> None:
        await self._call('add_task_tag', task_id, tag)

    async def remove_task_tag(self, task_id: str, tag: str) -> None:
        await self._call('remove_task_tag', task_id, tag)

    # --- Komentarze ---
    async def list_comments(self, task_id: str) -> List[CommentEntity]:
        rows = await self._call('list_comments', task_id)
        return self._entities(CommentEntity.from_record, rows, 'comments')

    async def create_comment(self, task_id: str, content: str, user_id: str) -> CommentEntity:
        created = await self._call('create_comment', task_id, content, user_id)
        return self._entity(CommentEntity.from_record, created, 'create_comment')

    async def get_profile(self, user_id: str) -> dict:
        return await self._call('get_profile', user_id)


class SupabaseChangeFeed(IChangeFeed):
    """Kanały postgres_changes z Supabase Realtime."""

    def __init__(self, url: str, key: str, schema: str = 'public'):
        self.url = url
        self.key = key
        self.schema = schema
        self._client: Optional[AsyncClient] = None

    async def _get_client(self) -> AsyncClient:
        if self._client is None:
            self._client = await acreate_client(self.url, self.key)
        return self._client

    async def subscribe(self, spec: ChannelSpec, on_change: ChangeCallback,
                        on_status: StatusCallback) -> Any:
        try:
            client = await self._get_client()
            channel = client.channel(spec.name)
            options = {'table': spec.table, 'schema': self.schema}
            if spec.filter:
                options['filter'] = spec.filter
            channel.on_postgres_changes('*', callback=on_change, **options)
            await channel.subscribe(on_status)
        except Exception as exc:
            log_api('realtime_subscribe', exc, channel=spec.name)
            raise RemoteError.from_exception(exc) from exc
        logger.info("Kanał %s (%s) otwarty", spec.name, spec.table)
        return channel

    async def unsubscribe(self, handle: Any) -> None:
        if self._client is None:
            return
        try:
            await self._client.remove_channel(handle)
        except Exception as exc:
            raise RemoteError.from_exception(exc) from exc


def build_session(user_id: str, realtime: bool = True):
    """Sesja tablicy na kluczu publicznym (jak przeglądarka użytkownika)."""
    remote = SupabaseRemoteClient(get_public_gateway())
    feed = SupabaseChangeFeed(settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY) if realtime else None
    return BoardSession(user_id, remote, feed)
