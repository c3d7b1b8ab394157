# apps/core/adapters/supabase_backend.py
import logging
from functools import lru_cache
from typing import List, Optional

from django.conf import settings
from postgrest.exceptions import APIError
from supabase import Client, ClientOptions, create_client

from apps.core.errors import ConfigurationError, RemoteError, log_database
from apps.core.ports.backend import IBackendGateway

logger = logging.getLogger(__name__)

# Zapytania zagnieżdżone - te same relacje, z których korzysta widok tablicy
PROJECT_SELECT = '*, tasks(status)'
TASK_SELECT = (
    '*, '
    'assignee:profiles!tasks_assignee_id_fkey(id, name, avatar_url), '
    'task_tags(tag), '
    'comments(count)'
)
COMMENT_SELECT = '*, profiles(id, name, avatar_url)'

# PostgREST: "JSON object requested, multiple (or no) rows returned"
NOT_FOUND_CODE = 'PGRST116'


class SupabaseGateway(IBackendGateway):
    def __init__(self, client: Client):
        self.client = client

    def _run(self, operation: str, query) -> list:
        """Wykonuje zapytanie i tłumaczy błędy postgresta na RemoteError."""
        try:
            response = query.execute()
        except APIError as exc:
            error = RemoteError.from_exception(exc)
            log_database(operation, error)
            raise error from exc
        return response.data or []

    def _one(self, operation: str, query) -> dict:
        rows = self._run(operation, query)
        if not rows:
            raise RemoteError('Record not found', code=NOT_FOUND_CODE, status=404)
        return rows[0]

    # --- Projekty ---
    def list_projects(self, owner_id: Optional[str] = None) -> List[dict]:
        query = self.client.table('projects').select(PROJECT_SELECT)
        if owner_id:
            query = query.eq('owner_id', owner_id)
        return self._run('list_projects', query.order('created_at', desc=True))

    def create_project(self, row: dict) -> dict:
        return self._one('create_project', self.client.table('projects').insert(row))

    def update_project(self, project_id: str, updates: dict) -> dict:
        query = self.client.table('projects').update(updates).eq('id', project_id)
        return self._one('update_project', query)

    def delete_project(self, project_id: str) -> None:
        self._run('delete_project', self.client.table('projects').delete().eq('id', project_id))

    # --- Zadania ---
    def list_tasks(self, project_id: str) -> List[dict]:
        query = (
            self.client.table('tasks')
            .select(TASK_SELECT)
            .eq('project_id', project_id)
            .order('created_at', desc=True)
        )
        return self._run('list_tasks', query)

    def create_task(self, row: dict) -> dict:
        return self._one('create_task', self.client.table('tasks').insert(row))

    def update_task(self, task_id: str, updates: dict) -> dict:
        return self._one('update_task', self.client.table('tasks').update(updates).eq('id', task_id))

    def delete_task(self, task_id: str) -> None:
        self._run('delete_task', self.client.table('tasks').delete().eq('id', task_id))

    def add_task_tag(self, task_id: str, tag: str) -> dict:
        query = self.client.table('task_tags').insert({'task_id': task_id, 'tag': tag})
        return self._one('add_task_tag', query)

    def remove_task_tag(self, task_id: str, tag: str) -> None:
        query = self.client.table('task_tags').delete().eq('task_id', task_id).eq('tag', tag)
        self._run('remove_task_tag', query)

    # --- Komentarze ---
    def list_comments(self, task_id: str) -> List[dict]:
        query = (
            self.client.table('comments')
            .select(COMMENT_SELECT)
            .eq('task_id', task_id)
            .order('created_at', desc=False)
        )
        return self._run('list_comments', query)

    def create_comment(self, task_id: str, content: str, user_id: str) -> dict:
        row = {'task_id': task_id, 'content': content, 'user_id': user_id}
        return self._one('create_comment', self.client.table('comments').insert(row))

    # --- Profil ---
    def get_profile(self, user_id: str) -> dict:
        query = self.client.table('profiles').select('*').eq('id', user_id).limit(1)
        return self._one('get_profile', query)

    def update_profile(self, user_id: str, updates: dict) -> dict:
        return self._one('update_profile', self.client.table('profiles').update(updates).eq('id', user_id))


@lru_cache(maxsize=4)
def _client_for(url: str, key: str) -> Client:
    logger.debug("Tworzenie klienta Supabase dla %s", url)
    return create_client(url, key, options=ClientOptions(auto_refresh_token=False, persist_session=False))


def get_admin_gateway() -> SupabaseGateway:
    """Klient z kluczem service role (omija RLS). Bez klucza - fail closed."""
    if not settings.SUPABASE_SERVICE_ROLE_KEY:
        logger.warning("Brak SUPABASE_SERVICE_ROLE_KEY - odmawiam operacji")
        raise ConfigurationError(
            'Service role key not configured',
            hint='Add SUPABASE_SERVICE_ROLE_KEY to the environment',
        )
    if not settings.SUPABASE_URL:
        raise ConfigurationError('Backend URL not configured', hint='Set SUPABASE_URL')
    return SupabaseGateway(_client_for(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY))


def get_public_gateway() -> SupabaseGateway:
    """Klient z kluczem publicznym (anon) - podlega politykom RLS."""
    if not settings.SUPABASE_URL or not settings.SUPABASE_ANON_KEY:
        raise ConfigurationError(
            'Backend not configured',
            hint='Set SUPABASE_URL and SUPABASE_ANON_KEY',
        )
    return SupabaseGateway(_client_for(settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY))
