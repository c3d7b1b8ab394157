import asyncio

import pytest

from apps.board.adapters.memory_remote import InMemoryChangeFeed, InMemoryRemoteClient
from apps.board.application.session import BoardSession

USER_ID = 'user-1'
OTHER_USER_ID = 'user-2'


@pytest.fixture
def feed():
    return InMemoryChangeFeed()


@pytest.fixture
def remote(feed):
    """Backend w pamięci, który rozgłasza zdarzenia o własnych zapisach."""
    return InMemoryRemoteClient(feed=feed)


@pytest.fixture
def board(remote):
    """Backend z jednym projektem i dwoma zadaniami (jedno ukończone)."""
    project = remote.seed_project(id='p-alpha', name='Alpha', owner_id=USER_ID)
    remote.seed_task(id='t-open', title='Open task', project_id=project['id'], tags=['ui'])
    remote.seed_task(id='t-done', title='Done task', project_id=project['id'], status='done')
    remote.profiles[USER_ID] = {'id': USER_ID, 'name': 'Ada', 'avatar_url': None}
    return remote


@pytest.fixture
def make_session(remote, feed):
    def factory(with_feed=True, **options):
        options.setdefault('reload_delay', 0.01)
        options.setdefault('reconnect_base', 0.01)
        options.setdefault('reconnect_max', 0.05)
        return BoardSession(USER_ID, remote, feed if with_feed else None, **options)
    return factory


@pytest.fixture
def run():
    """Uruchamia scenariusz asynchroniczny w świeżej pętli."""
    def runner(coro):
        return asyncio.run(coro)
    return runner
