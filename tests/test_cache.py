import pytest

from apps.board.domain.cache import LocalCacheStore
from apps.board.signals import cache_changed
from apps.core.domain.records import SyncState
from apps.tasks.domain.entities import TaskEntity, TaskStatus


def make_task(task_id, project_id='p1', **fields):
    fields.setdefault('title', f'Task {task_id}')
    return TaskEntity(id=task_id, project_id=project_id, **fields)


@pytest.fixture
def store():
    return LocalCacheStore('tasks')


@pytest.fixture
def events(store):
    received = []

    def receiver(sender, scope, action, entity_id=None, **kwargs):
        received.append((scope, action, entity_id))

    cache_changed.connect(receiver, sender=store, weak=False)
    yield received
    cache_changed.disconnect(receiver, sender=store)


class TestLocalCacheStore:
    def test_load_then_read_returns_same_sequence(self, store):
        tasks = [make_task('a'), make_task('b'), make_task('c')]
        store.load('p1', tasks)

        assert store.items('p1') == tuple(tasks)
        assert store.is_loaded('p1')
        assert not store.is_loaded('p2')

    def test_last_load_wins(self, store):
        store.load('p1', [make_task('a')])
        store.load('p1', [make_task('b')])

        assert [t.id for t in store.items('p1')] == ['b']

    def test_insert_prepends_without_dedupe(self, store):
        store.load('p1', [make_task('a')])
        store.insert('p1', make_task('b'))
        store.insert('p1', make_task('b', title='again'))

        assert [t.id for t in store.items('p1')] == ['b', 'b', 'a']

    def test_insert_into_unknown_scope_creates_it_but_not_as_loaded(self, store):
        store.insert('p9', make_task('x'))

        assert [t.id for t in store.items('p9')] == ['x']
        assert not store.is_loaded('p9')

    def test_remove_returns_removed_entity(self, store):
        store.load('p1', [make_task('a'), make_task('b')])

        removed = store.remove('p1', 'a')

        assert removed.id == 'a'
        assert [t.id for t in store.items('p1')] == ['b']

    def test_remove_missing_id_is_noop(self, store, events):
        store.load('p1', [make_task('a')])
        events.clear()

        assert store.remove('p1', 'zzz') is None
        assert store.remove('nope', 'a') is None
        assert events == []
        assert len(store.items('p1')) == 1

    def test_patch_merges_fields(self, store):
        store.load('p1', [make_task('a', description='old')])

        patched = store.patch('p1', 'a', {'status': 'done', 'title': 'Renamed'})

        assert patched.status == TaskStatus.DONE
        assert patched.title == 'Renamed'
        assert patched.description == 'old'
        assert store.get('p1', 'a') == patched

    def test_patch_ignores_unknown_fields_and_id(self, store):
        store.load('p1', [make_task('a')])

        patched = store.patch('p1', 'a', {'id': 'b', 'bogus': 1, 'sync_state': SyncState.FAILED})

        assert patched.id == 'a'
        assert patched.sync_state == SyncState.FAILED

    def test_patch_missing_is_noop(self, store, events):
        store.load('p1', [make_task('a')])
        events.clear()

        assert store.patch('p1', 'zzz', {'title': 'x'}) is None
        assert store.patch('p2', 'a', {'title': 'x'}) is None
        assert events == []

    def test_items_snapshot_is_not_mutated_by_later_writes(self, store):
        store.load('p1', [make_task('a')])
        snapshot = store.items('p1')

        store.insert('p1', make_task('b'))
        store.patch('p1', 'a', {'title': 'changed'})

        assert [t.id for t in snapshot] == ['a']
        assert snapshot[0].title == 'Task a'

    def test_append_and_locate(self, store):
        store.load('p1', [make_task('a')])
        store.append('p1', make_task('z'))

        assert [t.id for t in store.items('p1')] == ['a', 'z']
        assert store.locate('z') == 'p1'
        assert store.locate('missing') is None

    def test_drop_forgets_scope(self, store):
        store.load('p1', [make_task('a')])

        dropped = store.drop('p1')

        assert [t.id for t in dropped] == ['a']
        assert store.items('p1') == ()
        assert not store.is_loaded('p1')
        assert store.loaded_scopes() == ()

    def test_every_mutation_notifies(self, store, events):
        store.load('p1', [make_task('a')])
        store.insert('p1', make_task('b'))
        store.patch('p1', 'b', {'title': 'B'})
        store.remove('p1', 'a')
        store.drop('p1')

        assert events == [
            ('p1', 'load', None),
            ('p1', 'insert', 'b'),
            ('p1', 'patch', 'b'),
            ('p1', 'remove', 'a'),
            ('p1', 'drop', None),
        ]
