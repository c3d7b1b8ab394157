import pytest

from apps.board.application.coordinator import DELETED_BEFORE_CONFIRMATION, SESSION_CLOSED, SUPERSEDED
from apps.core.domain.records import SyncState
from apps.projects.domain.entities import TaskSummary
from apps.tasks.domain.entities import TaskStatus

from .conftest import OTHER_USER_ID, USER_ID


def ids(entities):
    return [e.id for e in entities]


class TestProjectMutations:
    def test_create_is_visible_immediately_and_swapped_on_success(self, board, make_session, run):
        async def scenario():
            session = make_session(with_feed=False)
            await session.start()

            mutation = session.create_project('Beta', description='Second project')
            temp = mutation.entity
            assert temp.is_temporary
            assert temp.sync_state == SyncState.PENDING
            assert session.projects[0].id == temp.id

            result = await mutation

            assert result.ok
            assert result.entity.id == 'p1'
            assert result.entity.sync_state == SyncState.SYNCED
            assert ids(session.projects).count('p1') == 1
            assert temp.id not in ids(session.projects)
            await session.close()

        run(scenario())

    def test_create_failure_keeps_entity_flagged_failed(self, board, make_session, run):
        async def scenario():
            session = make_session(with_feed=False)
            await session.start()
            board.fail('create_project', 'permission denied for table projects', code='42501')

            mutation = session.create_project('Beta')
            result = await mutation

            assert not result.ok
            assert result.reason == 'permission denied for table projects'
            assert result.error.code == '42501'
            failed = session.project(mutation.entity.id)
            assert failed is not None
            assert failed.sync_state == SyncState.FAILED
            await session.close()

        run(scenario())

    def test_blank_name_is_rejected_without_cache_write(self, board, make_session, run):
        async def scenario():
            session = make_session(with_feed=False)
            await session.start()

            result = await session.create_project('   ')

            assert not result.ok
            assert ids(session.projects) == ['p-alpha']
            assert board.called('create_project') == []
            await session.close()

        run(scenario())

    def test_edits_made_before_confirmation_are_sent_afterwards(self, board, make_session, run):
        async def scenario():
            session = make_session(with_feed=False)
            await session.start()
            board.hold()

            mutation = session.create_project('Draft')
            local = await session.update_project(mutation.entity.id, name='Final', color='from-red-500 to-pink-500')
            assert local.ok
            assert session.project(mutation.entity.id).name == 'Final'
            board.release()

            result = await mutation

            assert result.ok
            assert result.entity.name == 'Final'
            assert board.projects['p1']['name'] == 'Final'
            assert board.projects['p1']['color'] == 'from-red-500 to-pink-500'
            await session.close()

        run(scenario())

    def test_update_failure_rolls_back(self, board, make_session, run):
        async def scenario():
            session = make_session(with_feed=False)
            await session.start()
            board.fail('update_project')

            mutation = session.update_project('p-alpha', name='Renamed')
            assert session.project('p-alpha').name == 'Renamed'
            result = await mutation

            assert not result.ok
            assert session.project('p-alpha').name == 'Alpha'
            await session.close()

        run(scenario())

    def test_delete_drops_task_scope(self, board, make_session, run):
        async def scenario():
            session = make_session(with_feed=False)
            await session.start()
            await session.load_tasks('p-alpha')

            mutation = session.delete_project('p-alpha')
            assert session.project('p-alpha') is None
            assert session.tasks_for('p-alpha') == ()
            result = await mutation

            assert result.ok
            assert 'p-alpha' not in board.projects
            await session.close()

        run(scenario())

    def test_delete_before_create_confirms_discards_and_compensates(self, board, make_session, run):
        async def scenario():
            session = make_session()
            await session.start()
            board.hold()

            created = session.create_project('Racy')
            deleted = await session.delete_project(created.entity.id)
            assert deleted.ok
            assert ids(session.projects) == ['p-alpha']

            board.release()
            result = await created

            assert not result.ok
            assert result.superseded
            assert result.reason == DELETED_BEFORE_CONFIRMATION
            assert ids(session.projects) == ['p-alpha']
            assert 'p1' not in board.projects
            assert board.called('delete_project') == [('p1',)]
            await session.close()

        run(scenario())

    def test_delete_failure_restores_project_and_tasks(self, board, make_session, run):
        async def scenario():
            session = make_session(with_feed=False)
            await session.start()
            await session.load_tasks('p-alpha')
            board.fail('delete_project')

            result = await session.delete_project('p-alpha')

            assert not result.ok
            assert session.project('p-alpha') is not None
            assert set(ids(session.tasks_for('p-alpha'))) == {'t-open', 't-done'}
            assert session.project('p-alpha').tasks == TaskSummary(total=2, completed=1)
            await session.close()

        run(scenario())


class TestTaskMutations:
    def test_create_with_realtime_echo_leaves_single_copy(self, board, make_session, run):
        async def scenario():
            session = make_session()
            await session.start()
            await session.load_tasks('p-alpha')

            mutation = session.create_task('p-alpha', 'New task', tags=['backend'])
            assert session.tasks_for('p-alpha')[0].id == mutation.entity.id
            assert session.project('p-alpha').tasks.total == 3

            result = await mutation

            assert result.ok
            tasks = session.tasks_for('p-alpha')
            assert ids(tasks).count('t1') == 1
            assert not any(t.is_temporary for t in tasks)
            assert session.task('p-alpha', 't1').tags == ('backend',)
            assert board.task_tags['t1'] == ['backend']
            assert session.project('p-alpha').tasks == TaskSummary(total=3, completed=1)
            await session.close()

        run(scenario())

    def test_create_on_unsaved_project_is_rejected(self, board, make_session, run):
        async def scenario():
            session = make_session(with_feed=False)
            await session.start()
            board.hold()
            project = session.create_project('Pending').entity
            await session.load_tasks(project.id)

            result = await session.create_task(project.id, 'Too early')

            assert not result.ok
            assert session.tasks_for(project.id) == ()
            assert board.called('create_task') == []
            board.release()
            await session.coordinator.drain()
            await session.close()

        run(scenario())

    def test_delete_before_create_confirms_discards_and_compensates(self, board, make_session, run):
        async def scenario():
            session = make_session()
            await session.start()
            await session.load_tasks('p-alpha')
            board.hold()

            created = session.create_task('p-alpha', 'Racy')
            deleted = await session.delete_task(created.entity.id)
            assert deleted.ok
            assert created.entity.id not in ids(session.tasks_for('p-alpha'))

            board.release()
            result = await created

            assert not result.ok
            assert result.superseded
            assert result.reason == DELETED_BEFORE_CONFIRMATION
            assert 't1' not in ids(session.tasks_for('p-alpha'))
            assert 't1' not in board.tasks
            assert board.called('delete_task') == [('t1',)]
            assert session.project('p-alpha').tasks == TaskSummary(total=2, completed=1)
            await session.close()

        run(scenario())

    def test_delete_failure_restores_task(self, board, make_session, run):
        async def scenario():
            session = make_session(with_feed=False)
            await session.start()
            await session.load_tasks('p-alpha')
            board.fail('delete_task')

            mutation = session.delete_task('t-done')
            assert session.task('p-alpha', 't-done') is None
            assert session.project('p-alpha').tasks == TaskSummary(total=1, completed=0)
            result = await mutation

            assert not result.ok
            assert session.task('p-alpha', 't-done') is not None
            assert session.project('p-alpha').tasks == TaskSummary(total=2, completed=1)
            await session.close()

        run(scenario())

    def test_status_change_rolls_back_on_failure(self, board, make_session, run):
        async def scenario():
            session = make_session(with_feed=False)
            await session.start()
            await session.load_tasks('p-alpha')
            board.fail('update_task')

            mutation = session.update_task('t-open', status='done')
            assert session.task('p-alpha', 't-open').status == TaskStatus.DONE
            assert session.task('p-alpha', 't-open').completed_at is not None
            assert session.project('p-alpha').tasks.completed == 2
            result = await mutation

            assert not result.ok
            task = session.task('p-alpha', 't-open')
            assert task.status == TaskStatus.TODO
            assert task.completed_at is None
            assert session.project('p-alpha').tasks.completed == 1
            await session.close()

        run(scenario())

    def test_older_response_is_superseded_by_newer_update(self, board, make_session, run):
        async def scenario():
            session = make_session(with_feed=False)
            await session.start()
            await session.load_tasks('p-alpha')
            board.hold()

            first = session.update_task('t-open', title='First')
            second = session.update_task('t-open', title='Second')
            board.release()

            first_result = await first
            second_result = await second

            assert not first_result.ok
            assert first_result.superseded
            assert first_result.reason == SUPERSEDED
            assert second_result.ok
            assert session.task('p-alpha', 't-open').title == 'Second'
            await session.close()

        run(scenario())

    def test_temporary_task_edits_and_tags_follow_creation(self, board, make_session, run):
        async def scenario():
            session = make_session(with_feed=False)
            await session.start()
            await session.load_tasks('p-alpha')
            board.hold()

            created = session.create_task('p-alpha', 'Draft')
            temp_id = created.entity.id
            assert (await session.update_task(temp_id, title='Polished')).ok
            assert (await session.add_tag(temp_id, 'docs')).ok
            assert board.called('update_task') == []
            assert board.called('add_task_tag') == []
            board.release()

            result = await created

            assert result.ok
            assert result.entity.title == 'Polished'
            assert result.entity.tags == ('docs',)
            assert board.tasks['t1']['title'] == 'Polished'
            assert board.task_tags['t1'] == ['docs']
            await session.close()

        run(scenario())

    def test_unloaded_scope_summary_is_shifted(self, board, make_session, run):
        async def scenario():
            session = make_session(with_feed=False)
            await session.start()

            mutation = session.create_task('p-alpha', 'Blind', status='done')
            assert session.project('p-alpha').tasks == TaskSummary(total=3, completed=2)
            result = await mutation

            assert result.ok
            assert session.project('p-alpha').tasks == TaskSummary(total=3, completed=2)
            await session.close()

        run(scenario())

    def test_unloaded_scope_summary_restored_when_temp_task_deleted(self, board, make_session, run):
        async def scenario():
            session = make_session(with_feed=False)
            await session.start()
            board.hold()

            created = session.create_task('p-alpha', 'Ghost')
            assert session.project('p-alpha').tasks == TaskSummary(total=3, completed=1)
            await session.delete_task(created.entity.id)
            assert session.project('p-alpha').tasks == TaskSummary(total=2, completed=1)

            board.release()
            result = await created
            await session.coordinator.drain()

            assert result.reason == DELETED_BEFORE_CONFIRMATION
            assert session.project('p-alpha').tasks == TaskSummary(total=2, completed=1)
            assert len(board.tasks) == 2
            await session.close()

        run(scenario())

    def test_unloaded_scope_summary_restored_when_create_fails(self, board, make_session, run):
        async def scenario():
            session = make_session(with_feed=False)
            await session.start()
            board.fail('create_task')

            result = await session.create_task('p-alpha', 'Rejected', status='done')

            assert not result.ok
            assert session.project('p-alpha').tasks == TaskSummary(total=2, completed=1)
            await session.close()

        run(scenario())

    def test_assignee_object_sets_assignee_id(self, board, make_session, run):
        async def scenario():
            session = make_session(with_feed=False)
            await session.start()
            await session.load_tasks('p-alpha')

            mutation = session.update_task('t-open', assignee={'id': USER_ID, 'name': 'Ada'})
            assert session.task('p-alpha', 't-open').assignee.name == 'Ada'
            result = await mutation

            assert result.ok
            assert board.tasks['t-open']['assignee_id'] == USER_ID
            assert session.task('p-alpha', 't-open').assignee_id == USER_ID

            cleared = await session.update_task('t-open', assignee=None)
            assert cleared.ok
            assert board.tasks['t-open']['assignee_id'] is None
            assert session.task('p-alpha', 't-open').assignee is None
            await session.close()

        run(scenario())

    def test_temporary_ids_leave_no_stamps_behind(self, board, make_session, run):
        async def scenario():
            session = make_session(with_feed=False)
            await session.start()
            await session.load_tasks('p-alpha')
            board.hold()

            created = session.create_task('p-alpha', 'Draft')
            await session.update_task(created.entity.id, title='Better')
            await session.add_tag(created.entity.id, 'docs')
            board.release()
            assert (await created).ok
            await session.coordinator.drain()

            assert session.coordinator._stamps == {}
            assert session.coordinator._creating == {}
            await session.close()

        run(scenario())


class TestTagsAndComments:
    def test_add_tag_success_and_duplicate_is_noop(self, board, make_session, run):
        async def scenario():
            session = make_session(with_feed=False)
            await session.start()
            await session.load_tasks('p-alpha')

            result = await session.add_tag('t-open', '  urgent ')
            duplicate = await session.add_tag('t-open', 'urgent')
            empty = await session.add_tag('t-open', '   ')

            assert result.ok
            assert duplicate.ok
            assert not empty.ok
            assert session.task('p-alpha', 't-open').tags == ('ui', 'urgent')
            assert board.called('add_task_tag') == [('t-open', 'urgent')]
            await session.close()

        run(scenario())

    def test_tag_failure_is_rolled_back(self, board, make_session, run):
        async def scenario():
            session = make_session(with_feed=False)
            await session.start()
            await session.load_tasks('p-alpha')
            board.fail('remove_task_tag')

            mutation = session.remove_tag('t-open', 'ui')
            assert session.task('p-alpha', 't-open').tags == ()
            result = await mutation

            assert not result.ok
            assert session.task('p-alpha', 't-open').tags == ('ui',)
            await session.close()

        run(scenario())

    def test_comment_is_swapped_and_counted_once(self, board, make_session, run):
        async def scenario():
            session = make_session()
            await session.start()
            await session.load_tasks('p-alpha')
            await session.load_comments('t-open')

            mutation = session.add_comment('t-open', ' Looks good ')
            assert ids(session.comments_for('t-open')) == [mutation.entity.id]
            assert session.task('p-alpha', 't-open').comment_count == 1
            result = await mutation

            assert result.ok
            assert ids(session.comments_for('t-open')) == ['c1']
            assert session.comments_for('t-open')[0].content == 'Looks good'
            assert session.comments_for('t-open')[0].author == 'Ada'
            assert session.task('p-alpha', 't-open').comment_count == 1
            await session.close()

        run(scenario())

    def test_comment_failure_is_removed(self, board, make_session, run):
        async def scenario():
            session = make_session(with_feed=False)
            await session.start()
            await session.load_tasks('p-alpha')
            await session.load_comments('t-open')
            board.fail('create_comment')

            result = await session.add_comment('t-open', 'Lost')

            assert not result.ok
            assert session.comments_for('t-open') == ()
            assert session.task('p-alpha', 't-open').comment_count == 0
            await session.close()

        run(scenario())


class TestSessionLifecycle:
    def test_completion_after_close_does_not_touch_cache(self, board, make_session, run):
        async def scenario():
            session = make_session()
            await session.start()
            board.hold()

            mutation = session.create_project('Late')
            await session.close()
            board.release()
            result = await mutation

            assert not result.ok
            assert result.superseded
            assert mutation.entity.id in ids(session.projects)
            assert 'p1' not in ids(session.projects)

            after_close = await session.create_task('p-alpha', 'Nope')
            assert after_close.reason == SESSION_CLOSED

        run(scenario())

    def test_full_load_keeps_pending_local_projects(self, board, make_session, run):
        async def scenario():
            session = make_session(with_feed=False)
            await session.start()
            board.hold()
            pending = session.create_project('Pending')

            board.release()
            await session.load_projects()
            assert pending.entity.id in ids(session.projects)

            result = await pending
            assert result.ok
            assert ids(session.projects).count('p1') == 1
            assert session.last_refresh is not None
            assert not session.is_loading
            await session.close()

        run(scenario())

    def test_watch_reports_cache_changes(self, board, make_session, run):
        async def scenario():
            session = make_session(with_feed=False)
            seen = []
            receiver = session.watch(lambda store, scope, action, entity_id: seen.append((store, action)))
            await session.start()
            session.unwatch(receiver)
            await session.load_tasks('p-alpha')

            assert ('projects', 'load') in seen
            assert ('tasks', 'load') not in seen
            await session.close()

        run(scenario())

    def test_intent_without_event_loop_leaves_cache_untouched(self, board, make_session):
        session = make_session(with_feed=False)

        with pytest.raises(RuntimeError):
            session.create_project('Offline')

        assert session.projects == ()
        assert session.coordinator._creating == {}
        assert board.called('create_project') == []

    def test_profile_name_is_used_as_comment_author(self, board, make_session, run):
        async def scenario():
            session = make_session(with_feed=False)
            await session.start()
            await session.load_tasks('p-alpha')

            assert (await session.load_profile()).ok
            mutation = session.add_comment('t-open', 'Signed')

            assert session.profile['name'] == 'Ada'
            assert mutation.entity.author == 'Ada'
            assert (await mutation).ok
            await session.close()

        run(scenario())


class TestCommentEchoes:
    def test_early_echo_is_skipped_and_forgotten(self, board, make_session, run):
        async def scenario():
            session = make_session()
            await session.start()
            await session.load_tasks('p-alpha')
            await session.load_comments('t-open')

            result = await session.add_comment('t-open', 'Echoed during the call')

            assert result.ok
            assert ids(session.comments_for('t-open')) == ['c1']
            assert session.task('p-alpha', 't-open').comment_count == 1
            assert session.coordinator._confirmed_comments == set()
            assert session.coordinator._early_echoes == {}
            assert not session.coordinator.has_pending_comments('t-open')
            await session.close()

        run(scenario())

    def test_late_echo_is_claimed_once(self, board, feed, make_session, run):
        async def scenario():
            session = make_session()
            await session.start()
            await session.load_tasks('p-alpha')
            board.feed = None

            result = await session.add_comment('t-open', 'Echo arrives later')
            assert session.coordinator._confirmed_comments == {'c1'}

            feed.emit('comments', 'INSERT', new={
                'id': 'c1', 'task_id': 't-open', 'content': 'Echo arrives later', 'user_id': USER_ID,
            })

            assert result.ok
            assert session.task('p-alpha', 't-open').comment_count == 1
            assert session.coordinator._confirmed_comments == set()
            await session.close()

        run(scenario())

    def test_other_users_comment_counts_while_own_is_pending(self, board, feed, make_session, run):
        async def scenario():
            session = make_session()
            await session.start()
            await session.load_tasks('p-alpha')
            board.hold()

            mutation = session.add_comment('t-open', 'Mine')
            feed.emit('comments', 'INSERT', new={
                'id': 'c-other', 'task_id': 't-open', 'content': 'Theirs', 'user_id': OTHER_USER_ID,
            })
            assert session.task('p-alpha', 't-open').comment_count == 2

            board.release()
            assert (await mutation).ok
            assert session.task('p-alpha', 't-open').comment_count == 2
            await session.close()

        run(scenario())


class TestTombstones:
    def test_delete_echo_releases_tombstone(self, board, make_session, run):
        async def scenario():
            session = make_session()
            await session.start()
            await session.load_tasks('p-alpha')
            board.hold()

            mutation = session.delete_task('t-open')
            assert session.coordinator.is_tombstoned('t-open')
            board.release()
            assert (await mutation).ok

            assert not session.coordinator.is_tombstoned('t-open')
            assert session.project('p-alpha').tasks == TaskSummary(total=1, completed=1)
            await session.close()

        run(scenario())
