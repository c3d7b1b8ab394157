# apps/tasks/views.py
import logging

from django.http import JsonResponse

from apps.core.adapters.supabase_backend import get_admin_gateway
from apps.core.errors import ValidationError
from apps.core.http import dispatch, json_api, read_json, require
from apps.tasks.domain.entities import CommentEntity, TaskEntity, normalize_tag

logger = logging.getLogger(__name__)


def _writable(body: dict) -> dict:
    return {k: v for k, v in body.items() if k in TaskEntity.WRITABLE}


# --- Zadania ---

def _list_tasks(request):
    gateway = get_admin_gateway()
    project_id = require(request.GET.get('projectId'), 'Project ID is required')
    rows = gateway.list_tasks(project_id)
    # Transformacja: task_tags -> tags, comments(count) -> liczba, profil -> assignee
    tasks = [TaskEntity.from_record(row).to_dict() for row in rows]
    logger.info("Pobrano %d zadań projektu %s", len(tasks), project_id)
    return JsonResponse(tasks, safe=False)


def _create_task(request):
    body = read_json(request)
    gateway = get_admin_gateway()
    row = _writable(body)
    row['title'] = str(require(body.get('title'), 'Task title is required')).strip()
    require(body.get('project_id'), 'Project ID is required')
    created = gateway.create_task(row)
    logger.info("Utworzono zadanie %s w projekcie %s", created.get('id'), row['project_id'])
    return JsonResponse(TaskEntity.from_record(created).to_dict())


def _update_task(request):
    gateway = get_admin_gateway()
    task_id = require(request.GET.get('id'), 'Task ID is required')
    updates = _writable(read_json(request))
    if not updates:
        raise ValidationError('No updatable fields provided')
    updated = gateway.update_task(task_id, updates)
    return JsonResponse(TaskEntity.from_record(updated).to_dict())


def _delete_task(request):
    gateway = get_admin_gateway()
    task_id = require(request.GET.get('id'), 'Task ID is required')
    gateway.delete_task(task_id)
    logger.info("Usunięto zadanie %s", task_id)
    return JsonResponse({'success': True})


@json_api('API_tasks')
def tasks_api(request):
    return dispatch(request, {
        'GET': _list_tasks,
        'POST': _create_task,
        'PUT': _update_task,
        'DELETE': _delete_task,
    })


# --- Tagi ---

def _add_tag(request):
    body = read_json(request)
    task_id = require(body.get('taskId'), 'Task ID and tag are required')
    tag = require(normalize_tag(body.get('tag')), 'Task ID and tag are required')
    gateway = get_admin_gateway()
    return JsonResponse(gateway.add_task_tag(task_id, tag))


def _remove_tag(request):
    task_id = require(request.GET.get('taskId'), 'Task ID and tag are required')
    tag = require(normalize_tag(request.GET.get('tag')), 'Task ID and tag are required')
    gateway = get_admin_gateway()
    gateway.remove_task_tag(task_id, tag)
    return JsonResponse({'success': True})


@json_api('API_taskTags')
def task_tags_api(request):
    return dispatch(request, {'POST': _add_tag, 'DELETE': _remove_tag})


# --- Komentarze ---

def _list_comments(request):
    gateway = get_admin_gateway()
    task_id = require(request.GET.get('taskId'), 'Task ID is required')
    comments = [CommentEntity.from_record(row).to_dict() for row in gateway.list_comments(task_id)]
    return JsonResponse(comments, safe=False)


def _create_comment(request):
    body = read_json(request)
    gateway = get_admin_gateway()
    task_id = require(body.get('taskId'), 'Task ID is required')
    content = str(require(body.get('content'), 'Comment content is required')).strip()
    user_id = require(body.get('userId'), 'User ID is required')
    created = gateway.create_comment(task_id, content, user_id)
    return JsonResponse(CommentEntity.from_record(created).to_dict())


@json_api('API_comments')
def comments_api(request):
    return dispatch(request, {'GET': _list_comments, 'POST': _create_comment})
