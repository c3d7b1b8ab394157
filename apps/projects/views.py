# apps/projects/views.py
import logging

from django.http import JsonResponse

from apps.core.adapters.supabase_backend import get_admin_gateway
from apps.core.errors import ValidationError
from apps.core.http import dispatch, json_api, read_json, require
from apps.projects.domain.entities import DEFAULT_COLOR, ProjectEntity

logger = logging.getLogger(__name__)


def _list_projects(request):
    """Lista projektów użytkownika z podsumowaniem zadań."""
    gateway = get_admin_gateway()
    owner_id = require(request.GET.get('userId'), 'User ID is required')
    rows = gateway.list_projects(owner_id=owner_id)
    projects = [ProjectEntity.from_record(row).to_dict() for row in rows]
    logger.info("Pobrano %d projektów dla %s", len(projects), owner_id)
    return JsonResponse(projects, safe=False)


def _create_project(request):
    body = read_json(request)
    # Klucz service role sprawdzamy przed jakimkolwiek zapisem
    gateway = get_admin_gateway()
    row = {
        'name': require(str(body.get('name') or '').strip(), 'Project name is required'),
        'description': body.get('description') or '',
        'color': body.get('color') or DEFAULT_COLOR,
        'due_date': body.get('due_date') or None,
        'owner_id': require(body.get('owner_id'), 'Owner ID is required'),
    }
    created = gateway.create_project(row)
    logger.info("Utworzono projekt %s", created.get('id'))
    return JsonResponse(ProjectEntity.from_record(created).to_dict())


def _update_project(request):
    gateway = get_admin_gateway()
    project_id = require(request.GET.get('id'), 'Project ID is required')
    body = read_json(request)
    updates = {k: v for k, v in body.items() if k in ProjectEntity.WRITABLE}
    if not updates:
        raise ValidationError('No updatable fields provided')
    updated = gateway.update_project(project_id, updates)
    return JsonResponse(ProjectEntity.from_record(updated).to_dict())


def _delete_project(request):
    gateway = get_admin_gateway()
    project_id = require(request.GET.get('id'), 'Project ID is required')
    gateway.delete_project(project_id)
    logger.info("Usunięto projekt %s", project_id)
    return JsonResponse({'success': True})


@json_api('API_projects')
def projects_api(request):
    return dispatch(request, {
        'GET': _list_projects,
        'POST': _create_project,
        'PUT': _update_project,
        'DELETE': _delete_project,
    })
