# apps/core/views.py
from django.http import JsonResponse
from django.utils import timezone

from apps.core.adapters.supabase_backend import get_public_gateway
from apps.core.errors import ValidationError
from apps.core.http import dispatch, json_api, read_json, require


def _clean(value):
    """Przycina stringi; pusty string -> None."""
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _get_profile(request):
    user_id = require(request.GET.get('userId'), 'User ID required')
    gateway = get_public_gateway()
    return JsonResponse(gateway.get_profile(user_id))


def _replace_profile(request):
    body = read_json(request)
    user_id = body.get('userId')
    name, email = body.get('name'), body.get('email')
    if not _clean(user_id) or not _clean(name) or not _clean(email):
        raise ValidationError('User ID, name and email are required')

    updates = {
        'name': _clean(name),
        'email': _clean(email),
        'avatar_url': _clean(body.get('avatar_url')),
        'updated_at': timezone.now().isoformat(),
    }
    gateway = get_public_gateway()
    return JsonResponse(gateway.update_profile(user_id, updates))


def _patch_profile(request):
    body = read_json(request)
    user_id = require(body.get('userId'), 'User ID required')

    # Tylko pola, które faktycznie przyszły w żądaniu
    updates = {'updated_at': timezone.now().isoformat()}
    for field in ('name', 'email'):
        if field in body:
            updates[field] = _clean(body[field]) or ''
    if 'avatar_url' in body:
        updates['avatar_url'] = _clean(body['avatar_url'])

    gateway = get_public_gateway()
    return JsonResponse(gateway.update_profile(user_id, updates))


@json_api('API_profile')
def profile_api(request):
    return dispatch(request, {
        'GET': _get_profile,
        'PUT': _replace_profile,
        'PATCH': _patch_profile,
    })
