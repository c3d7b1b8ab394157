# apps/core/http.py
"""Wspólne narzędzia dla widoków JSON (/api/...).

Każdy widok owinięty w ``json_api`` zamienia wyjątki na kopertę
``{"error": ..., "details"?: ..., "hint"?: ...}`` - klient nigdy nie dostaje
stack trace'a.
"""
import json
from functools import wraps

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt

from apps.core.errors import ConfigurationError, RemoteError, ValidationError, log_api, log_database

DB_FAILURE_DETAILS = 'Database operation failed. Check server logs for details.'
RLS_RECURSION_HINT = 'RLS policy recursion detected - service role key needed'


def error_response(message, status, details=None, hint=None):
    payload = {'error': message}
    if details:
        payload['details'] = details
    if hint:
        payload['hint'] = hint
    return JsonResponse(payload, status=status)


def json_api(operation):
    """Dekorator: obsługa błędów dla endpointu JSON."""

    def decorator(view):
        @csrf_exempt
        @wraps(view)
        def wrapper(request, *args, **kwargs):
            try:
                return view(request, *args, **kwargs)
            except ValidationError as e:
                return error_response(str(e), status=400)
            except ConfigurationError as e:
                return error_response(e.message, status=500, hint=e.hint)
            except RemoteError as e:
                log_database(operation, e, method=request.method, params=dict(request.GET.items()))
                hint = RLS_RECURSION_HINT if e.is_rls_recursion else e.hint
                return error_response(e.message, status=400, details=DB_FAILURE_DETAILS, hint=hint)
            except Exception as e:
                log_api(operation, e, method=request.method)
                return error_response('Internal server error', status=500)

        return wrapper

    return decorator


def read_json(request) -> dict:
    """Parsuje ciało żądania. Pusty body = pusty słownik."""
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (TypeError, ValueError):
        raise ValidationError('Invalid JSON body')
    if not isinstance(data, dict):
        raise ValidationError('JSON body must be an object')
    return data


def require(value, message):
    """Zwraca wartość lub rzuca ValidationError (400), gdy jej brak."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(message)
    return value


def dispatch(request, handlers):
    """Wybiera handler po metodzie HTTP (jak route handlery: GET/POST/PUT/DELETE)."""
    handler = handlers.get(request.method)
    if handler is None:
        allowed = ', '.join(sorted(handlers))
        response = error_response('Method not allowed', status=405)
        response['Allow'] = allowed
        return response
    return handler(request)
