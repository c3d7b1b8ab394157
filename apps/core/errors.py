# apps/core/errors.py
import logging
from typing import Any, Optional

logger = logging.getLogger('taskflow.errors')

# Kod Postgresa zgłaszany przy rekurencji polityk RLS
RLS_RECURSION_CODE = '42P17'


class ConfigurationError(Exception):
    """Brakuje wymaganej konfiguracji (np. klucza service role)."""

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint


class ValidationError(ValueError):
    """Błędne lub niekompletne dane wejściowe - zgłaszane przed wywołaniem backendu."""


class RemoteError(Exception):
    """Znormalizowany błąd zwrócony przez backend (postgrest / realtime / sieć)."""

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[str] = None,
                 hint: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details
        self.hint = hint
        self.status = status

    @classmethod
    def from_exception(cls, exc: Exception) -> 'RemoteError':
        if isinstance(exc, cls):
            return exc
        # postgrest.APIError ma pola message/code/details/hint
        message = getattr(exc, 'message', None) or str(exc) or exc.__class__.__name__
        return cls(
            message=message,
            code=getattr(exc, 'code', None),
            details=getattr(exc, 'details', None),
            hint=getattr(exc, 'hint', None),
        )

    @property
    def is_rls_recursion(self) -> bool:
        return self.code == RLS_RECURSION_CODE

    def __str__(self):
        return self.message


def describe(error: Any) -> dict:
    """Serializuje wyjątek do słownika nadającego się do logów."""
    if isinstance(error, RemoteError):
        return {'name': 'RemoteError', 'message': error.message, 'code': error.code,
                'details': error.details, 'hint': error.hint}
    if isinstance(error, BaseException):
        return {'name': error.__class__.__name__, 'message': str(error)}
    return {'value': repr(error)}


def log_database(operation: str, error: Any, **context) -> None:
    logger.error("[DATABASE] %s: %s context=%s", operation, describe(error), context)


def log_api(operation: str, error: Any, **context) -> None:
    logger.error("[API] %s: %s context=%s", operation, describe(error), context,
                 exc_info=error if isinstance(error, BaseException) else None)
