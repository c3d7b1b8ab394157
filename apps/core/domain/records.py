# apps/core/domain/records.py
"""Wspólne helpery normalizacji wierszy z backendu.

Wszystko, co trafia do cache klienta, przechodzi przez ``from_record`` encji,
a te korzystają z funkcji poniżej. Wiersz bez wymaganych pól nie jest
"naprawiany" - rzucamy MalformedRecord.
"""
import itertools
import time
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional, Type

from dateutil.parser import isoparse

TEMP_ID_PREFIX = 'temp-'

_temp_counter = itertools.count(1)


class MalformedRecord(ValueError):
    """Wiersz z backendu nie pasuje do kształtu encji."""


class SyncState(str, Enum):
    PENDING = 'pending'  # lokalna encja czeka na potwierdzenie serwera
    SYNCED = 'synced'
    FAILED = 'failed'    # serwer odrzucił utworzenie


def new_temporary_id() -> str:
    # Licznik chroni przed kolizją dwóch kliknięć w tej samej milisekundzie
    return f"{TEMP_ID_PREFIX}{int(time.time() * 1000)}-{next(_temp_counter)}"


def is_temporary_id(entity_id: Optional[str]) -> bool:
    return bool(entity_id) and str(entity_id).startswith(TEMP_ID_PREFIX)


def required(row: dict, key: str, entity: str) -> Any:
    value = row.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise MalformedRecord(f"{entity}: missing required field '{key}'")
    return value


def text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    return str(value)


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    try:
        return isoparse(str(value))
    except (ValueError, OverflowError):
        raise MalformedRecord(f"invalid timestamp: {value!r}")


def parse_date(value: Any) -> Optional[date]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return isoparse(str(value)).date()
    except (ValueError, OverflowError):
        raise MalformedRecord(f"invalid date: {value!r}")


def isoformat(value: Optional[Any]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def coerce_enum(enum_cls: Type[Enum], value: Any, field: str, default: Optional[Enum] = None):
    if value is None:
        if default is None:
            raise MalformedRecord(f"missing {field}")
        return default
    if isinstance(value, enum_cls):
        return value
    normalized = str(value).strip().lower().replace('_', '-')
    try:
        return enum_cls(normalized)
    except ValueError:
        raise MalformedRecord(f"invalid {field}: {value!r}")


def to_wire(data: dict) -> dict:
    """Słownik pól -> JSON dla backendu (daty jako ISO, enumy jako wartości)."""
    wire = {}
    for key, value in data.items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, (date, datetime)):
            value = value.isoformat()
        elif isinstance(value, tuple):
            value = list(value)
        wire[key] = value
    return wire
