# apps/board/ports/changes.py
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional


class ChannelStatus(str, Enum):
    SUBSCRIBED = 'SUBSCRIBED'
    CHANNEL_ERROR = 'CHANNEL_ERROR'
    TIMED_OUT = 'TIMED_OUT'
    CLOSED = 'CLOSED'

    @classmethod
    def parse(cls, value) -> 'ChannelStatus':
        # Biblioteka realtime przekazuje własny enum - porównujemy po wartości
        raw = getattr(value, 'value', value)
        return cls(str(raw).upper())

    @property
    def is_failure(self) -> bool:
        return self is not ChannelStatus.SUBSCRIBED


@dataclass(frozen=True)
class ChannelSpec:
    name: str
    table: str
    filter: Optional[str] = None  # filtr po stronie serwera, np. "owner_id=eq.<id>"


ChangeCallback = Callable[[dict], None]
StatusCallback = Callable[[Any, Optional[BaseException]], None]


class IChangeFeed(ABC):
    """Subskrypcja zmian wierszy (INSERT/UPDATE/DELETE) z backendu."""

    @abstractmethod
    async def subscribe(self, spec: ChannelSpec, on_change: ChangeCallback,
                        on_status: StatusCallback) -> Any:
        """Zwraca uchwyt kanału, potrzebny do ``unsubscribe``."""
        pass

    @abstractmethod
    async def unsubscribe(self, handle: Any) -> None:
        pass
