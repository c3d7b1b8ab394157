# apps/board/domain/results.py
import asyncio
from dataclasses import dataclass
from typing import Any, Optional, Union


@dataclass(frozen=True)
class Ok:
    entity: Any = None

    ok = True


@dataclass(frozen=True)
class Err:
    reason: str
    error: Optional[BaseException] = None
    entity: Any = None         # stan encji w cache po porażce (np. z flagą failed)
    superseded: bool = False   # wynik odrzucony, bo nowsza operacja dotknęła tego id

    ok = False


MutationResult = Union[Ok, Err]


class Mutation:
    """Uchwyt zwracany od razu po zapisie optymistycznym.

    ``entity`` to to, co właśnie trafiło do cache (UI może je pokazać
    natychmiast). ``await mutation`` zwraca Ok/Err po odpowiedzi serwera.
    """

    def __init__(self, entity: Any, task: Optional[asyncio.Task] = None,
                 result: Optional[MutationResult] = None):
        self.entity = entity
        self._task = task
        self._result = result

    @classmethod
    def resolved(cls, result: MutationResult, entity: Any = None) -> 'Mutation':
        return cls(entity if entity is not None else result.entity, result=result)

    @property
    def done(self) -> bool:
        return self._task is None or self._task.done()

    def result(self) -> MutationResult:
        if self._task is None:
            return self._result
        return self._task.result()

    async def _immediate(self) -> MutationResult:
        return self._result

    def __await__(self):
        if self._task is None:
            return self._immediate().__await__()
        return self._task.__await__()

    def __repr__(self):
        entity_id = getattr(self.entity, 'id', None)
        return f"<Mutation {entity_id} done={self.done}>"
