# apps/board/domain/cache.py
from dataclasses import fields, replace
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from apps.board.signals import cache_changed


def _merge(entity, updates: dict):
    """Płytkie scalenie pól. Nieznane nazwy pól są ignorowane."""
    if hasattr(entity, 'merged'):
        return entity.merged(updates)
    known = {f.name for f in fields(entity)} - {'id'}
    return replace(entity, **{k: v for k, v in updates.items() if k in known})


class LocalCacheStore:
    """Pamięciowy widok encji pogrupowanych w zakresy (scope).

    Każda operacja jest synchroniczna i od razu widoczna dla czytelników.
    Listy są podmieniane w całości (copy-on-write), więc krotka zwrócona
    przez ``items`` nie zmienia się pod ręką prezentacji.
    """

    def __init__(self, name: str):
        self.name = name
        self._scopes: Dict[str, List[Any]] = {}
        self._loaded: Set[str] = set()

    def __repr__(self):
        return f"<LocalCacheStore {self.name} scopes={len(self._scopes)}>"

    def _notify(self, scope: str, action: str, entity_id: Optional[str] = None):
        cache_changed.send(sender=self, scope=scope, action=action, entity_id=entity_id)

    # --- Operacje podstawowe ---

    def load(self, scope: str, entities: Iterable[Any]) -> None:
        """Podmienia całą listę zakresu (ostatni pełny load wygrywa)."""
        self._scopes[scope] = list(entities)
        self._loaded.add(scope)
        self._notify(scope, 'load')

    def insert(self, scope: str, entity: Any) -> None:
        """Dopisuje encję na początek listy. Nie sprawdza duplikatów."""
        self._scopes[scope] = [entity] + self._scopes.get(scope, [])
        self._notify(scope, 'insert', entity.id)

    def remove(self, scope: str, entity_id: str) -> Optional[Any]:
        """Usuwa encje o danym id. Zwraca usuniętą encję albo None (no-op)."""
        current = self._scopes.get(scope)
        if not current:
            return None
        kept = [e for e in current if e.id != entity_id]
        if len(kept) == len(current):
            return None
        removed = next(e for e in current if e.id == entity_id)
        self._scopes[scope] = kept
        self._notify(scope, 'remove', entity_id)
        return removed

    def patch(self, scope: str, entity_id: str, updates: dict) -> Optional[Any]:
        """Scala pola w pasującą encję. Zwraca nową wersję albo None (no-op)."""
        current = self._scopes.get(scope)
        if not current:
            return None
        patched = None
        result = []
        for entity in current:
            if entity.id == entity_id:
                entity = _merge(entity, updates)
                patched = entity
            result.append(entity)
        if patched is None:
            return None
        self._scopes[scope] = result
        self._notify(scope, 'patch', entity_id)
        return patched

    # --- Pomocnicze ---

    def append(self, scope: str, entity: Any) -> None:
        """Dopisuje na koniec (komentarze są wyświetlane rosnąco)."""
        self._scopes[scope] = self._scopes.get(scope, []) + [entity]
        self._notify(scope, 'append', entity.id)

    def drop(self, scope: str) -> Tuple[Any, ...]:
        """Zapomina zakres (np. gdy zniknął projekt). Zwraca jego zawartość."""
        dropped = tuple(self._scopes.pop(scope, ()))
        was_loaded = scope in self._loaded
        self._loaded.discard(scope)
        if dropped or was_loaded:
            self._notify(scope, 'drop')
        return dropped

    def items(self, scope: str) -> Tuple[Any, ...]:
        return tuple(self._scopes.get(scope, ()))

    def get(self, scope: str, entity_id: str) -> Optional[Any]:
        for entity in self._scopes.get(scope, ()):
            if entity.id == entity_id:
                return entity
        return None

    def contains(self, scope: str, entity_id: str) -> bool:
        return self.get(scope, entity_id) is not None

    def locate(self, entity_id: str) -> Optional[str]:
        """Zakres, w którym leży encja o danym id."""
        for scope, entities in self._scopes.items():
            if any(e.id == entity_id for e in entities):
                return scope
        return None

    def is_loaded(self, scope: str) -> bool:
        """Czy zakres pochodzi z pełnego loadu (a nie tylko z pojedynczych insertów)."""
        return scope in self._loaded

    def scopes(self) -> Tuple[str, ...]:
        return tuple(self._scopes)

    def loaded_scopes(self) -> Tuple[str, ...]:
        return tuple(s for s in self._scopes if s in self._loaded)
