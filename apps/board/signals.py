# apps/board/signals.py
from django.dispatch import Signal

# Wysyłany po każdej mutacji LocalCacheStore.
# kwargs: scope, action ('load' | 'insert' | 'append' | 'remove' | 'patch' | 'drop'), entity_id
cache_changed = Signal()
