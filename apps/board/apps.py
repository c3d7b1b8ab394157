from django.apps import AppConfig

class BoardConfig(AppConfig):
    # Warstwa klienta: cache, optymistyczne mutacje, realtime
    name = 'apps.board'
    label = 'board'
