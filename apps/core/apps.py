from django.apps import AppConfig

class CoreConfig(AppConfig):
    # Brak modeli - dane trzyma backend, tu tylko profil i obsługa błędów
    name = 'apps.core'
    label = 'core'
    verbose_name = 'TaskFlow core'
