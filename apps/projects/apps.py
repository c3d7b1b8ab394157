from django.apps import AppConfig

class ProjectsConfig(AppConfig):
    name = 'apps.projects'  # Ważne: pełna ścieżka z 'apps.'
    label = 'projects'
