# taskflow/urls.py
from django.urls import path, include
from apps.tasks import views as task_views

urlpatterns = [
    path('api/projects/', include('apps.projects.urls')),
    path('api/tasks/', include('apps.tasks.urls')),
    # Tagi i komentarze to pod-encje zadania, ale mają własne adresy
    path('api/task-tags/', task_views.task_tags_api, name='task_tags_api'),
    path('api/comments/', task_views.comments_api, name='comments_api'),
    path('api/profile/', include('apps.core.urls')),
]
