# apps/tasks/urls.py
from django.urls import path
from . import views

urlpatterns = [
    path('', views.tasks_api, name='tasks_api'),  # GET/POST/PUT/DELETE /api/tasks/
]
