# apps/projects/urls.py
from django.urls import path
from . import views

urlpatterns = [
    path('', views.projects_api, name='projects_api'),
]
