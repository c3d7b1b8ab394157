# apps/core/urls.py
from django.urls import path
from . import views

urlpatterns = [
    path('', views.profile_api, name='profile_api'),
]
