# taskflow/settings.py
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'taskflow-dev-only-secret-key')
DEBUG = _env_bool('DJANGO_DEBUG', False)
ALLOWED_HOSTS = [h for h in os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1,testserver').split(',') if h]

INSTALLED_APPS = [
    'apps.core',
    'apps.projects',
    'apps.tasks',
    'apps.board',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'taskflow.urls'
WSGI_APPLICATION = 'taskflow.wsgi.application'

# Trwałość danych należy do backendu (Supabase) - brak lokalnej bazy
DATABASES = {}

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = False
USE_TZ = True

# --- Backend (Supabase) ---
SUPABASE_URL = os.environ.get('SUPABASE_URL', '')
SUPABASE_ANON_KEY = os.environ.get('SUPABASE_ANON_KEY', '')
# Opcjonalny klucz z podwyższonymi uprawnieniami. Bez niego endpointy
# projektów/zadań odmawiają działania (fail closed).
SUPABASE_SERVICE_ROLE_KEY = os.environ.get('SUPABASE_SERVICE_ROLE_KEY') or None

# --- Synchronizacja tablicy (klient) ---
TASKFLOW_RELOAD_DELAY = float(os.environ.get('TASKFLOW_RELOAD_DELAY', '0.5'))
TASKFLOW_RECONNECT_BASE_DELAY = float(os.environ.get('TASKFLOW_RECONNECT_BASE_DELAY', '1'))
TASKFLOW_RECONNECT_MAX_DELAY = float(os.environ.get('TASKFLOW_RECONNECT_MAX_DELAY', '30'))

# --- Logowanie ---
LOG_LEVEL = os.environ.get('TASKFLOW_LOG_LEVEL', 'INFO').upper()

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '%(asctime)s %(levelname)s %(name)s:%(lineno)d - %(message)s',
            'datefmt': '%Y-%m-%d %H:%M:%S',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'loggers': {
        'apps': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'taskflow': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'django.request': {'handlers': ['console'], 'level': 'ERROR', 'propagate': False},
    },
}
