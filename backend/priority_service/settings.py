"""
Django settings for priority_service project.

Values that differ between deployments are read from the environment.
"""

import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


def env_bool(name: str, default: bool = False) -> bool:
    return os.environ.get(name, str(default)).strip().lower() in ('1', 'true', 'yes', 'on')


SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'django-insecure-priority-engine-dev-key')

DEBUG = env_bool('DJANGO_DEBUG', False)

ALLOWED_HOSTS = [h for h in os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1,testserver').split(',') if h]


INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',
    'rest_framework',
    'drf_spectacular',
    'priority',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'priority_service.urls'

WSGI_APPLICATION = 'priority_service.wsgi.application'


# The engine stores nothing; a database is configured for the test runner.
DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'db.sqlite3',
    }
}


LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


REST_FRAMEWORK = {
    'DEFAULT_SCHEMA_CLASS': 'drf_spectacular.openapi.AutoSchema',
    'DEFAULT_AUTHENTICATION_CLASSES': [],
    'DEFAULT_PERMISSION_CLASSES': [],
    'UNAUTHENTICATED_USER': None,
}

SPECTACULAR_SETTINGS = {
    'TITLE': 'Priority Engine API',
    'DESCRIPTION': 'Scores and ranks personal tasks by weighted pillar benefit, cost, urgency and deadline.',
    'VERSION': '1.0.0',
}


# Priority engine
PRIORITY_ENGINE = {
    # YAML file with the calibration tables; packaged defaults when empty
    'CALIBRATION_FILE': os.environ.get('PRIORITY_CALIBRATION_FILE', ''),
    # Log the stage-by-stage trace of every score
    'DEBUG_TRACE': env_bool('PRIORITY_DEBUG_TRACE', False),
}


LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '[{asctime}] {levelname} {name}: {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'WARNING',
    },
    'loggers': {
        'priority': {
            'handlers': ['console'],
            'level': os.environ.get('PRIORITY_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}
