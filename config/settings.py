import os
from pathlib import Path

from celery.schedules import crontab

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'shopsync-dev-secret-key')
DEBUG = os.environ.get('DJANGO_DEBUG', '0') == '1'
ALLOWED_HOSTS = os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost').split(',')

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',
    'shopsync',
]

if os.environ.get('POSTGRES_DB'):
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.postgresql',
            'NAME': os.environ['POSTGRES_DB'],
            'USER': os.environ.get('POSTGRES_USER', 'postgres'),
            'PASSWORD': os.environ.get('POSTGRES_PASSWORD', ''),
            'HOST': os.environ.get('POSTGRES_HOST', 'localhost'),
            'PORT': os.environ.get('POSTGRES_PORT', '5432'),
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'db.sqlite3',
        }
    }

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'
USE_TZ = True
TIME_ZONE = 'UTC'

# ---------------------------------------------------------------------------
# Sync engine
# ---------------------------------------------------------------------------

SHOPSYNC_API_VERSION = os.environ.get('SHOPSYNC_API_VERSION', '2024-10')
SHOPSYNC_MAX_PAGE_SIZE = 250
SHOPSYNC_MIN_PAGE_SIZE = int(os.environ.get('SHOPSYNC_MIN_PAGE_SIZE', '10'))
SHOPSYNC_DEFAULT_PAGE_SIZE = int(os.environ.get('SHOPSYNC_DEFAULT_PAGE_SIZE', '50'))
SHOPSYNC_MAX_RETRIES = int(os.environ.get('SHOPSYNC_MAX_RETRIES', '3'))
SHOPSYNC_REQUEST_TIMEOUT = float(os.environ.get('SHOPSYNC_REQUEST_TIMEOUT', '30'))

# Leaky-bucket defaults until the platform reports its own limits.
SHOPSYNC_BUCKET_SIZE = int(os.environ.get('SHOPSYNC_BUCKET_SIZE', '40'))
SHOPSYNC_RESTORE_RATE = float(os.environ.get('SHOPSYNC_RESTORE_RATE', '2'))
SHOPSYNC_LOW_BUDGET_RATIO = float(os.environ.get('SHOPSYNC_LOW_BUDGET_RATIO', '0.5'))

SHOPSYNC_MAX_FETCH_ERRORS = int(os.environ.get('SHOPSYNC_MAX_FETCH_ERRORS', '5'))
SHOPSYNC_MAX_RECONCILE_ERRORS = int(os.environ.get('SHOPSYNC_MAX_RECONCILE_ERRORS', '25'))
SHOPSYNC_RECENT_ERRORS_LIMIT = 100
SHOPSYNC_BATCH_DELAYS = (0.5, 1.0, 2.0)

SHOPSYNC_DEFAULT_DUE_DAYS = 3
SHOPSYNC_INCREMENTAL_BUFFER_MINUTES = 2
SHOPSYNC_INCREMENTAL_SCHEDULE_MINUTES = int(os.environ.get('SHOPSYNC_INCREMENTAL_SCHEDULE_MINUTES', '15'))

# ---------------------------------------------------------------------------
# Celery
# ---------------------------------------------------------------------------

CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND', 'redis://localhost:6379/0')
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_ALWAYS_EAGER = os.environ.get('CELERY_TASK_ALWAYS_EAGER', '0') == '1'
CELERY_BEAT_SCHEDULE = {
    'shopsync-incremental-orders': {
        'task': 'shopsync.schedule_incremental_syncs',
        'schedule': crontab(minute=f'*/{SHOPSYNC_INCREMENTAL_SCHEDULE_MINUTES}'),
        'args': (),
    },
}

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '%(asctime)s %(levelname)s %(name)s: %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'loggers': {
        'shopsync': {
            'handlers': ['console'],
            'level': os.environ.get('SHOPSYNC_LOG_LEVEL', 'INFO'),
        },
    },
}
