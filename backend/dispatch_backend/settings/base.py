"""
Base Django settings for the dispatch backend.

Environment-specific modules (prod.py, test.py) import everything from here
and override what they need.
"""

import os
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent.parent
load_dotenv(os.path.join(BASE_DIR, '..', '.env'))

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-only-insecure-key-change-me")
DEBUG = os.getenv("DJANGO_DEBUG", "true").lower() == "true"
ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1").split(',')

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'corsheaders',
    'channels',
    'accounts',
    'drivers',
    'jobs',
]

MIDDLEWARE = [
    'corsheaders.middleware.CorsMiddleware',
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'dispatch_backend.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'dispatch_backend.wsgi.application'
ASGI_APPLICATION = 'dispatch_backend.asgi.application'

DATABASES = {
    'default': {
        'ENGINE': os.getenv("DB_ENGINE", 'django.db.backends.sqlite3'),
        'NAME': os.getenv("DB_NAME", str(BASE_DIR / 'db.sqlite3')),
        'USER': os.getenv("DB_USER", ""),
        'PASSWORD': os.getenv("DB_PASSWORD", ""),
        'HOST': os.getenv("DB_HOST", ""),
        'PORT': os.getenv("DB_PORT", ""),
    }
}

AUTH_USER_MODEL = 'accounts.User'

AUTH_PASSWORD_VALIDATORS = [
    {'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator'},
    {'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator'},
]

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# ---------------------- REST framework ----------------------

REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': (
        'rest_framework_simplejwt.authentication.JWTAuthentication',
        'rest_framework.authentication.SessionAuthentication',
    ),
    'DEFAULT_PERMISSION_CLASSES': (
        'rest_framework.permissions.IsAuthenticated',
    ),
}

SIMPLE_JWT = {
    'ACCESS_TOKEN_LIFETIME': timedelta(hours=1),
    'REFRESH_TOKEN_LIFETIME': timedelta(days=7),
}

CORS_ALLOW_ALL_ORIGINS = DEBUG
CORS_ALLOWED_ORIGINS = os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:3000").split(',')

# ---------------------- Channels (event fan-out) ----------------------

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

CHANNEL_LAYERS = {
    "default": {
        "BACKEND": "channels.layers.InMemoryChannelLayer",
    }
}

# ---------------------- Celery ----------------------

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", REDIS_URL)
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", REDIS_URL)
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_SERIALIZER = 'json'
CELERY_ACCEPT_CONTENT = ['json']

CELERY_BEAT_SCHEDULE = {
    "scan-expired-assignments": {
        "task": "jobs.tasks.scan_expired_assignments_task",
        "schedule": float(os.getenv("DISPATCH_EXPIRY_SCAN_INTERVAL", 5)),
    },
    "process-reassignment-queue": {
        "task": "jobs.tasks.process_reassignment_queue_task",
        "schedule": float(os.getenv("DISPATCH_REASSIGNMENT_INTERVAL", 10)),
    },
}

# ---------------------- Dispatch engine ----------------------
# Policy constants for matching and dispatch. Loaded into
# services.dispatch.policy.DispatchPolicy; tune here, not in the algorithm.

DISPATCH = {
    "WEIGHTS": {
        "distance": 0.35,
        "rating": 0.25,
        "completion_rate": 0.20,
        "response_time": 0.10,
        "availability": 0.10,
    },
    "OFFER_WINDOW_SECONDS": int(os.getenv("DISPATCH_OFFER_WINDOW_SECONDS", 120)),
    "MAX_RESPONSE_TIME_SECONDS": 120,
    "LOCATION_STALENESS_SECONDS": 600,
    "DEFAULT_MAX_DISTANCE_KM": 15.0,
    "DEFAULT_MIN_RATING": 3.0,
    "DEFAULT_SEARCH_RADIUS_KM": 10.0,
    "REASSIGNMENT_RADIUS_STEP_KM": 2.5,
    "CANDIDATE_LIMIT": 20,
    "AVG_SPEED_KMH": 40.0,
    "MAX_ATTEMPTS": 3,
    "BACKOFF_BASE_SECONDS": 10,
    "BACKOFF_MAX_SECONDS": 120,
    "REASSIGNMENT_BATCH_SIZE": 10,
    "QUEUE_CLAIM_TIMEOUT_SECONDS": 300,
    "PICKUP_GEOFENCE_RADIUS_METERS": 50,
    "DELIVERY_GEOFENCE_RADIUS_METERS": 100,
    "LOCATION_HISTORY_LIMIT": 50,
    "SCHEDULE_OFFER_TIMERS": True,
}

DISPATCH_NOTIFIER = "realtime.notifications.ChannelsNotifier"

# ---------------------- Logging ----------------------

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        "services": {
            "handlers": ["console"],
            "level": os.getenv("DISPATCH_LOG_LEVEL", "INFO"),
            "propagate": False,
        },
        "jobs": {
            "handlers": ["console"],
            "level": os.getenv("DISPATCH_LOG_LEVEL", "INFO"),
            "propagate": False,
        },
        "realtime": {
            "handlers": ["console"],
            "level": os.getenv("DISPATCH_LOG_LEVEL", "INFO"),
            "propagate": False,
        },
        "drivers": {
            "handlers": ["console"],
            "level": os.getenv("DISPATCH_LOG_LEVEL", "INFO"),
            "propagate": False,
        },
    },
}
