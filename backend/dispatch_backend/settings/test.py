from .base import *


class DisableMigrations:
    """Build test tables straight from the models."""

    def __contains__(self, item):
        return True

    def __getitem__(self, item):
        return None


DEBUG = False
SECRET_KEY = "test-secret-key"

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

MIGRATION_MODULES = DisableMigrations()

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

CHANNEL_LAYERS = {
    "default": {
        "BACKEND": "channels.layers.InMemoryChannelLayer",
    }
}

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = "memory://"
CELERY_RESULT_BACKEND = "cache+memory://"

DISPATCH = {
    **DISPATCH,
    "SCHEDULE_OFFER_TIMERS": False,
}

LOGGING["root"]["level"] = "CRITICAL"
for _name in ("services", "jobs", "realtime", "drivers"):
    LOGGING["loggers"][_name]["level"] = "CRITICAL"
