"""Celery application for dispatch background work (offer expiry, reassignment ticks)."""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "dispatch_backend.settings")

app = Celery("dispatch_backend")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()
