"""Celery application bootstrap for this Django project.

Runs per-alert incident processing and the periodic incident manager
(link unassociated alerts, then close incidents that went quiet).

Run workers and the scheduler with something like:
- celery -A config worker -l info
- celery -A config beat -l info

Broker/result backend and the beat schedule are configured via Django
settings (see config/settings.py).
"""

from __future__ import annotations

import os

from celery import Celery

from config.env import load_env

load_env()

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("fire-incidents")

# Load Celery config from Django settings using CELERY_* namespace.
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
