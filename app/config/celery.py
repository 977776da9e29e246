"""
Celery configuration for the Django application.

Celery is a distributed task queue that enables:
- Notification emails sent after the settlement transaction commits
- Periodic webhook retry and cleanup
- Periodic resync of stale merchant accounts

This configuration uses Redis as both the message broker and result backend.
Tasks are auto-discovered from all installed Django apps.

Usage:
    # Define a task in any app's tasks.py:
    from celery import shared_task

    @shared_task
    def sync_stale_merchant_accounts(limit=100):
        ...

    # Call the task asynchronously:
    sync_stale_merchant_accounts.delay()

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

# Create Celery application instance
# The name should match the Django project name
app = Celery("config")

# Load configuration from Django settings
# All Celery settings should be prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Auto-discover tasks from all registered Django apps
# Celery will look for a tasks.py module in each installed app
app.autodiscover_tasks()

# Periodic tasks are declared in settings.CELERY_BEAT_SCHEDULE

