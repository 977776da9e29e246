"""
Root pytest configuration for the Django project.

This module configures pytest-django and provides project-wide fixtures.
App-specific fixtures are defined in each app's tests/conftest.py.
"""

import os

import django
import pytest

# Ensure Django settings are configured before any tests run
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")


def pytest_configure():
    """Configure Django settings before tests run."""
    django.setup()

    from django.conf import settings

    # Disable throttling during tests to prevent rate limit failures
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {}

    # The test client talks plain HTTP
    settings.SECURE_SSL_REDIRECT = False

    # Use fast password hasher for tests
    settings.PASSWORD_HASHERS = [
        "django.contrib.auth.hashers.MD5PasswordHasher",
    ]

    settings.EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"
    settings.CELERY_TASK_ALWAYS_EAGER = True


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_views.py, test_services.py, test_tasks.py, etc. -> integration
    - test_models.py, test_serializers.py, test_fee_calculator.py, etc. -> unit
    - Unmatched files -> integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    unit_patterns = [
        "test_models.py",
        "test_serializers.py",
        "test_fee_calculator.py",
        "test_stripe_adapter.py",
        "test_exceptions.py",
        "test_helpers.py",
    ]

    for item in items:
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration"}:
            continue

        filename = str(item.fspath).split("/")[-1]
        if any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)


@pytest.fixture
def admin_user(django_user_model):
    return django_user_model.objects.create_user(
        username="finance-admin",
        email="finance@example.com",
        password="unused-password",
        is_staff=True,
    )


@pytest.fixture
def api_client():
    from rest_framework.test import APIClient

    return APIClient()
