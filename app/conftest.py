"""
Root pytest configuration for the Django project.

Settings come from config.settings_test (see pyproject.toml). App-specific
fixtures are defined in each app's tests/conftest.py.
"""

import pytest


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_consumers.py → e2e (WebSocket round trips)
    - test_views.py, test_services.py, etc. → integration
    - test_models.py, test_serializers.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_consumers.py", "test_scenarios.py"]

    integration_patterns = [
        "test_views.py",
        "test_services.py",
        "test_events.py",
        "test_middleware.py",
        "test_exception_handlers.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_serializers.py",
        "test_managers.py",
        "test_pagination.py",
        "test_connections.py",
        "test_helpers.py",
        "test_decorators.py",
        "test_soft_delete_mixin.py",
    ]

    for item in items:
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)


@pytest.fixture(autouse=True)
def _reset_connection_directory():
    """Give every test an empty in-process connection directory."""
    from chat.connections import reset_connection_directory

    reset_connection_directory()
    yield
    reset_connection_directory()
