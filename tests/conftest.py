"""Pytest configuration for ytdigest tests."""

import pytest


def pytest_collection_modifyitems(config, items):
    """Set per-marker timeouts: unit=1s, integration=15s."""
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(pytest.mark.timeout(15))
        elif "unit" in item.keywords:
            item.add_marker(pytest.mark.timeout(1))
