"""
Pytest configuration for node-repl-bridge integration tests.
"""

import shutil

import pytest


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "requires_node: mark test as requiring a node binary on PATH"
    )


@pytest.fixture(scope="session")
def node_binary():
    """Session-scoped fixture for the node executable."""
    path = shutil.which("node")
    if path is None:
        pytest.skip("node not installed - install Node.js to run integration tests")
    return path
