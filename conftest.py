"""
Pytest configuration for the auction tests.

Adds --redis-url for running cache tests against a live Redis server.
"""

import pytest


def pytest_addoption(parser):
    """Add custom command line options"""
    parser.addoption(
        "--redis-url",
        action="store",
        default=None,
        help="Redis URL for live cache tests (e.g. redis://localhost:6379/15)"
    )


def pytest_configure(config):
    """Configure pytest based on command line options"""
    config.addinivalue_line(
        "markers", "redis: marks tests that need a live Redis server"
    )
    if config.getoption("--redis-url"):
        print(f"\nLive Redis tests enabled against {config.getoption('--redis-url')}\n")


@pytest.fixture(scope="session")
def redis_url(request):
    """Fixture that provides the live Redis URL, skipping when absent"""
    url = request.config.getoption("--redis-url")
    if not url:
        pytest.skip("needs --redis-url")
    return url
