"""Pytest configuration and fixtures."""


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: tests that wait on real filesystem polling"
    )
