"""Shared pytest fixtures and configuration."""

import logging

import pytest


# Register custom markers
def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for test categorization."""
    config.addinivalue_line("markers", "unit: fast tests with no external dependencies")
    config.addinivalue_line("markers", "integration: component interaction tests")


@pytest.fixture(autouse=True)
def reset_entrust_logger():
    """Undo setup_logging() so caplog keeps seeing entrust records."""
    yield
    logger = logging.getLogger("entrust")
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
