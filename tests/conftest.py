"""Root test fixtures shared across all test types.

Storage-backed fixtures are in tests/integration/conftest.py.
"""

from collections.abc import Iterator

import pytest
import structlog
from structlog.testing import CapturingLogger

from src.identity.core.config import Settings
from src.identity.core.logging import clear_log_context
from tests.helpers import make_settings


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def capturing_logger() -> Iterator[CapturingLogger]:
    """Route every structlog call into a CapturingLogger for the test."""
    cap_logger = CapturingLogger()
    old_config = structlog.get_config()

    structlog.configure(
        processors=[structlog.contextvars.merge_contextvars],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=lambda *args, **kwargs: cap_logger,
        cache_logger_on_first_use=False,
    )

    clear_log_context()
    yield cap_logger
    clear_log_context()
    structlog.configure(**old_config)
