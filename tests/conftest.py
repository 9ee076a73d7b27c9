import pytest
import structlog


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    # CLI tests configure a global level filter
    structlog.reset_defaults()
