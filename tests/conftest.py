import logging

import pytest
import structlog

from tests.fakes import FakeBot


@pytest.fixture
def fake_bot() -> FakeBot:
    return FakeBot()


@pytest.fixture(autouse=True)
def _restore_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()
