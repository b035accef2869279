"""Shared pytest setup for the client packages."""

from pathlib import Path

import pytest
import structlog
from dotenv import load_dotenv

from shared.logging import setup_logging

load_dotenv(Path(__file__).resolve().parent.parent / ".env.tests")

# stdout only under pytest; records still reach caplog through the root logger.
setup_logging(level="DEBUG")


@pytest.fixture(autouse=True)
def _clear_log_context():
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()
