import pytest
from loguru import logger


@pytest.fixture
def log_records():
    """Collect loguru records emitted during the test."""
    records = []
    sink_id = logger.add(lambda message: records.append(message.record), level="DEBUG", format="{message}")
    yield records
    logger.remove(sink_id)


@pytest.fixture
def log_messages(log_records):
    """Return a function listing logged messages, optionally filtered by level name."""
    def _messages(level: str | None = None) -> list[str]:
        return [r["message"] for r in log_records if level is None or r["level"].name == level]
    return _messages
