"""Common pytest configuration."""

import pytest

from tests.helpers.session_fakes import ListLogSink, RecordingSleep


@pytest.fixture
def log_sink() -> ListLogSink:
    """Provide a log sink that records entries.

    Returns:
        ListLogSink: Empty recording sink.
    """
    return ListLogSink()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    """Provide a sleep that records delays without waiting.

    Returns:
        RecordingSleep: Sleep double.
    """
    return RecordingSleep()
