from __future__ import annotations

import pytest

from consumer_service.app.config.settings import Settings
from tests.fakes import RecordingProcessor, make_settings


@pytest.fixture()
def settings() -> Settings:
    return make_settings()


@pytest.fixture()
def processor() -> RecordingProcessor:
    return RecordingProcessor()
