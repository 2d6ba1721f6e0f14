"""Consumer-level constants shared across modules."""
from __future__ import annotations

from enum import Enum

DEFAULT_HEADER_KEY = "my-header-key"


class ConsumerMode(str, Enum):
    SINGLE = "single"
    BATCH = "batch"
