import time
from typing import Optional


class Deadline:
    """Wall-clock budget checked between pipeline stages. `None` never expires."""

    def __init__(self, seconds: Optional[float] = None):
        self._expires_at = None if seconds is None else time.monotonic() + seconds

    @classmethod
    def never(cls) -> 'Deadline':
        return cls(None)

    def expired(self) -> bool:
        return self._expires_at is not None and time.monotonic() >= self._expires_at
