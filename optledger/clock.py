"""
clock.py - Clock Service

Expiration checks read time from a Clock the engine owns; callers never pass
a timestamp of their own. Ledger implements this protocol with its logical
clock, SystemClock reads the wall clock.
"""

from __future__ import annotations
import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Source of the current time as integer unix seconds."""

    def now(self) -> int:
        ...


class SystemClock:
    """Wall-clock time, truncated to whole seconds and never moving backwards."""

    def __init__(self):
        self._last = 0

    def now(self) -> int:
        self._last = max(self._last, int(time.time()))
        return self._last
