#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Generation of msgID values for outbound requests.
"""

from __future__ import annotations

import datetime

from .internal_types import *

Clock = Callable[[], datetime.datetime]
"""A callable returning the current local time."""

def timestamp_message_id(now: datetime.datetime) -> int:
    """Encode a time as the 17-digit number YYYYMMDDHHMMSSmmm."""
    return int(now.strftime('%Y%m%d%H%M%S') + f"{now.microsecond // 1000:03d}")

class MessageIdGenerator:
    """Produces strictly increasing msgID strings for one client.

    IDs are based on the wall clock, but if the clock has not advanced (two calls in the
    same millisecond) or has moved backwards, the previous ID plus one is used instead.
    """

    clock: Clock
    """The time source; datetime.datetime.now by default."""

    _last_id: int = 0

    def __init__(self, clock: Optional[Clock]=None):
        self.clock = datetime.datetime.now if clock is None else clock

    @property
    def last_id(self) -> int:
        """The most recently issued ID, or 0 if none has been issued."""
        return self._last_id

    def next_id(self) -> str:
        candidate = timestamp_message_id(self.clock())
        if candidate <= self._last_id:
            candidate = self._last_id + 1
        self._last_id = candidate
        return str(candidate)
