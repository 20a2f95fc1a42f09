# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
TTL cache for catalog data.
"""

import time
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class TTLCache(Generic[T]):
    """
    Holds a single value that goes stale after ``ttl`` seconds.

    The clock is injectable so expiry can be tested without sleeping.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._value: Optional[T] = None
        self._loaded_at: Optional[float] = None
        self.generation = 0

    def is_stale(self) -> bool:
        if self._loaded_at is None:
            return True
        return self._clock() - self._loaded_at >= self.ttl

    def get(self) -> Optional[T]:
        """Current value, or None when empty or stale."""
        if self.is_stale():
            return None
        return self._value

    def set(self, value: T):
        self._value = value
        self._loaded_at = self._clock()
        self.generation += 1

    def invalidate(self):
        self._value = None
        self._loaded_at = None
