"""
Read-through cache for the settings singleton.

Process-local and not coherent across instances: writers on this instance
invalidate it, other instances catch up when the TTL lapses.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional


@dataclass
class SettingsCache:
    ttl_seconds: float = 300.0
    clock: Callable[[], float] = field(default=time.monotonic)
    _value: Optional[Any] = field(default=None, init=False, repr=False)
    _loaded_at: Optional[float] = field(default=None, init=False, repr=False)

    def get(self, loader: Callable[[], Any]) -> Any:
        """Return the cached value, calling `loader` when empty or stale."""
        now = self.clock()
        if self._loaded_at is None or now - self._loaded_at >= self.ttl_seconds:
            self._value = loader()
            self._loaded_at = now
        return self._value

    def invalidate(self) -> None:
        self._value = None
        self._loaded_at = None
