"""Per-shop config cache on top of cachetools. The owner (usually app.state) decides its lifetime."""

import time
from collections.abc import Awaitable, Callable
from typing import Any

from cachetools import TTLCache

DEFAULT_MAXSIZE = 1024


class ConfigCache(TTLCache):

    def __init__(
        self,
        ttl_seconds: float,
        maxsize: int = DEFAULT_MAXSIZE,
        timer: Callable[[], float] = time.monotonic,
    ):
        super().__init__(maxsize=maxsize, ttl=ttl_seconds, timer=timer)

    def invalidate(self, key: Any = None) -> None:
        """Drop one key, or everything when no key is given."""
        if key is None:
            self.clear()
        else:
            self.pop(key, None)

    async def get_or_load(self, key: Any, loader: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached value or await `loader()` and cache its result."""
        try:
            return self[key]
        except KeyError:
            pass
        value = await loader()
        self[key] = value
        return value
