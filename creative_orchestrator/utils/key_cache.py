"""In-memory API key cache with an injectable clock."""

import logging
import time
from typing import Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class ApiKeyCache:
    """
    Caches provider API keys for ``ttl_seconds``.

    Owned by the service container; providers call ``invalidate`` when a key
    is rejected so the next lookup goes back to the loader.
    """

    def __init__(
        self,
        loader: Callable[[str], Optional[str]],
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            loader: Returns the current key for a provider name, or None
            ttl_seconds: How long a loaded key stays valid
            clock: Monotonic clock in seconds
        """
        self._loader = loader
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[Optional[str], float]] = {}

    def get(self, provider: str) -> Optional[str]:
        entry = self._entries.get(provider)
        now = self._clock()
        if entry is not None and entry[1] > now:
            return entry[0]
        key = self._loader(provider)
        self._entries[provider] = (key, now + self._ttl)
        logger.debug("Key cache: loaded key for %s (present=%s)", provider, key is not None)
        return key

    def invalidate(self, provider: Optional[str] = None) -> None:
        """Drop one provider's key, or every key when ``provider`` is None."""
        if provider is None:
            self._entries.clear()
        else:
            self._entries.pop(provider, None)
        logger.info("Key cache: invalidated %s", provider or "all providers")
