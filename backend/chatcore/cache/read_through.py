import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Tuple

from chatcore.errors import CacheUnavailableError

logger = logging.getLogger(__name__)


class ReadThroughCache:
    """Two-tier lookup: bounded cache read, store fallback, best-effort populate.

    Cache failures and timeouts are logged and never reach the caller; the
    store result is always the fallback of record.
    """

    def __init__(self, timeout: float) -> None:
        self._timeout = timeout

    async def _bounded(self, name: str, step: str, factory: Callable[[], Awaitable[Any]]) -> Tuple[bool, Any]:
        try:
            return True, await asyncio.wait_for(factory(), self._timeout)
        except asyncio.TimeoutError:
            logger.warning("Cache %s for %s timed out after %.3fs", step, name, self._timeout)
        except CacheUnavailableError as exc:
            logger.warning("Cache %s for %s failed: %s", step, name, exc)
        return False, None

    async def read(
        self,
        name: str,
        lookup: Callable[[], Awaitable[Any]],
        load: Callable[[], Awaitable[Any]],
        populate: Optional[Callable[[Any, Any], Awaitable[Any]]] = None,
        prepare: Optional[Callable[[], Awaitable[Any]]] = None,
        is_hit: Callable[[Any], bool] = bool,
    ) -> Tuple[Any, bool]:
        """Return ``(value, from_cache)``.

        ``prepare`` runs after a miss and before ``load``; its result is handed
        to ``populate`` so the cache can tell whether it moved in between.
        """
        ok, cached = await self._bounded(name, "lookup", lookup)
        if ok and cached is not None and is_hit(cached):
            return cached, True

        token = None
        can_populate = populate is not None
        if can_populate and prepare is not None:
            can_populate, token = await self._bounded(name, "prepare", prepare)

        value = await load()

        if can_populate:
            await self._bounded(name, "populate", lambda: populate(value, token))
        return value, False


async def best_effort(name: str, operation: Awaitable[Any]) -> Any:
    """Await a cache write; failures are logged and dropped."""
    try:
        return await operation
    except CacheUnavailableError as exc:
        logger.warning("Cache %s failed: %s", name, exc)
        return None
