"""TTL cache of ERP directories.

Directories change rarely; orchestration runs read them through this cache
so a bulk run does not refetch six catalogs per order.
"""

import asyncio
import time
from typing import Callable, Optional

from connectors.erp_base import ERPConnector, ERPDirectories
from core.observability import get_logger


logger = get_logger(__name__)


class DirectoryCache:
    """Caches connector.get_directories() for ttl_seconds.

    Usage:
        cache = DirectoryCache(connector, ttl_seconds=3600)
        directories = await cache.get()
        cache.invalidate()   # after directories were edited in the ERP
    """

    def __init__(
        self,
        connector: ERPConnector,
        ttl_seconds: int = 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.connector = connector
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._directories: Optional[ERPDirectories] = None
        self._loaded_at: float = 0.0
        self._lock = asyncio.Lock()

    def _is_fresh(self) -> bool:
        return (
            self._directories is not None
            and self._clock() - self._loaded_at < self.ttl_seconds
        )

    async def get(self, force_refresh: bool = False) -> ERPDirectories:
        if not force_refresh and self._is_fresh():
            return self._directories

        async with self._lock:
            if not force_refresh and self._is_fresh():
                return self._directories

            directories = await self.connector.get_directories()
            self._directories = directories
            self._loaded_at = self._clock()
            logger.info(
                "ERP directories refreshed",
                extra_fields={
                    "payment_forms": len(directories.payment_forms),
                    "cash_accounts": len(directories.cash_accounts),
                    "trade_channels": len(directories.trade_channels),
                },
            )
            return directories

    def invalidate(self) -> None:
        self._directories = None
        self._loaded_at = 0.0
