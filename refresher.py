import asyncio
from typing import Callable, Optional

from redis.exceptions import RedisError

from backend import RedisRoomsBackend
from errors import StoreOperationError
from logging_config import get_logger
from redis_keys import INSTANCE_ROOM_KEYS_PATTERN, escape_pattern

logger = get_logger(__name__)

ErrorObserver = Callable[[Exception], None]


def log_refresh_error(error: Exception) -> None:
    logger.error(f"Error refreshing room key TTLs: {error}", exc_info=error)


class TTLRefresher:
    """Keeps this server's membership keys from expiring while it is alive.

    Room keys are swept by a periodic task owned by this object. Spark keys are
    refreshed one at a time from the transport's heartbeat. Failures in either
    are handed to ``on_error`` and never stop the next refresh.
    """

    def __init__(self, backend: RedisRoomsBackend, on_error: Optional[ErrorObserver] = None):
        self.backend = backend
        self.on_error = on_error or log_refresh_error
        self.interval = backend.room_ttl / backend.options.drift_factor
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        logger.info(f"Starting room TTL refresher every {self.interval:.1f}s for {self.backend.server_instance}")
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Room TTL refresher stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.tick()

    async def tick(self) -> None:
        """One sweep of the periodic loop; errors go to the observer."""
        try:
            refreshed = await self.refresh_room_sets()
            logger.debug(f"Refreshed TTL of {refreshed} room keys")
        except Exception as e:
            self.on_error(e)

    async def refresh_room_sets(self) -> int:
        backend = self.backend
        pattern = INSTANCE_ROOM_KEYS_PATTERN.format(
            namespace=escape_pattern(backend.namespace),
            server_instance=escape_pattern(backend.server_instance),
        )
        room_keys = await backend.scanner.scan_keys(pattern, backend.options.keys_scan_count)
        if not room_keys:
            return 0

        pipe = backend.redis_client.pipeline(transaction=True)
        for room_key in room_keys:
            pipe.expire(room_key, backend.room_ttl)
        await backend.execute_pipeline(pipe)
        return len(room_keys)

    async def refresh_spark(self, spark_id: str) -> None:
        spark_key = self.backend.spark_key(spark_id)
        try:
            await self.backend.redis_client.expire(spark_key, self.backend.spark_ttl)
        except RedisError as e:
            self.on_error(StoreOperationError(f"Error refreshing spark->room set TTL for {spark_id}: {e}"))
