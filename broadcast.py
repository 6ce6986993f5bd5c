import asyncio
from typing import Any, Awaitable, Callable, List, Optional

from backend import RedisRoomsBackend
from logging_config import get_logger
from redis_keys import ALL_SPARK_KEYS_PATTERN, SPARK_ROOMS_KEY, escape_pattern
from schemas.rooms import BroadcastOptions

logger = get_logger(__name__)

ForwardToSparks = Callable[[List[str], Any], Awaitable[Any]]


def first_element(data: Any) -> Any:
    """Default transformer: broadcast arguments arrive as a list, send the first."""
    if isinstance(data, (list, tuple)) and data:
        return data[0]
    return data


def chunk(items: List[str], size: int) -> List[List[str]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class BroadcastRouter:
    def __init__(self, backend: RedisRoomsBackend, forward: ForwardToSparks):
        self.backend = backend
        self.forward = forward

    async def broadcast(self, data: Any, options: Optional[BroadcastOptions] = None) -> None:
        """Deliver ``data`` to every spark in ``options.rooms`` on any server.

        With no rooms, every spark registered in the namespace receives it.
        A spark that is in two of the requested rooms is sent the payload twice.
        """
        options = options or BroadcastOptions()
        transformer = options.transformer or first_element
        payload = transformer(data)

        if options.rooms:
            groups = await asyncio.gather(*(self.backend.clients(room) for room in options.rooms))
            spark_ids = [spark_id for group in groups for spark_id in group]
        else:
            spark_ids = await self._all_spark_ids()

        if options.except_:
            excluded = set(options.except_)
            spark_ids = [spark_id for spark_id in spark_ids if spark_id not in excluded]

        logger.debug(f"Broadcasting to {len(spark_ids)} sparks in rooms {options.rooms or 'ALL'}")
        await self.send_to_sparks(spark_ids, payload)

    async def _all_spark_ids(self) -> List[str]:
        # Full scan of every spark key in the namespace
        namespace = self.backend.namespace
        pattern = ALL_SPARK_KEYS_PATTERN.format(namespace=escape_pattern(namespace))
        prefix = SPARK_ROOMS_KEY.format(namespace=namespace, spark_id="")
        keys = await self.backend.scanner.scan_keys(pattern, self.backend.options.all_sparks_scan_count)
        return [key[len(prefix):] for key in sorted(keys)]

    async def send_to_sparks(self, spark_ids: List[str], payload: Any) -> None:
        # Forwarding too many ids in one call runs the transport out of memory
        batches = chunk(spark_ids, self.backend.options.max_forward_batch)
        if len(batches) > 1:
            logger.info(f"Forwarding to {len(spark_ids)} sparks in {len(batches)} batches")
        await asyncio.gather(*(self.forward(batch, payload) for batch in batches))
