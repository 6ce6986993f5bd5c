import asyncio
from typing import Iterable, List, Set

import redis.asyncio as redis
from redis.exceptions import RedisError

from constants import DEFAULT_KEYS_MATCH_SCAN_COUNT, MEMBERS_SSCAN_COUNT
from errors import ScanInterrupted
from logging_config import get_logger

logger = get_logger(__name__)


class KeyScanner:
    """Cursor based enumeration of keys and set members.

    Redis is single threaded, so KEYS and SMEMBERS on large data would block
    every other client. Everything here goes through SCAN and SSCAN with a
    bounded COUNT per round trip instead.
    """

    def __init__(self, redis_client: redis.Redis):
        self.redis_client = redis_client

    async def scan_keys(self, pattern: str, count: int = DEFAULT_KEYS_MATCH_SCAN_COUNT) -> Set[str]:
        """Return every key matching ``pattern``.

        SCAN may return a key more than once across batches; the set absorbs that.
        """
        cursor = 0
        keys = set()
        round_trips = 0
        try:
            while True:
                cursor, batch = await self.redis_client.scan(cursor=cursor, match=pattern, count=count)
                round_trips += 1
                keys.update(batch)
                if int(cursor) == 0:
                    break
        except RedisError as e:
            logger.error(f"SCAN for {pattern} failed after {round_trips} round trips: {e}", exc_info=True)
            raise ScanInterrupted(pattern, e) from e

        logger.debug(f"SCAN {pattern} matched {len(keys)} keys in {round_trips} round trips")
        return keys

    async def _scan_members(self, key: str, count: int) -> List[str]:
        cursor = 0
        members = {}
        try:
            while True:
                cursor, batch = await self.redis_client.sscan(key, cursor=cursor, count=count)
                # dict keeps first-seen order while dropping SSCAN repeats
                members.update(dict.fromkeys(batch))
                if int(cursor) == 0:
                    break
        except RedisError as e:
            logger.error(f"SSCAN of {key} failed: {e}", exc_info=True)
            raise ScanInterrupted(key, e) from e
        return list(members)

    async def scan_set_members(self, keys: Iterable[str], count: int = MEMBERS_SSCAN_COUNT) -> List[str]:
        """Concatenate the members of every set in ``keys``.

        Members shared between two keys appear once per key.
        """
        groups = await asyncio.gather(*(self._scan_members(key, count) for key in keys))
        return [member for group in groups for member in group]
