"""Tests for SCAN/SSCAN based enumeration."""

from unittest.mock import AsyncMock, Mock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from errors import ScanInterrupted
from redis_keys import escape_pattern
from scanner import KeyScanner


class TestScanKeys:

    @pytest.mark.asyncio
    async def test_finds_all_keys_in_bounded_round_trips(self, redis_client):
        for i in range(120):
            await redis_client.sadd(f"ns:rooms:server1:room{i}", "spark")
        await redis_client.sadd("other:rooms:server1:room0", "spark")

        calls = []
        original_scan = redis_client.scan

        async def counting_scan(*args, **kwargs):
            calls.append(kwargs)
            return await original_scan(*args, **kwargs)

        redis_client.scan = counting_scan

        keys = await KeyScanner(redis_client).scan_keys("ns:rooms:*", count=10)

        assert keys == {f"ns:rooms:server1:room{i}" for i in range(120)}
        assert 1 < len(calls) <= 20
        assert all(call["count"] == 10 for call in calls)

    @pytest.mark.asyncio
    async def test_ignores_duplicate_keys_across_batches(self):
        client = Mock()
        client.scan = AsyncMock(side_effect=[(7, ["a", "b"]), (0, ["b", "c"])])

        keys = await KeyScanner(client).scan_keys("*")

        assert keys == {"a", "b", "c"}
        assert client.scan.await_count == 2

    @pytest.mark.asyncio
    async def test_no_matches(self, redis_client):
        assert await KeyScanner(redis_client).scan_keys("nothing:*") == set()

    @pytest.mark.asyncio
    async def test_failure_discards_partial_result(self):
        client = Mock()
        client.scan = AsyncMock(side_effect=[(7, ["a"]), RedisConnectionError("connection lost")])

        with pytest.raises(ScanInterrupted) as exc_info:
            await KeyScanner(client).scan_keys("ns:*")

        assert exc_info.value.target == "ns:*"
        assert isinstance(exc_info.value.__cause__, RedisConnectionError)


class TestScanSetMembers:

    @pytest.mark.asyncio
    async def test_concatenates_members_of_every_key(self, redis_client):
        await redis_client.sadd("set1", *[f"spark{i}" for i in range(50)])
        await redis_client.sadd("set2", "spark0", "other")

        members = await KeyScanner(redis_client).scan_set_members(["set1", "set2"], count=7)

        assert sorted(members) == sorted([f"spark{i}" for i in range(50)] + ["spark0", "other"])
        assert members.count("spark0") == 2

    @pytest.mark.asyncio
    async def test_missing_key_has_no_members(self, redis_client):
        assert await KeyScanner(redis_client).scan_set_members(["missing"]) == []

    @pytest.mark.asyncio
    async def test_no_keys(self, redis_client):
        assert await KeyScanner(redis_client).scan_set_members([]) == []

    @pytest.mark.asyncio
    async def test_failure_names_the_key(self):
        client = Mock()
        client.sscan = AsyncMock(side_effect=RedisConnectionError("connection lost"))

        with pytest.raises(ScanInterrupted) as exc_info:
            await KeyScanner(client).scan_set_members(["set1"])

        assert exc_info.value.target == "set1"


class TestEscapePattern:

    def test_plain_names_unchanged(self):
        assert escape_pattern("http://10.0.2.15:8888_1") == "http://10.0.2.15:8888_1"

    def test_glob_characters_escaped(self):
        assert escape_pattern("a*b?[c]") == "a\\*b\\?\\[c\\]"
