from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from constants import (
    ALL_SPARKS_SCAN_COUNT,
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_KEYS_MATCH_SCAN_COUNT,
    DEFAULT_ROOM_REFRESH_INTERVAL,
    MAX_SPARK_FORWARDS_PER_BATCH,
    MEMBERS_SSCAN_COUNT,
    TTL_REFRESH_DRIFT_FACTOR,
)


class AdapterOptions(BaseModel):
    """Tunables for RoomsAdapter. Intervals are in seconds."""

    namespace: str = Field(default="room_manager", min_length=1)
    # Boot id of this process; defaults to start time in epoch milliseconds
    identifier: Optional[str] = None
    room_refresh_interval: float = Field(default=DEFAULT_ROOM_REFRESH_INTERVAL, gt=0)
    heartbeat_interval: float = Field(default=DEFAULT_HEARTBEAT_INTERVAL, gt=0)
    drift_factor: float = Field(default=TTL_REFRESH_DRIFT_FACTOR, gt=1)
    keys_scan_count: int = Field(default=DEFAULT_KEYS_MATCH_SCAN_COUNT, gt=0)
    members_scan_count: int = Field(default=MEMBERS_SSCAN_COUNT, gt=0)
    all_sparks_scan_count: int = Field(default=ALL_SPARKS_SCAN_COUNT, gt=0)
    max_forward_batch: int = Field(default=MAX_SPARK_FORWARDS_PER_BATCH, gt=0)


class BroadcastOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    rooms: list[str] = Field(default_factory=list)
    except_: list[str] = Field(default_factory=list, alias="except")
    # Applied once to the broadcast data; None means "first element of a list"
    transformer: Optional[Callable[[Any], Any]] = None


class BroadcastRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    data: Any = None
    rooms: list[str] = Field(default_factory=list)
    except_: list[str] = Field(default_factory=list, alias="except")


class RoomsResponse(BaseModel):
    rooms: list[str]

class ClientsResponse(BaseModel):
    room: str
    clients: list[str]

class IsEmptyResponse(BaseModel):
    room: str
    is_empty: bool
