"""
Realtime change feeds for location rows.

A channel is keyed by table and production and receives every change to
matching rows. Three feeds share one interface:

- ``RedisChangeFeed``: pub/sub through Redis, shared by every worker
  (SQL store deployments).
- ``SupabaseChangeFeed`` (``app.services.supabase_feed``): Postgres changes
  streamed by Supabase Realtime (Supabase store deployments).
- ``MemoryChangeFeed``: a single-process feed for tests and local runs.
"""

from __future__ import annotations

import asyncio
import json
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set, Tuple

import redis.asyncio as aioredis
from loguru import logger
from redis.exceptions import RedisError

from app.schemas.enums import ChangeEventType


class ChangeFeedError(Exception):
    pass


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event_type: ChangeEventType
    production_id: str
    record: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps({
            "table": self.table,
            "event_type": self.event_type.value,
            "production_id": self.production_id,
            "record": self.record,
        })

    @classmethod
    def from_json(cls, raw) -> "ChangeEvent":
        data = json.loads(raw)
        return cls(
            table=data["table"],
            event_type=ChangeEventType(data["event_type"]),
            production_id=data["production_id"],
            record=data.get("record") or {},
        )


class Channel:
    def __init__(self, table: str, production_id: str, loop: asyncio.AbstractEventLoop):
        self.table = table
        self.production_id = production_id
        self.closed = False
        self._loop = loop
        self._queue: asyncio.Queue[Optional[ChangeEvent]] = asyncio.Queue()

    def matches(self, event: ChangeEvent) -> bool:
        return event.table == self.table and event.production_id == self.production_id

    def _put(self, event: Optional[ChangeEvent]) -> None:
        # events queued before close are dropped once the channel is removed
        if self.closed and event is not None:
            return
        self._queue.put_nowait(event)

    def deliver(self, event: Optional[ChangeEvent]) -> None:
        """Queue an event; safe to call from any thread."""
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._put, event)

    def close(self) -> None:
        self.closed = True
        self.deliver(None)

    async def get(self) -> Optional[ChangeEvent]:
        """Next event, or None once the channel has been removed."""
        if self.closed and self._queue.empty():
            return None
        event = await self._queue.get()
        if event is None or self.closed:
            return None
        return event

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class ChangeFeed(ABC):
    @abstractmethod
    async def subscribe(self, table: str, production_id: str) -> Channel:
        """Open a channel on the running loop; raises ChangeFeedError if the feed is unreachable."""

    @abstractmethod
    async def unsubscribe(self, channel: Channel) -> None:
        ...

    @abstractmethod
    async def publish(self, event: ChangeEvent) -> int:
        """Announce a write. Returns how many subscribers it reached, where known."""


# ------------------------------------------------------------------
# In-process
# ------------------------------------------------------------------

class MemoryChangeFeed(ChangeFeed):
    """Channels live in this process only; other workers never see its events."""

    def __init__(self):
        self._channels: Set[Channel] = set()
        self._lock = threading.Lock()

    async def subscribe(self, table: str, production_id: str) -> Channel:
        ch = Channel(table, production_id, asyncio.get_running_loop())
        with self._lock:
            self._channels.add(ch)
        logger.debug(f"Channel opened | table={table} production={production_id}")
        return ch

    async def unsubscribe(self, channel: Channel) -> None:
        with self._lock:
            self._channels.discard(channel)
        channel.close()
        logger.debug(f"Channel removed | table={channel.table} production={channel.production_id}")

    def fanout(self, event: ChangeEvent) -> int:
        """Deliver to matching channels; thread-safe."""
        with self._lock:
            targets = [ch for ch in self._channels if ch.matches(event)]

        for ch in targets:
            ch.deliver(event)

        logger.debug(
            f"Change published | table={event.table} type={event.event_type.value} "
            f"production={event.production_id} channels={len(targets)}"
        )
        return len(targets)

    async def publish(self, event: ChangeEvent) -> int:
        return self.fanout(event)

    @property
    def channel_count(self) -> int:
        with self._lock:
            return len(self._channels)


# ------------------------------------------------------------------
# Redis pub/sub
# ------------------------------------------------------------------

class RedisChangeFeed(ChangeFeed):
    """
    One Redis pub/sub topic per (table, production). Every worker publishes
    its writes there and every subscribed view, in any worker, receives them.
    """

    def __init__(self, client: aioredis.Redis, prefix: str = "crewmap:changes", read_timeout: float = 1.0):
        self._redis = client
        self._prefix = prefix
        self._read_timeout = read_timeout
        self._subscriptions: Dict[Channel, Tuple[Any, asyncio.Task]] = {}

    @classmethod
    def from_url(cls, url: str) -> "RedisChangeFeed":
        return cls(aioredis.from_url(url, decode_responses=True))

    def _topic(self, table: str, production_id: str) -> str:
        return f"{self._prefix}:{table}:{production_id}"

    async def subscribe(self, table: str, production_id: str) -> Channel:
        ch = Channel(table, production_id, asyncio.get_running_loop())
        topic = self._topic(table, production_id)

        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(topic)
        except RedisError as e:
            await pubsub.aclose()
            logger.error(f"Redis subscribe failed | topic={topic} | error={e}")
            raise ChangeFeedError("Change feed unavailable") from e

        self._subscriptions[ch] = (pubsub, asyncio.create_task(self._pump(pubsub, ch)))
        logger.debug(f"Redis channel opened | topic={topic}")
        return ch

    async def _pump(self, pubsub, ch: Channel) -> None:
        while not ch.closed:
            try:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=self._read_timeout)
            except RedisError as e:
                logger.warning(f"Redis read failed | production={ch.production_id} | error={e}")
                await asyncio.sleep(self._read_timeout)
                continue

            if message is None or message.get("type") != "message":
                continue

            try:
                event = ChangeEvent.from_json(message["data"])
            except (ValueError, KeyError) as e:
                logger.warning(f"Dropping malformed change message | production={ch.production_id} | error={e}")
                continue

            ch.deliver(event)

    async def unsubscribe(self, channel: Channel) -> None:
        channel.close()
        entry = self._subscriptions.pop(channel, None)
        if entry is None:
            return

        pubsub, task = entry
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        try:
            # closing the connection drops its subscriptions server side
            await pubsub.aclose()
        except RedisError as e:
            logger.warning(f"Redis pubsub close failed | production={channel.production_id} | error={e}")
        logger.debug(f"Redis channel removed | production={channel.production_id}")

    async def publish(self, event: ChangeEvent) -> int:
        topic = self._topic(event.table, event.production_id)
        try:
            receivers = await self._redis.publish(topic, event.to_json())
        except RedisError as e:
            # the write itself succeeded; subscribers catch up on their next poll
            logger.error(f"Redis publish failed | topic={topic} | error={e}")
            return 0

        logger.debug(f"Change published | topic={topic} type={event.event_type.value} receivers={receivers}")
        return receivers
