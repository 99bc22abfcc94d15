from __future__ import annotations

import asyncio
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional

from loguru import logger
from supabase import AsyncClient, acreate_client

from app.schemas.enums import ChangeEventType
from app.services.change_feed import ChangeEvent, ChangeFeed, ChangeFeedError, Channel


def event_from_payload(payload: Dict[str, Any], table: str, production_id: str) -> ChangeEvent:
    """Map a Realtime postgres_changes payload onto a ChangeEvent."""
    # realtime-py has shipped both the raw ``data`` envelope and the flattened form
    data = payload.get("data", payload)
    event_type = data.get("eventType") or data.get("type") or ChangeEventType.update.value
    record = (
        data.get("new")
        or data.get("record")
        or data.get("old")
        or data.get("old_record")
        or {}
    )
    return ChangeEvent(
        table=table,
        event_type=ChangeEventType(event_type),
        production_id=production_id,
        record=dict(record),
    )


class SupabaseChangeFeed(ChangeFeed):
    """
    Row changes streamed by Supabase Realtime ``postgres_changes``, filtered
    to one production per channel.

    The database announces its own writes, including ones made by other
    workers or straight against Supabase, so ``publish`` has nothing to do.
    """

    def __init__(
        self,
        url: str,
        key: str,
        client_factory: Callable[[str, str], Awaitable[AsyncClient]] = acreate_client,
    ):
        self._url = url
        self._key = key
        self._client_factory = client_factory
        self._client: Optional[AsyncClient] = None
        self._lock = asyncio.Lock()
        self._channels: Dict[Channel, Any] = {}

    async def _get_client(self) -> AsyncClient:
        async with self._lock:
            if self._client is None:
                if not (self._url and self._key):
                    raise ChangeFeedError("Realtime needs SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY")
                self._client = await self._client_factory(self._url, self._key)
                logger.info(f"Supabase realtime client created | url={self._url}")
        return self._client

    async def subscribe(self, table: str, production_id: str) -> Channel:
        ch = Channel(table, production_id, asyncio.get_running_loop())
        client = await self._get_client()

        def on_change(payload: Dict[str, Any]) -> None:
            try:
                event = event_from_payload(payload, table, production_id)
            except ValueError as e:
                logger.warning(f"Dropping unknown realtime payload | production={production_id} | error={e}")
                return
            ch.deliver(event)

        realtime = client.channel(f"{table}:{production_id}:{uuid.uuid4().hex[:8]}")
        realtime.on_postgres_changes(
            event="*",
            schema="public",
            table=table,
            filter=f"production_id=eq.{production_id}",
            callback=on_change,
        )
        try:
            await realtime.subscribe()
        except Exception as e:
            logger.error(f"Realtime subscribe failed | table={table} production={production_id} | error={e}")
            raise ChangeFeedError("Change feed unavailable") from e

        self._channels[ch] = realtime
        logger.debug(f"Realtime channel opened | table={table} production={production_id}")
        return ch

    async def unsubscribe(self, channel: Channel) -> None:
        channel.close()
        realtime = self._channels.pop(channel, None)
        if realtime is None or self._client is None:
            return

        try:
            await self._client.remove_channel(realtime)
        except Exception as e:
            logger.warning(f"Realtime channel removal failed | production={channel.production_id} | error={e}")
        logger.debug(f"Realtime channel removed | production={channel.production_id}")

    async def publish(self, event: ChangeEvent) -> int:
        return 0
