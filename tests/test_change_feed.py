import asyncio
import threading

import pytest
from fakeredis import FakeServer
from fakeredis.aioredis import FakeRedis

from app.schemas.enums import ChangeEventType
from app.services.change_feed import ChangeEvent, ChangeFeedError, MemoryChangeFeed, RedisChangeFeed
from app.services.publisher import LocationPublisher
from app.services.subscriber import LocationSubscriber
from app.services.supabase_feed import SupabaseChangeFeed, event_from_payload
from tests.conftest import ALICE, BOB, PROD_A, PROD_B


def _event(production_id, table="location_shares"):
    return ChangeEvent(table=table, event_type=ChangeEventType.update, production_id=production_id)


async def _wait_for(predicate, timeout=3.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


# ------------------------------------------------------------------
# In-process
# ------------------------------------------------------------------

def test_channel_only_receives_matching_rows():
    async def scenario():
        feed = MemoryChangeFeed()
        channel = await feed.subscribe("location_shares", PROD_A)

        delivered = [
            await feed.publish(_event(PROD_B)),
            await feed.publish(_event(PROD_A, table="chat_messages")),
            await feed.publish(_event(PROD_A)),
        ]
        event = await asyncio.wait_for(channel.get(), timeout=1)
        return delivered, event

    delivered, event = asyncio.run(scenario())

    assert delivered == [0, 0, 1]
    assert event.production_id == PROD_A
    assert event.table == "location_shares"


def test_removed_channel_yields_nothing_more():
    async def scenario():
        feed = MemoryChangeFeed()
        channel = await feed.subscribe("location_shares", PROD_A)
        await feed.publish(_event(PROD_A))
        # removed before the loop got to deliver the queued event
        await feed.unsubscribe(channel)
        after = await feed.publish(_event(PROD_A))
        received = [e async for e in channel]
        return feed.channel_count, after, received

    count, after, received = asyncio.run(scenario())

    assert count == 0
    assert after == 0
    assert received == []


def test_fanout_from_worker_thread():
    async def scenario():
        feed = MemoryChangeFeed()
        channel = await feed.subscribe("location_shares", PROD_A)

        worker = threading.Thread(target=feed.fanout, args=(_event(PROD_A),))
        worker.start()
        worker.join()

        return await asyncio.wait_for(channel.get(), timeout=1)

    event = asyncio.run(scenario())

    assert event.production_id == PROD_A


def test_event_json_round_trip_keeps_record():
    event = ChangeEvent("location_shares", ChangeEventType.insert, PROD_A, {"user_id": ALICE, "is_sharing": True})
    assert ChangeEvent.from_json(event.to_json()) == event


# ------------------------------------------------------------------
# Redis
# ------------------------------------------------------------------

def _redis_feed(server):
    return RedisChangeFeed(
        FakeRedis(server=server, decode_responses=True),
        read_timeout=0.05,
    )


def test_redis_feed_filters_by_production():
    server = FakeServer()

    async def scenario():
        feed = _redis_feed(server)
        channel = await feed.subscribe("location_shares", PROD_A)

        await feed.publish(_event(PROD_B))
        await feed.publish(_event(PROD_A))
        event = await asyncio.wait_for(channel.get(), timeout=2)

        await feed.unsubscribe(channel)
        return event, channel

    event, channel = asyncio.run(scenario())

    assert event.production_id == PROD_A
    assert channel.closed


def test_write_on_one_worker_reaches_view_on_another(store):
    server = FakeServer()
    snapshots = []

    async def on_snapshot(snapshot):
        snapshots.append(snapshot)

    async def scenario():
        viewer_feed = _redis_feed(server)
        writer_feed = _redis_feed(server)

        sub = LocationSubscriber(store, viewer_feed, on_snapshot, poll_interval=None)
        await sub.select(PROD_A)

        publisher = LocationPublisher(store, writer_feed)
        await publisher.publish_position(BOB, PROD_A, 1.0, 2.0)

        await _wait_for(lambda: len(snapshots) == 2)
        await sub.close()

    asyncio.run(scenario())

    assert snapshots[0].locations == []
    assert [loc.user_id for loc in snapshots[1].locations] == [BOB]


# ------------------------------------------------------------------
# Supabase Realtime
# ------------------------------------------------------------------

class FakeRealtimeChannel:
    def __init__(self, topic, fail=False):
        self.topic = topic
        self.fail = fail
        self.bindings = []

    def on_postgres_changes(self, event, callback, table="*", schema="public", filter=None):
        self.bindings.append({"event": event, "table": table, "schema": schema, "filter": filter, "callback": callback})
        return self

    async def subscribe(self):
        if self.fail:
            raise ConnectionError("realtime down")
        return self


class FakeAsyncClient:
    def __init__(self, fail=False):
        self.fail = fail
        self.channels = []
        self.removed = []

    def channel(self, topic):
        ch = FakeRealtimeChannel(topic, fail=self.fail)
        self.channels.append(ch)
        return ch

    async def remove_channel(self, channel):
        self.removed.append(channel)


def _supabase_feed(client):
    async def factory(url, key):
        return client

    return SupabaseChangeFeed("https://example.supabase.co", "service-key", client_factory=factory)


def test_supabase_feed_subscribes_to_filtered_postgres_changes():
    client = FakeAsyncClient()

    async def scenario():
        feed = _supabase_feed(client)
        channel = await feed.subscribe("location_shares", PROD_A)

        binding = client.channels[0].bindings[0]
        binding["callback"]({
            "data": {
                "type": "UPDATE",
                "table": "location_shares",
                "record": {"user_id": ALICE, "production_id": PROD_A, "is_sharing": True},
            }
        })
        event = await asyncio.wait_for(channel.get(), timeout=1)

        await feed.unsubscribe(channel)
        return binding, event, await feed.publish(_event(PROD_A))

    binding, event, published = asyncio.run(scenario())

    assert binding["event"] == "*"
    assert binding["table"] == "location_shares"
    assert binding["filter"] == f"production_id=eq.{PROD_A}"
    assert event.event_type is ChangeEventType.update
    assert event.record["user_id"] == ALICE
    assert client.removed == client.channels
    # the database announces writes itself
    assert published == 0


def test_supabase_feed_subscribe_failure_is_a_feed_error():
    async def scenario():
        await _supabase_feed(FakeAsyncClient(fail=True)).subscribe("location_shares", PROD_A)

    with pytest.raises(ChangeFeedError):
        asyncio.run(scenario())


def test_realtime_payload_shapes():
    flat = {"eventType": "DELETE", "new": {}, "old": {"id": "row-1"}}
    event = event_from_payload(flat, "location_shares", PROD_A)

    assert event.event_type is ChangeEventType.delete
    assert event.record == {"id": "row-1"}
    assert event.production_id == PROD_A
