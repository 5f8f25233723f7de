"""
Tests for the Redis change publisher
"""

import json
import logging
from datetime import datetime, timezone
from uuid import uuid4

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.commands import CartInventoryCoordinator
from app.events import CartItemReleased
from app.publisher import INVENTORY_EVENTS_CHANNEL, ChangePublisher


class FakeRedis:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.published: list[tuple[str, str]] = []

    async def publish(self, channel: str, message: str) -> int:
        if self.fail:
            raise RedisConnectionError("Connection refused")
        self.published.append((channel, message))
        return 1


def _released_event() -> CartItemReleased:
    return CartItemReleased(
        item_id="item-1",
        cart_line_id="line-1",
        owner_id="owner-1",
        restored_quantity=2,
        available=9,
        timestamp=datetime(2025, 7, 13, 11, 45, tzinfo=timezone.utc),
    )


@pytest.mark.asyncio
async def test_publish_sends_event_type_and_data():
    redis = FakeRedis()

    await ChangePublisher(redis).publish(_released_event())

    assert len(redis.published) == 1
    channel, message = redis.published[0]
    assert channel == INVENTORY_EVENTS_CHANNEL
    payload = json.loads(message)
    assert payload["event_type"] == "CartItemReleased"
    assert payload["data"]["item_id"] == "item-1"
    assert payload["data"]["available"] == 9
    assert payload["data"]["timestamp"].startswith("2025-07-13T11:45:00")


@pytest.mark.asyncio
async def test_publish_failure_is_logged_not_raised(caplog):
    redis = FakeRedis(fail=True)

    with caplog.at_level(logging.WARNING, logger="app.publisher"):
        await ChangePublisher(redis, channel="menu_events").publish(_released_event())

    assert "Failed to publish CartItemReleased to menu_events" in caplog.text


@pytest.mark.asyncio
async def test_coordinator_succeeds_when_redis_is_down(store, seed_item, snapshot):
    coordinator = CartInventoryCoordinator(store, ChangePublisher(FakeRedis(fail=True)))
    item_id = await seed_item(3)

    result = await coordinator.reserve(uuid4(), item_id, 1)

    assert result["success"] is True
    assert (await snapshot(item_id))["item"]["available"] == 2
