"""
Cart Service — 変更通知パブリッシャー

コミット済みの在庫変更を Redis Pub/Sub で発行する。
Pub/Sub は fire-and-forget 方式。発行に失敗してもカート操作の結果は変わらない。
"""

import json
import logging

import redis.asyncio as aioredis
from pydantic import BaseModel
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

INVENTORY_EVENTS_CHANNEL = "inventory_events"


class ChangePublisher:
    def __init__(
        self,
        redis: aioredis.Redis,
        channel: str = INVENTORY_EVENTS_CHANNEL,
    ) -> None:
        self.redis = redis
        self.channel = channel

    async def publish(self, event: BaseModel) -> None:
        event_type = type(event).__name__
        try:
            await self.redis.publish(
                self.channel,
                json.dumps(
                    {
                        "event_type": event_type,
                        "data": event.model_dump(mode="json"),
                    },
                    default=str,
                ),
            )
        except RedisError:
            logger.warning("Failed to publish %s to %s", event_type, self.channel)
