"""Incident change notifications over Redis pub/sub.

Services publish a small JSON event after a mutation commits. A listener task
started by the application subscribes to the same channel and hands each
event to the websocket ``ConnectionManager``. Publishing is best effort: a
Redis outage is logged and never fails the request that triggered it.
"""
import asyncio
import json
import logging
from typing import Optional

import redis.asyncio as redis

from .websocket import ConnectionManager

logger = logging.getLogger(__name__)

INCIDENT_CREATED = "incident_created"
INCIDENT_UPDATED = "incident_updated"
INCIDENT_DELETED = "incident_deleted"


def incident_event(event_type: str, incident_id: str, user_id: str, status: Optional[str]) -> dict:
    return {
        "type": event_type,
        "incidentId": incident_id,
        "userId": user_id,
        "status": status,
    }


class IncidentEventPublisher:
    def __init__(self, redis_client: Optional["redis.Redis"], channel: str):
        self.redis_client = redis_client
        self.channel = channel

    @classmethod
    def from_url(cls, redis_url: Optional[str], channel: str) -> "IncidentEventPublisher":
        if not redis_url:
            logger.info("REDIS_URL not set; incident notifications disabled")
            return cls(None, channel)
        client = redis.from_url(redis_url, encoding="utf-8", decode_responses=True)
        return cls(client, channel)

    @property
    def enabled(self) -> bool:
        return self.redis_client is not None

    async def publish(self, event: dict) -> None:
        if self.redis_client is None:
            return
        try:
            await self.redis_client.publish(self.channel, json.dumps(event))
        except Exception:
            logger.exception("Failed to publish %s for incident %s", event.get("type"), event.get("incidentId"))

    async def close(self) -> None:
        if self.redis_client is not None:
            await self.redis_client.aclose()


async def incident_event_listener(publisher: IncidentEventPublisher, manager: ConnectionManager):
    pubsub = publisher.redis_client.pubsub()
    await pubsub.subscribe(publisher.channel)
    logger.info("Listening for incident events on '%s'", publisher.channel)
    try:
        async for message in pubsub.listen():
            if message["type"] != "message":
                continue
            try:
                event = json.loads(message["data"])
            except (TypeError, ValueError):
                logger.warning("Ignoring malformed incident event: %r", message["data"])
                continue
            await manager.dispatch_incident_event(event)
    except asyncio.CancelledError:
        logger.info("Incident event listener stopped")
        raise
    except Exception:
        # runs as a background task; nobody awaits it until shutdown
        logger.exception("Incident event listener crashed; notifications stopped")
    finally:
        await pubsub.aclose()
