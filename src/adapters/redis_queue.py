"""Redis list adapter for the downstream action queues.

Implements the core QueuePublisherPort with replace semantics: the list is
deleted and refilled inside one MULTI/EXEC transaction, so the worker never
observes a half-written batch. Groupwarden is the only writer of these lists;
a batch the worker has not drained yet is discarded by the next publish.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional, Sequence

import redis

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10


class RedisQueuePublisher:
    """Publish JSON payloads to Redis lists, replacing previous contents."""

    def __init__(self, client: "redis.Redis") -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str, timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS) -> "RedisQueuePublisher":
        client = redis.Redis.from_url(url, socket_timeout=timeout, socket_connect_timeout=timeout)
        return cls(client)

    def publish(self, queue_name: str, payloads: Sequence[dict[str, Any]]) -> bool:
        """Replace ``queue_name`` with ``payloads``; return False on failure.

        An empty batch still clears the queue.
        """

        encoded = [json.dumps(payload, ensure_ascii=False) for payload in payloads]
        try:
            pipe = self._client.pipeline(transaction=True)
            pipe.delete(queue_name)
            if encoded:
                pipe.rpush(queue_name, *encoded)
            pipe.execute()
        except redis.RedisError:
            LOGGER.exception("Error replacing queue %s (%s items)", queue_name, len(encoded))
            return False
        if not encoded:
            LOGGER.info("Cleared %s; no items to send", queue_name)
        return True

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            LOGGER.exception("Redis ping failed")
            return False

    def close(self) -> None:
        self._client.close()
