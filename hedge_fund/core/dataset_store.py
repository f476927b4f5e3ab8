"""
Dataset Store

Optional cross-run tier behind the data cache. Datasets are stored in Redis
as JSON under the same key the cache uses. The store is best effort: any
Redis or decoding failure is logged and treated as a miss.
"""

import json
import logging
from typing import Any, Optional

import redis

from .models import CacheKey, MarketDataset


class RedisDatasetStore:
    """JSON dataset storage in Redis with a fixed time-to-live."""

    def __init__(self, client: Any, ttl_seconds: int = 86400, prefix: str = 'hedge_fund:dataset'):
        """
        Initialize the store.

        Args:
            client: redis.Redis compatible client
            ttl_seconds: Expiry applied to every write
            prefix: Key namespace
        """
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix
        self.logger = logging.getLogger(f"{__name__}.RedisDatasetStore")

    @classmethod
    def from_url(cls, url: str, ttl_seconds: int = 86400) -> 'RedisDatasetStore':
        return cls(redis.Redis.from_url(url, decode_responses=True), ttl_seconds=ttl_seconds)

    def get(self, key: CacheKey) -> Optional[MarketDataset]:
        storage_key = key.to_storage_key(self.prefix)
        try:
            payload = self.client.get(storage_key)
        except redis.RedisError as e:
            self.logger.error(f"Dataset store read failed for {storage_key}: {e}")
            return None

        if payload is None:
            return None

        try:
            if isinstance(payload, bytes):
                payload = payload.decode('utf-8')
            return MarketDataset.from_dict(json.loads(payload))
        except (KeyError, TypeError, ValueError) as e:
            self.logger.warning(f"Discarding unreadable dataset {storage_key}: {e}")
            return None

    def put(self, key: CacheKey, dataset: MarketDataset) -> None:
        storage_key = key.to_storage_key(self.prefix)
        try:
            self.client.setex(storage_key, self.ttl_seconds, json.dumps(dataset.to_dict()))
        except redis.RedisError as e:
            self.logger.error(f"Dataset store write failed for {storage_key}: {e}")
