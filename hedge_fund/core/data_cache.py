"""
Data Cache

Memoized access to market datasets. Concurrent requests for the same key
share one upstream fetch; failures are reported to every waiter and never
stored, so a later call may try again.
"""

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Dict, Optional, TYPE_CHECKING

from .errors import FetchError
from .models import CacheKey, MarketDataset

if TYPE_CHECKING:
    from .dataset_store import RedisDatasetStore
    from ..services.data_ingestion.market_data_provider import MarketDataProvider


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    upstream_fetches: int = 0


class DataCache:
    """
    Dataset cache with per-key fetch coalescing.

    Lookup order is the in-memory entries, then the optional cross-run store,
    then the provider. Entries live as long as the cache instance.
    """

    def __init__(self, provider: 'MarketDataProvider', store: Optional['RedisDatasetStore'] = None):
        """
        Initialize the cache.

        Args:
            provider: Upstream market data source
            store: Optional cross-run store keyed identically
        """
        self.provider = provider
        self.store = store
        self.stats = CacheStats()
        self._entries: Dict[CacheKey, MarketDataset] = {}
        self._in_flight: Dict[CacheKey, Future] = {}
        self._lock = threading.Lock()
        self.logger = logging.getLogger(f"{__name__}.DataCache")

    def get_or_fetch(self, key: CacheKey) -> MarketDataset:
        """
        Return the dataset for ``key``, fetching it at most once.

        Args:
            key: Exact-match dataset key

        Returns:
            The cached or freshly fetched dataset

        Raises:
            FetchError: If the fetch this call waited on failed
        """
        with self._lock:
            dataset = self._entries.get(key)
            if dataset is not None:
                self.stats.hits += 1
                self.logger.debug(f"Cache hit for {key.ticker} {key.kind.value} {key.date_range}")
                return dataset

            pending = self._in_flight.get(key)
            if pending is None:
                pending = Future()
                self._in_flight[key] = pending
                owner = True
                self.stats.misses += 1
            else:
                owner = False
                self.stats.hits += 1

        if not owner:
            self.logger.debug(f"Waiting on in-flight fetch for {key.ticker}")
            return pending.result()

        try:
            dataset = self._load(key)
        except Exception as e:
            error = e if isinstance(e, FetchError) else FetchError(
                f"Fetch failed for {key.ticker}: {e}", ticker=key.ticker
            )
            if error is not e:
                error.__cause__ = e
            with self._lock:
                self._in_flight.pop(key, None)
            pending.set_exception(error)
            raise error

        with self._lock:
            self._entries[key] = dataset
            self._in_flight.pop(key, None)
        pending.set_result(dataset)
        return dataset

    def _load(self, key: CacheKey) -> MarketDataset:
        if self.store is not None:
            stored = self.store.get(key)
            if stored is not None:
                self.logger.debug(f"Loaded {key.ticker} from dataset store")
                return stored

        with self._lock:
            self.stats.upstream_fetches += 1
        dataset = self.provider.fetch(key.ticker, key.kind, key.date_range)

        if self.store is not None:
            self.store.put(key, dataset)
        return dataset

    def contains(self, key: CacheKey) -> bool:
        with self._lock:
            return key in self._entries

    def clear(self) -> None:
        """Discard every cached entry. In-flight fetches are unaffected."""
        with self._lock:
            self._entries.clear()
        self.logger.info("Data cache cleared")
