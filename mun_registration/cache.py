"""
Committee snapshot cache

The admin screens work from a cached, possibly stale, copy of the
committees. The cache is filled from the store on load and overwritten
entry by entry after every successful seat mutation; it is never the
source of truth.

Single committees may be cached before the full set has been loaded, so
"has entries" and "holds every committee" are tracked separately: only
``refresh`` marks the cache as loaded.
"""

import json
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

import redis

from .models import Committee

CACHE_KEY = "committee_cache"


class SnapshotCache(ABC):
    """Abstract committee snapshot cache"""

    @abstractmethod
    def get(self, committee_id: str) -> Optional[Committee]:
        pass

    @abstractmethod
    def put(self, committee: Committee) -> None:
        pass

    @abstractmethod
    def all(self) -> List[Committee]:
        pass

    @abstractmethod
    def clear(self) -> None:
        """Drop every entry and the loaded marker"""

    @abstractmethod
    def refresh(self, committees: Iterable[Committee]) -> None:
        """Replace the whole cache with freshly loaded committees and mark it loaded"""

    @abstractmethod
    def is_loaded(self) -> bool:
        """Whether the cache holds the complete committee set"""


class InMemorySnapshotCache(SnapshotCache):
    """Process-local cache, used in development and tests"""

    def __init__(self):
        self._committees: Dict[str, Committee] = {}
        self._loaded = False

    def get(self, committee_id: str) -> Optional[Committee]:
        return self._committees.get(committee_id)

    def put(self, committee: Committee) -> None:
        self._committees[committee.committee_id] = committee

    def all(self) -> List[Committee]:
        return list(self._committees.values())

    def clear(self) -> None:
        self._committees.clear()
        self._loaded = False

    def refresh(self, committees: Iterable[Committee]) -> None:
        self._committees = {committee.committee_id: committee for committee in committees}
        self._loaded = True

    def is_loaded(self) -> bool:
        return self._loaded


class RedisSnapshotCache(SnapshotCache):
    """
    Redis hash of committee documents shared by the app's workers

    Each field is a committee ID, each value the committee's store
    document as JSON. A separate ``<key>:loaded`` key marks a complete load.
    """

    def __init__(self, client: redis.Redis, key: str = CACHE_KEY):
        self.client = client
        self.key = key
        self.loaded_key = f"{key}:loaded"

    @classmethod
    def from_settings(cls, host: str, port: int) -> 'RedisSnapshotCache':
        return cls(redis.Redis(host=host, port=port, decode_responses=True))

    @staticmethod
    def _decode(committee_id: str, raw: str) -> Committee:
        return Committee.from_dict(committee_id, json.loads(raw))

    def get(self, committee_id: str) -> Optional[Committee]:
        raw = self.client.hget(self.key, committee_id)
        return self._decode(committee_id, raw) if raw else None

    def put(self, committee: Committee) -> None:
        self.client.hset(self.key, committee.committee_id, json.dumps(committee.to_dict()))

    def all(self) -> List[Committee]:
        return [
            self._decode(committee_id, raw)
            for committee_id, raw in self.client.hgetall(self.key).items()
        ]

    def clear(self) -> None:
        self.client.delete(self.key, self.loaded_key)

    def refresh(self, committees: Iterable[Committee]) -> None:
        mapping = {
            committee.committee_id: json.dumps(committee.to_dict())
            for committee in committees
        }
        # Other workers never observe a half-written hash
        pipe = self.client.pipeline(transaction=True)
        pipe.delete(self.key)
        if mapping:
            pipe.hset(self.key, mapping=mapping)
        pipe.set(self.loaded_key, "1")
        pipe.execute()

    def is_loaded(self) -> bool:
        return bool(self.client.exists(self.loaded_key))


class CacheFactory:
    """Factory for snapshot caches"""

    @staticmethod
    def create_cache(cache_type: str, **kwargs) -> SnapshotCache:
        """
        Create a snapshot cache based on type

        Args:
            cache_type: 'redis' or 'memory'
            **kwargs: host/port for redis

        Raises:
            ValueError: If the cache type is not supported
        """
        if cache_type.lower() == 'redis':
            return RedisSnapshotCache.from_settings(
                kwargs.get('host', 'localhost'),
                int(kwargs.get('port', 6379))
            )
        elif cache_type.lower() == 'memory':
            return InMemorySnapshotCache()
        else:
            raise ValueError(f"Unsupported cache type: {cache_type}")
