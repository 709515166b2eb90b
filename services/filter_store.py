import logging
from typing import Dict, Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)

SUBMISSION_FILTERS_KEY = "formbuilder:submission_filters"
FILTER_PRESETS_KEY = "formbuilder:filter_presets"

class KeyValueStore:
    """String key-value store used for persisted filter state"""

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str) -> None:
        raise NotImplementedError

class RedisKeyValueStore(KeyValueStore):
    def __init__(self, redis_client: redis.Redis, namespace: Optional[str] = None):
        self.redis_client = redis_client
        self.namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}" if self.namespace else key

    async def get(self, key: str) -> Optional[str]:
        value = await self.redis_client.get(self._key(key))
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    async def set(self, key: str, value: str) -> None:
        await self.redis_client.set(self._key(key), value)
        logger.debug(f"Stored {len(value)} bytes under {self._key(key)}")

class MemoryKeyValueStore(KeyValueStore):
    """Process-local store for tests and single-user tools"""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value
