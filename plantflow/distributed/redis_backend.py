"""
Redis backend for workflow persistence.

Provides:
- Definition snapshots (JSON) per workflow
- Current node pointers per workflow
- An index of persisted workflow ids
"""

import json
from typing import Any, Dict, List, Optional, Union
import logging

import redis.asyncio as redis

from ..core.state import WorkflowPersistence

logger = logging.getLogger(__name__)


def _text(value: Union[bytes, str, None]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode()
    return value


class RedisWorkflowPersistence(WorkflowPersistence):
    """
    Redis-backed persistence for workflow definitions and current nodes.

    Keys:
    - `<prefix>:definition:<id>`: JSON definition snapshot
    - `<prefix>:current:<id>`: current node id
    - `<prefix>:index:definitions`: set of persisted workflow ids

    Example:
        persistence = RedisWorkflowPersistence("redis://localhost:6379/0")
        await persistence.connect()

        controller = WorkflowController(persistence=persistence)
        await controller.import_workflow(diagram, id="tour")
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = "plantflow",
        ttl: Optional[int] = None,  # Seconds, None = no expiry
        client: Optional[redis.Redis] = None,
    ):
        self.redis_url = redis_url
        self.prefix = prefix
        self.ttl = ttl
        self._client: Optional[redis.Redis] = client

    async def connect(self) -> None:
        """Connect to Redis."""
        if self._client is None:
            self._client = redis.from_url(self.redis_url)
        await self._client.ping()
        logger.info(f"Connected to Redis at {self.redis_url}")

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("Not connected to Redis, call connect() first")
        return self._client

    def _definition_key(self, workflow_id: str) -> str:
        return f"{self.prefix}:definition:{workflow_id}"

    def _current_key(self, workflow_id: str) -> str:
        return f"{self.prefix}:current:{workflow_id}"

    def _index_key(self) -> str:
        return f"{self.prefix}:index:definitions"

    async def _write(self, key: str, value: str) -> None:
        if self.ttl:
            await self.client.setex(key, self.ttl, value)
        else:
            await self.client.set(key, value)

    async def create_definition(self, snapshot: Dict[str, Any]) -> None:
        """Save a definition snapshot and its current node."""
        workflow_id = snapshot.get("id")
        if not workflow_id:
            raise ValueError("snapshot has no workflow id")

        await self._write(self._definition_key(workflow_id), json.dumps(snapshot))
        await self.client.sadd(self._index_key(), workflow_id)

        current = snapshot.get("current_node_id")
        if current:
            await self._write(self._current_key(workflow_id), current)
        logger.debug(f"Persisted definition {workflow_id}")

    async def load_definition(self, workflow_id: str) -> Optional[Dict[str, Any]]:
        """Load a definition snapshot."""
        data = await self.client.get(self._definition_key(workflow_id))
        if data:
            return json.loads(data)
        return None

    async def get_current_node_id(self, workflow_id: str) -> Optional[str]:
        return _text(await self.client.get(self._current_key(workflow_id)))

    async def update_current_node_id(self, workflow_id: str, node_id: Optional[str]) -> None:
        key = self._current_key(workflow_id)
        if node_id:
            await self._write(key, node_id)
        else:
            await self.client.delete(key)

    async def delete(self, workflow_id: str) -> None:
        """Delete the snapshot, current node and index entry of a workflow."""
        await self.client.delete(
            self._definition_key(workflow_id),
            self._current_key(workflow_id),
        )
        await self.client.srem(self._index_key(), workflow_id)

    async def list_definitions(self) -> List[str]:
        """List persisted workflow ids."""
        ids = await self.client.smembers(self._index_key())
        return sorted(_text(wid) for wid in ids)
