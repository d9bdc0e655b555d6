"""
Tests for RedisWorkflowPersistence against a mocked asyncio Redis client.
"""

import json
from unittest.mock import AsyncMock

import pytest

from plantflow import WorkflowController, parse_diagram
from plantflow.distributed import RedisWorkflowPersistence

from conftest import LINEAR_DIAGRAM


@pytest.fixture
def client() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def persistence(client) -> RedisWorkflowPersistence:
    return RedisWorkflowPersistence(prefix="test", client=client)


class TestRedisWorkflowPersistence:

    @pytest.mark.asyncio
    async def test_connect_pings_injected_client(self, persistence, client):
        await persistence.connect()
        client.ping.assert_awaited_once()

        await persistence.disconnect()
        client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_requires_connection(self):
        persistence = RedisWorkflowPersistence()
        with pytest.raises(RuntimeError):
            await persistence.get_current_node_id("wf")

    @pytest.mark.asyncio
    async def test_create_definition(self, persistence, client):
        snapshot = parse_diagram(LINEAR_DIAGRAM, id="wf").to_dict()
        snapshot["current_node_id"] = "Welcome"

        await persistence.create_definition(snapshot)

        client.set.assert_any_await("test:definition:wf", json.dumps(snapshot))
        client.set.assert_any_await("test:current:wf", "Welcome")
        client.sadd.assert_awaited_once_with("test:index:definitions", "wf")

    @pytest.mark.asyncio
    async def test_create_definition_requires_id(self, persistence):
        with pytest.raises(ValueError):
            await persistence.create_definition({"nodes": []})

    @pytest.mark.asyncio
    async def test_ttl_uses_setex(self, client):
        persistence = RedisWorkflowPersistence(prefix="test", ttl=60, client=client)
        await persistence.update_current_node_id("wf", "Next")
        client.setex.assert_awaited_once_with("test:current:wf", 60, "Next")
        client.set.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_current_node_roundtrip(self, persistence, client):
        client.get.return_value = b"Next"
        assert await persistence.get_current_node_id("wf") == "Next"
        client.get.assert_awaited_with("test:current:wf")

        client.get.return_value = None
        assert await persistence.get_current_node_id("wf") is None

    @pytest.mark.asyncio
    async def test_clearing_current_node_deletes_key(self, persistence, client):
        await persistence.update_current_node_id("wf", None)
        client.delete.assert_awaited_once_with("test:current:wf")

    @pytest.mark.asyncio
    async def test_load_definition(self, persistence, client):
        snapshot = parse_diagram(LINEAR_DIAGRAM, id="wf").to_dict()
        client.get.return_value = json.dumps(snapshot).encode()

        assert await persistence.load_definition("wf") == snapshot
        client.get.assert_awaited_with("test:definition:wf")

    @pytest.mark.asyncio
    async def test_delete(self, persistence, client):
        await persistence.delete("wf")
        client.delete.assert_awaited_once_with("test:definition:wf", "test:current:wf")
        client.srem.assert_awaited_once_with("test:index:definitions", "wf")

    @pytest.mark.asyncio
    async def test_list_definitions(self, persistence, client):
        client.smembers.return_value = {b"b", b"a"}
        assert await persistence.list_definitions() == ["a", "b"]

    @pytest.mark.asyncio
    async def test_controller_integration(self, persistence, client, registry):
        client.get.return_value = None
        controller = WorkflowController(registry=registry, persistence=persistence)

        await controller.import_workflow(LINEAR_DIAGRAM, id="wf")
        await controller.advance_by_choice_value("wf", None)

        client.set.assert_any_await("test:current:wf", "Welcome")
        client.set.assert_any_await("test:current:wf", "Next")
        client.sadd.assert_awaited_once_with("test:index:definitions", "wf")
