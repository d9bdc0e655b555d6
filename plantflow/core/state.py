"""
Instance state for running workflows.

Every running workflow instance owns:
- A pointer to its current node
- A bag of string variables written by action handlers

The manager keeps instances isolated from one another and tolerates
concurrent access from many instance ids at once.
"""

from collections.abc import MutableMapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple
import logging
import threading

logger = logging.getLogger(__name__)


class VariableBag(MutableMapping):
    """
    Case-insensitive, thread-safe mapping of instance variables.

    Keys keep the spelling they were first written with; lookups ignore case.

    Example:
        bag = VariableBag()
        bag["City"] = "Lisbon"
        assert bag["city"] == "Lisbon"
    """

    def __init__(self, data: Optional[Mapping[str, str]] = None):
        self._store: Dict[str, Tuple[str, str]] = {}
        self._lock = threading.RLock()
        if data:
            self.update(data)

    @staticmethod
    def _fold(key: str) -> str:
        return key.casefold()

    def __getitem__(self, key: str) -> str:
        with self._lock:
            return self._store[self._fold(key)][1]

    def __setitem__(self, key: str, value: str) -> None:
        with self._lock:
            folded = self._fold(key)
            existing = self._store.get(folded)
            original = existing[0] if existing else key
            self._store[folded] = (original, value)

    def __delitem__(self, key: str) -> None:
        with self._lock:
            del self._store[self._fold(key)]

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            keys = [original for original, _ in self._store.values()]
        return iter(keys)

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        with self._lock:
            return self._fold(key) in self._store

    def update_many(self, values: Mapping[str, Any]) -> None:
        """Write several variables under one lock acquisition."""
        with self._lock:
            for key, value in values.items():
                self[key] = value

    def snapshot(self) -> Dict[str, str]:
        """Get a plain dict copy of the variables."""
        with self._lock:
            return {original: value for original, value in self._store.values()}

    def __repr__(self) -> str:
        return f"VariableBag({self.snapshot()!r})"


@dataclass
class InstanceState:
    """State of one running workflow instance."""
    workflow_id: str
    current_node_id: Optional[str] = None
    variables: VariableBag = field(default_factory=VariableBag)
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "current_node_id": self.current_node_id,
            "variables": self.variables.snapshot(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class InstanceStateManager:
    """
    Thread-safe in-memory manager of instance state keyed by workflow id.

    The manager lock only guards the id -> InstanceState map; each instance's
    variables carry their own lock, so writers on different ids never wait
    on each other for variable updates.

    Example:
        states = InstanceStateManager()
        states.set_current_node("tour", "Welcome")
        states.set_variable("tour", "name", "Ada")
    """

    def __init__(self):
        self._instances: Dict[str, InstanceState] = {}
        self._lock = threading.RLock()

    @staticmethod
    def _check_id(workflow_id: str) -> None:
        if not workflow_id or not workflow_id.strip():
            raise ValueError("workflow_id is required")

    def _get_or_create(self, workflow_id: str) -> InstanceState:
        with self._lock:
            state = self._instances.get(workflow_id)
            if state is None:
                state = InstanceState(workflow_id=workflow_id)
                self._instances[workflow_id] = state
            return state

    def get_state(self, workflow_id: str) -> Optional[InstanceState]:
        with self._lock:
            return self._instances.get(workflow_id)

    def get_current_node(self, workflow_id: Optional[str]) -> Optional[str]:
        """Get the current node id of an instance, or None."""
        if not workflow_id or not workflow_id.strip():
            return None
        state = self.get_state(workflow_id)
        return state.current_node_id if state else None

    def set_current_node(self, workflow_id: str, node_id: Optional[str]) -> None:
        """Set the current node id of an instance."""
        self._check_id(workflow_id)
        with self._lock:
            state = self._get_or_create(workflow_id)
            state.current_node_id = node_id
            state.updated_at = datetime.utcnow()

    def clear_current_node(self, workflow_id: str) -> None:
        """Forget the current node (restart scenarios)."""
        with self._lock:
            state = self._instances.get(workflow_id)
            if state is not None:
                state.current_node_id = None
                state.updated_at = datetime.utcnow()

    def get_variables(self, workflow_id: str) -> VariableBag:
        """Get the live variable bag of an instance, creating it on demand."""
        self._check_id(workflow_id)
        return self._get_or_create(workflow_id).variables

    def set_variable(self, workflow_id: str, key: str, value: str) -> None:
        """Set one instance variable."""
        self._check_id(workflow_id)
        if not key or not key.strip():
            raise ValueError("variable key is required")
        self.get_variables(workflow_id)[key] = value

    def set_variables(self, workflow_id: str, values: Mapping[str, str]) -> None:
        """Set several instance variables at once."""
        self._check_id(workflow_id)
        self.get_variables(workflow_id).update_many(
            {k: v for k, v in values.items() if k and k.strip()}
        )

    def clear(self, workflow_id: str) -> None:
        """Drop all state for an instance."""
        with self._lock:
            self._instances.pop(workflow_id, None)

    def list_instances(self) -> List[str]:
        with self._lock:
            return list(self._instances.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._instances)


class WorkflowPersistence:
    """
    Durable storage for workflow definitions and current nodes.

    This is an abstract interface - concrete implementations
    can use Redis, PostgreSQL, a mobile database, etc.
    The controller treats every call as best effort.
    """

    async def get_current_node_id(self, workflow_id: str) -> Optional[str]:
        """Load the persisted current node of a workflow."""
        raise NotImplementedError

    async def create_definition(self, snapshot: Dict[str, Any]) -> None:
        """Save a definition snapshot (WorkflowDefinition.to_dict plus current_node_id)."""
        raise NotImplementedError

    async def update_current_node_id(self, workflow_id: str, node_id: Optional[str]) -> None:
        """Save the current node of a workflow."""
        raise NotImplementedError

    async def load_definition(self, workflow_id: str) -> Optional[Dict[str, Any]]:
        """Load a definition snapshot."""
        raise NotImplementedError

    async def delete(self, workflow_id: str) -> None:
        """Delete everything stored for a workflow."""
        raise NotImplementedError
