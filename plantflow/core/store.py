"""
Storage for parsed workflow definitions.

Definitions are immutable, so the store only has to keep the id -> definition
map consistent when many workflows are imported at the same time.
"""

from typing import Dict, List, Optional
import logging
import threading

from .graph import WorkflowDefinition

logger = logging.getLogger(__name__)


class WorkflowNotFoundError(LookupError):
    """Raised when an operation names a workflow id that was never imported."""

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Unknown workflow id: {workflow_id}")


class DefinitionStore:
    """
    Thread-safe in-memory store of workflow definitions keyed by id.

    Example:
        store = DefinitionStore()
        store.store(definition)
        definition = store.require("tour")
    """

    def __init__(self):
        self._definitions: Dict[str, WorkflowDefinition] = {}
        self._lock = threading.RLock()

    def store(self, definition: WorkflowDefinition) -> None:
        """Store a definition, replacing any previous one with the same id."""
        if definition is None:
            raise ValueError("definition is required")
        with self._lock:
            self._definitions[definition.id] = definition
        logger.debug(f"Stored definition {definition.id}")

    def get(self, workflow_id: Optional[str]) -> Optional[WorkflowDefinition]:
        """Get a definition by id, or None."""
        if not workflow_id or not workflow_id.strip():
            return None
        with self._lock:
            return self._definitions.get(workflow_id)

    def require(self, workflow_id: str) -> WorkflowDefinition:
        """Get a definition by id or raise WorkflowNotFoundError."""
        definition = self.get(workflow_id)
        if definition is None:
            raise WorkflowNotFoundError(workflow_id)
        return definition

    def exists(self, workflow_id: Optional[str]) -> bool:
        return self.get(workflow_id) is not None

    def remove(self, workflow_id: str) -> bool:
        """Remove a definition. Returns True if one was stored."""
        with self._lock:
            return self._definitions.pop(workflow_id, None) is not None

    def list_ids(self) -> List[str]:
        with self._lock:
            return list(self._definitions.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._definitions)

    def __contains__(self, workflow_id: str) -> bool:
        return self.exists(workflow_id)
