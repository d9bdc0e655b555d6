"""
Action execution for workflow nodes.

The executor:
- Reads the action descriptor a node carries in its JSON metadata
- Resolves `{{variable}}` templates in the parameters from instance state
- Dispatches to the handler registered under the action name
- Merges the handler's variable updates back into the instance
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Set
import asyncio
import json
import logging
import re
import time
import traceback

from .graph import WorkflowDefinition, WorkflowNode
from .registry import ActionHandlerContext, ActionHandlerRegistry, get_registry
from .state import InstanceStateManager

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z0-9_.\-]+)\s*\}\}")


class ActionStatus(Enum):
    """Outcome of an action execution attempt."""
    SKIPPED = "skipped"       # No descriptor or no handler
    COMPLETED = "completed"
    FAILED = "failed"         # Handler raised
    CANCELLED = "cancelled"   # Cancelled or timed out
    SCHEDULED = "scheduled"   # Running in the background


@dataclass
class ActionDescriptor:
    """The `{"action": ..., "params": {...}}` object attached to a node."""
    action: str
    params: Dict[str, str] = field(default_factory=dict)

    @staticmethod
    def _stringify(value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, str):
            return value
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    @classmethod
    def parse(cls, raw: Optional[str]) -> Optional["ActionDescriptor"]:
        """Parse a descriptor, returning None for anything that is not one."""
        if not raw or not raw.strip():
            return None
        text = raw.strip()
        if not (text.startswith("{") and text.endswith("}")):
            return None

        try:
            data = json.loads(text)
        except ValueError:
            logger.warning("Invalid JSON action descriptor ignored")
            return None

        if not isinstance(data, dict):
            return None
        action = data.get("action")
        if not isinstance(action, str) or not action.strip():
            return None

        params = data.get("params") or {}
        if not isinstance(params, dict):
            params = {}

        return cls(
            action=action.strip(),
            params={str(k): cls._stringify(v) for k, v in params.items()},
        )

    @classmethod
    def from_node(cls, node: Optional[WorkflowNode]) -> Optional["ActionDescriptor"]:
        """Read the descriptor of a node, falling back to a JSON-shaped note."""
        if node is None:
            return None
        descriptor = cls.parse(node.json_metadata)
        if descriptor is None and not node.json_metadata:
            descriptor = cls.parse(node.note_markdown)
        return descriptor


def resolve_templates(params: Mapping[str, str], variables: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """
    Substitute `{{name}}` placeholders in parameter values.

    Lookups go through the variables mapping (case-insensitive when it is a
    VariableBag). Placeholders without a matching variable stay verbatim.
    """
    def substitute(match: "re.Match") -> str:
        key = match.group(1)
        if variables is not None and key in variables:
            value = variables[key]
            return "" if value is None else str(value)
        return match.group(0)

    return {key: PLACEHOLDER_RE.sub(substitute, value or "") for key, value in params.items()}


@dataclass
class ExecutorOptions:
    """
    Executor configuration.

    Attributes:
        timeout: Default per-action timeout in seconds (None = no limit)
        log_execution_time: Log how long each handler took
        execute_in_background: Schedule handlers without awaiting them
    """
    timeout: Optional[float] = None
    log_execution_time: bool = False
    execute_in_background: bool = False


@dataclass
class ActionResult:
    """Result of one action execution attempt."""
    workflow_id: str
    node_id: str
    action: Optional[str]
    status: ActionStatus
    params: Dict[str, str] = field(default_factory=dict)
    updates: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None
    error_traceback: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def executed(self) -> bool:
        """True when the handler ran to completion (or was scheduled)."""
        return self.status in (ActionStatus.COMPLETED, ActionStatus.SCHEDULED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "node_id": self.node_id,
            "action": self.action,
            "status": self.status.value,
            "params": self.params,
            "updates": self.updates,
            "error": self.error,
            "error_traceback": self.error_traceback,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat(),
        }


class ActionExecutor:
    """
    Runs the action attached to a node.

    Handler failures never escape: they are logged and reported as a
    failed execution so callers keep the instance where it is.

    Example:
        executor = ActionExecutor(registry=registry, states=states)
        ran = await executor.execute("tour", node, definition)
    """

    def __init__(
        self,
        registry: Optional[ActionHandlerRegistry] = None,
        states: Optional[InstanceStateManager] = None,
        options: Optional[ExecutorOptions] = None,
    ):
        self.registry = registry or get_registry()
        self.states = states if states is not None else InstanceStateManager()
        self.options = options or ExecutorOptions()
        self._background: Set[asyncio.Task] = set()

    async def execute(
        self,
        workflow_id: str,
        node: WorkflowNode,
        definition: WorkflowDefinition,
        cancel_event: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> bool:
        """
        Execute the node's action.

        Returns True when a handler was invoked and completed, or was
        scheduled in background mode.
        """
        result = await self.execute_action(workflow_id, node, definition, cancel_event, timeout)
        return result.executed

    async def execute_action(
        self,
        workflow_id: str,
        node: WorkflowNode,
        definition: WorkflowDefinition,
        cancel_event: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> ActionResult:
        """Execute the node's action and report the detailed outcome."""
        node_id = node.id if node else ""
        descriptor = ActionDescriptor.from_node(node)
        if descriptor is None:
            return ActionResult(workflow_id, node_id, None, ActionStatus.SKIPPED)

        context = ActionHandlerContext(
            workflow_id=workflow_id,
            node=node,
            definition=definition,
            states=self.states,
            cancel_event=cancel_event or asyncio.Event(),
        )

        if not self.registry.has_action(descriptor.action):
            logger.warning(f"No handler registered for action '{descriptor.action}' on node {node_id}")
            return ActionResult(workflow_id, node_id, descriptor.action, ActionStatus.SKIPPED)

        params = resolve_templates(descriptor.params, self.states.get_variables(workflow_id))

        if self.options.execute_in_background:
            task = asyncio.create_task(
                self._run_handler(context, descriptor.action, params, cancel_event, timeout)
            )
            self._background.add(task)
            task.add_done_callback(self._background.discard)
            return ActionResult(workflow_id, node_id, descriptor.action, ActionStatus.SCHEDULED, params=params)

        return await self._run_handler(context, descriptor.action, params, cancel_event, timeout)

    async def _run_handler(
        self,
        context: ActionHandlerContext,
        action: str,
        params: Dict[str, str],
        cancel_event: Optional[asyncio.Event],
        timeout: Optional[float],
    ) -> ActionResult:
        workflow_id = context.workflow_id
        node_id = context.node.id
        result = ActionResult(
            workflow_id=workflow_id,
            node_id=node_id,
            action=action,
            status=ActionStatus.FAILED,
            params=params,
            started_at=datetime.utcnow(),
        )
        timeout = timeout if timeout is not None else self.options.timeout
        started = time.perf_counter()

        try:
            handler = self.registry.resolve(action, context)
            if handler is None:
                result.status = ActionStatus.SKIPPED
                return result

            logger.info(
                f"Invoking handler '{getattr(handler, 'name', action)}' for workflow {workflow_id} node {node_id}"
            )
            completed, updates = await self._invoke(handler, context, params, cancel_event, timeout)
        except Exception as e:
            logger.error(
                f"Action '{action}' failed for workflow {workflow_id} node {node_id}: {e}",
                exc_info=True,
            )
            result.error = str(e)
            result.error_traceback = traceback.format_exc()
            result.completed_at = datetime.utcnow()
            return result

        result.completed_at = datetime.utcnow()
        if not completed:
            logger.info(f"Action '{action}' cancelled for workflow {workflow_id} node {node_id}")
            result.status = ActionStatus.CANCELLED
            result.error = "cancelled"
            return result

        if updates is not None and not isinstance(updates, Mapping):
            logger.warning(f"Action '{action}' returned {type(updates).__name__}, expected a mapping")
            updates = None

        if updates:
            merged = {str(k): "" if v is None else str(v) for k, v in updates.items()}
            self.states.set_variables(workflow_id, merged)
            result.updates = merged

        if self.options.log_execution_time:
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.info(f"Action '{action}' completed in {elapsed_ms:.1f}ms")

        result.status = ActionStatus.COMPLETED
        return result

    async def _invoke(self, handler, context, params, cancel_event, timeout):
        """
        Await the handler, racing it against cancellation and the timeout.

        Returns (completed, updates). Handler exceptions propagate.
        """
        handler_task = asyncio.ensure_future(handler.handle(context, params))
        waiters = {handler_task}
        cancel_waiter = None
        if cancel_event is not None:
            cancel_waiter = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()
            if not handler_task.done():
                handler_task.cancel()

        if handler_task not in done:
            context.cancel_event.set()
            await asyncio.wait({handler_task})
            return False, None
        if handler_task.cancelled():
            return False, None

        return True, handler_task.result()

    async def drain(self) -> None:
        """Wait for background actions to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
