"""
Action handler registry.

Nodes name their side effect in JSON metadata ({"action": "get_location"}).
The registry maps those names to handler factories so that:
- Pre-built handlers can be registered once and shared (singletons)
- Factories can build a fresh handler per call with call-scoped dependencies
- Plain async functions can be registered with a decorator
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union
import asyncio
import inspect
import logging
import threading

from .graph import WorkflowDefinition, WorkflowNode
from .state import InstanceStateManager, VariableBag

logger = logging.getLogger(__name__)

HandlerResult = Optional[Mapping[str, str]]


@dataclass
class ActionHandlerContext:
    """
    Everything a handler may need about the call it is serving.

    Attributes:
        workflow_id: Id of the running instance
        node: Node whose action is being executed
        definition: Definition the node belongs to
        states: Instance state manager (read/write access to variables)
        cancel_event: Set when the caller abandons the action
    """
    workflow_id: str
    node: WorkflowNode
    definition: WorkflowDefinition
    states: InstanceStateManager
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def variables(self) -> VariableBag:
        return self.states.get_variables(self.workflow_id)

    def get_variable(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.variables.get(key, default)

    def set_variable(self, key: str, value: str) -> None:
        self.states.set_variable(self.workflow_id, key, value)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


class ActionHandler:
    """
    Base class for action handlers.

    Subclasses set `name` and implement `handle`, returning variable
    updates to merge into the instance (or None).

    Example:
        class GreetHandler(ActionHandler):
            name = "greet"

            async def handle(self, context, params):
                return {"greeting": f"Hello {params.get('who', 'there')}"}
    """
    name: str = ""

    async def handle(self, context: ActionHandlerContext, params: Dict[str, str]) -> HandlerResult:
        raise NotImplementedError


class FunctionActionHandler(ActionHandler):
    """Adapts a plain function (sync or async) to the handler interface."""

    def __init__(self, name: str, func: Callable[..., Union[HandlerResult, Awaitable[HandlerResult]]]):
        self.name = name
        self.func = func

    async def handle(self, context: ActionHandlerContext, params: Dict[str, str]) -> HandlerResult:
        result = self.func(context, params)
        if inspect.isawaitable(result):
            result = await result
        return result

    def __repr__(self) -> str:
        return f"FunctionActionHandler(name={self.name!r}, func={getattr(self.func, '__name__', self.func)!r})"


HandlerFactory = Callable[[ActionHandlerContext], Optional[ActionHandler]]


@dataclass
class HandlerRegistration:
    """Registration of an action handler factory."""
    name: str
    factory: HandlerFactory
    singleton: Optional[ActionHandler] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "singleton": self.singleton is not None,
            "metadata": self.metadata,
        }


class ActionHandlerRegistry:
    """
    Registry of action handlers keyed by action name.

    Names are case-sensitive; registering a name again replaces the
    previous factory.

    Example:
        registry = ActionHandlerRegistry()

        # Register a plain coroutine
        @registry.action("get_location")
        async def get_location(context, params):
            return {"city": "Lisbon"}

        # Register a pre-built handler
        registry.register_handler(GreetHandler())

        # Or a factory that builds a handler per call
        registry.register("lookup", lambda ctx: LookupHandler(session_for(ctx.workflow_id)))
    """

    def __init__(self):
        self._handlers: Dict[str, HandlerRegistration] = {}
        self._lock = threading.RLock()

    @staticmethod
    def _check_name(name: str) -> None:
        if not name or not name.strip():
            raise ValueError("action name is required")

    def register(self, name: str, factory: HandlerFactory, **metadata) -> None:
        """Register a factory that builds a handler for each call."""
        self._check_name(name)
        if factory is None or not callable(factory):
            raise ValueError("factory must be callable")

        with self._lock:
            replaced = name in self._handlers
            self._handlers[name] = HandlerRegistration(name=name, factory=factory, metadata=metadata)

        if replaced:
            logger.info(f"Replaced action handler factory for '{name}'")
        else:
            logger.info(f"Registered action handler factory for '{name}'")

    def register_handler(self, handler: ActionHandler, name: Optional[str] = None, **metadata) -> None:
        """Register a pre-built handler shared by every call."""
        if handler is None:
            raise ValueError("handler is required")
        action_name = name or handler.name
        self._check_name(action_name)

        with self._lock:
            self._handlers[action_name] = HandlerRegistration(
                name=action_name,
                factory=lambda _context: handler,
                singleton=handler,
                metadata=metadata,
            )
        logger.info(f"Registered singleton action handler '{action_name}'")

    def action(self, name: str) -> Callable:
        """Decorator to register a function as an action handler."""
        def decorator(func: Callable) -> Callable:
            self.register_handler(FunctionActionHandler(name, func))
            return func
        return decorator

    def get_factory(self, name: str) -> Optional[HandlerFactory]:
        """Get the factory registered for an action."""
        if not name:
            return None
        with self._lock:
            reg = self._handlers.get(name)
        return reg.factory if reg else None

    def get_registration(self, name: str) -> Optional[HandlerRegistration]:
        with self._lock:
            return self._handlers.get(name)

    def resolve(self, name: str, context: Optional[ActionHandlerContext] = None) -> Optional[ActionHandler]:
        """
        Build (or fetch) the handler for an action.

        Returns None when nothing is registered under the name or the
        factory declines to produce a handler. Factory errors propagate.
        """
        factory = self.get_factory(name)
        if factory is None:
            return None

        handler = factory(context)
        if handler is None:
            logger.warning(f"Handler factory for '{name}' returned no handler")
        return handler

    def has_action(self, name: str) -> bool:
        with self._lock:
            return name in self._handlers

    def unregister(self, name: str) -> bool:
        """Remove an action. Returns True if it was registered."""
        with self._lock:
            return self._handlers.pop(name, None) is not None

    def list_actions(self) -> List[str]:
        with self._lock:
            return list(self._handlers.keys())

    def to_dict(self) -> Dict[str, Any]:
        """Describe the registry contents."""
        with self._lock:
            return {name: reg.to_dict() for name, reg in self._handlers.items()}


# Global registry instance
_global_registry: Optional[ActionHandlerRegistry] = None
_global_lock = threading.Lock()


def get_registry() -> ActionHandlerRegistry:
    """Get the global registry instance."""
    global _global_registry
    with _global_lock:
        if _global_registry is None:
            _global_registry = ActionHandlerRegistry()
        return _global_registry


def set_registry(registry: Optional[ActionHandlerRegistry]) -> None:
    """Set the global registry instance."""
    global _global_registry
    with _global_lock:
        _global_registry = registry
