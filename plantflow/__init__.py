"""
plantflow
=========

A workflow engine driven by activity-diagram text.

Quick Start
-----------

In-memory execution (no Redis required):

    from plantflow import WorkflowController

    controller = WorkflowController()

    @controller.registry.action("get_location")
    async def get_location(context, params):
        return {"city": "Lisbon"}

    await controller.import_workflow('''
        @startuml
        start
        :Welcome;
        note right
        {"action": "get_location"}
        end note
        :Greet;
        note right
        {"action": "log", "params": {"message": "Hello from {{city}}"}}
        end note
        stop
        @enduml
    ''', id="tour")

    payload = await controller.get_current_state_payload("tour")
    await controller.advance_by_choice_value("tour", None)

Persistent execution (requires Redis):

    from plantflow.distributed import RedisWorkflowPersistence

    persistence = RedisWorkflowPersistence(redis_url="redis://localhost:6379")
    await persistence.connect()
    controller = WorkflowController(persistence=persistence)
"""

__version__ = "0.1.0"

# Core exports
from plantflow.core import (
    WorkflowDefinition,
    WorkflowNode,
    Transition,
    StartPoint,
    DiagramParser,
    parse_diagram,
    DefinitionStore,
    WorkflowNotFoundError,
    InstanceStateManager,
    VariableBag,
    WorkflowPersistence,
    StateCalculator,
    WorkflowStatePayload,
    ChoiceOption,
    ActionHandler,
    ActionHandlerContext,
    ActionHandlerRegistry,
    ActionExecutor,
    ExecutorOptions,
    WorkflowController,
)

from plantflow.core.registry import FunctionActionHandler, get_registry, set_registry
from plantflow.core.executor import ActionDescriptor, ActionResult, ActionStatus, resolve_templates

__all__ = [
    # Version
    "__version__",
    # Graph
    "WorkflowDefinition",
    "WorkflowNode",
    "Transition",
    "StartPoint",
    # Parsing
    "DiagramParser",
    "parse_diagram",
    # Stores
    "DefinitionStore",
    "WorkflowNotFoundError",
    "InstanceStateManager",
    "VariableBag",
    "WorkflowPersistence",
    # State calculation
    "StateCalculator",
    "WorkflowStatePayload",
    "ChoiceOption",
    # Actions
    "ActionHandler",
    "ActionHandlerContext",
    "ActionHandlerRegistry",
    "FunctionActionHandler",
    "get_registry",
    "set_registry",
    "ActionExecutor",
    "ExecutorOptions",
    "ActionDescriptor",
    "ActionResult",
    "ActionStatus",
    "resolve_templates",
    # Controller
    "WorkflowController",
]
