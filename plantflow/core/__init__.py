# Workflow engine core
# Core module exports

from .graph import WorkflowDefinition, WorkflowNode, Transition, StartPoint
from .parser import DiagramParser, parse_diagram
from .store import DefinitionStore, WorkflowNotFoundError
from .state import InstanceStateManager, VariableBag, WorkflowPersistence
from .calculator import StateCalculator, WorkflowStatePayload, ChoiceOption
from .registry import ActionHandler, ActionHandlerContext, ActionHandlerRegistry
from .executor import ActionExecutor, ExecutorOptions
from .controller import WorkflowController

__all__ = [
    "WorkflowDefinition",
    "WorkflowNode",
    "Transition",
    "StartPoint",
    "DiagramParser",
    "parse_diagram",
    "DefinitionStore",
    "WorkflowNotFoundError",
    "InstanceStateManager",
    "VariableBag",
    "WorkflowPersistence",
    "StateCalculator",
    "WorkflowStatePayload",
    "ChoiceOption",
    "ActionHandler",
    "ActionHandlerContext",
    "ActionHandlerRegistry",
    "ActionExecutor",
    "ExecutorOptions",
    "WorkflowController",
]
