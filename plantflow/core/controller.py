"""
Workflow controller.

The controller:
- Imports diagram text as a stored definition and starts its instance
- Computes what the current node should present
- Resolves user choices and moves instances along transitions
- Runs node actions on entry and auto-advances past completed steps
- Mirrors current nodes to an optional persistence collaborator
"""

from typing import Any, Callable, Dict, List, Optional
import logging

from .calculator import StateCalculator, WorkflowStatePayload
from .executor import ActionExecutor, ActionStatus
from .graph import Transition, WorkflowDefinition
from .parser import DiagramParser
from .registry import ActionHandlerRegistry, get_registry
from .state import InstanceStateManager, WorkflowPersistence
from .store import DefinitionStore

logger = logging.getLogger(__name__)


class WorkflowController:
    """
    Entry point for importing, starting and advancing workflows.

    Every public operation is a coroutine. Calls on different workflow ids
    can run concurrently; calls on the same id are expected to be
    sequential.

    Example:
        controller = WorkflowController()

        @controller.registry.action("get_location")
        async def get_location(context, params):
            return {"city": "Lisbon"}

        definition = await controller.import_workflow(diagram, id="tour")
        payload = await controller.get_current_state_payload("tour")
        if payload.is_choice:
            await controller.advance_by_choice_value("tour", payload.choices[0].target_node_id)
        else:
            await controller.advance_by_choice_value("tour", None)
    """

    def __init__(
        self,
        store: Optional[DefinitionStore] = None,
        states: Optional[InstanceStateManager] = None,
        calculator: Optional[StateCalculator] = None,
        registry: Optional[ActionHandlerRegistry] = None,
        executor: Optional[ActionExecutor] = None,
        persistence: Optional[WorkflowPersistence] = None,
        parser_factory: Callable[[], DiagramParser] = DiagramParser,
    ):
        self.store = store if store is not None else DefinitionStore()
        self.states = states if states is not None else InstanceStateManager()
        self.calculator = calculator or StateCalculator()
        self.registry = registry or get_registry()
        self.executor = executor or ActionExecutor(registry=self.registry, states=self.states)
        self.persistence = persistence
        self.parser_factory = parser_factory

    @staticmethod
    def _check_id(workflow_id: str) -> None:
        if workflow_id is None or not str(workflow_id).strip():
            raise ValueError("workflow_id is required")

    def _require(self, workflow_id: str) -> WorkflowDefinition:
        self._check_id(workflow_id)
        return self.store.require(workflow_id)

    # --- import / start ---

    async def import_workflow(
        self,
        text: str,
        id: Optional[str] = None,
        name: Optional[str] = None,
    ) -> WorkflowDefinition:
        """
        Import diagram text and start its instance.

        A definition already stored under the same id is replaced. The
        instance keeps its current node when that node is still part of
        the new graph.

        Raises:
            ValueError: if text is None or blank
        """
        if text is None or not str(text).strip():
            raise ValueError("Diagram text must not be empty")

        definition = self.parser_factory().parse(text, id=id, name=name)
        self.store.store(definition)
        logger.info(
            f"Imported workflow {definition.id} ({definition.name}): "
            f"{len(definition.nodes)} nodes, {len(definition.transitions)} transitions"
        )

        await self.start_instance(definition.id)
        await self._persist_definition(definition)
        return definition

    async def start_instance(self, workflow_id: str) -> Optional[str]:
        """
        Start (or resume) the instance of a stored workflow.

        Resumes the in-memory current node, then a persisted one. Otherwise
        the instance is placed on the computed start node and the start
        actions run.

        Returns:
            The current node id after starting
        """
        definition = self._require(workflow_id)

        current = self.states.get_current_node(workflow_id)
        if current and definition.has_node(current):
            return current

        persisted = await self._load_persisted_node(workflow_id)
        if persisted and definition.has_node(persisted):
            self.states.set_current_node(workflow_id, persisted)
            logger.info(f"Resumed workflow {workflow_id} at persisted node {persisted}")
            return persisted

        return await self._enter_start(definition)

    async def restart_instance(self, workflow_id: str) -> Optional[str]:
        """Reset an instance to its start node, discarding variables."""
        definition = self._require(workflow_id)
        self.states.clear(workflow_id)
        logger.info(f"Restarting workflow {workflow_id}")
        return await self._enter_start(definition)

    async def _enter_start(self, definition: WorkflowDefinition) -> Optional[str]:
        workflow_id = definition.id
        start = self.calculator.calculate_start_node(definition)
        self.states.set_current_node(workflow_id, start)
        await self._persist_current_node(workflow_id, start)
        logger.info(f"Started workflow {workflow_id} at {start}")

        if definition.start_points:
            declared = definition.start_points[0].node_id
        elif definition.nodes:
            declared = definition.nodes[0].id
        else:
            declared = None

        declared_node = definition.get_node(declared)
        if declared_node is not None and declared != start and declared_node.json_metadata:
            await self._try_execute_node_action(definition, declared)
        if start:
            return await self._enter_node(definition, start)
        return start

    # --- queries ---

    async def get_current_state_payload(self, workflow_id: str) -> WorkflowStatePayload:
        """Get what the current node of an instance should present."""
        definition = self._require(workflow_id)
        return self.calculator.calculate_current_payload(
            definition, self.states.get_current_node(workflow_id)
        )

    async def get_current_node_id(self, workflow_id: str) -> Optional[str]:
        self._require(workflow_id)
        return self.states.get_current_node(workflow_id)

    async def workflow_exists(self, workflow_id: Optional[str]) -> bool:
        return self.store.exists(workflow_id)

    async def get_variables(self, workflow_id: str) -> Dict[str, str]:
        """Get a copy of the instance variables."""
        self._require(workflow_id)
        return self.states.get_variables(workflow_id).snapshot()

    # --- advancing ---

    @staticmethod
    def _resolve_choice(
        definition: WorkflowDefinition,
        outgoing: List[Transition],
        value: Any,
    ) -> Optional[Transition]:
        """
        Pick the outgoing transition a choice value refers to.

        Tried in order: target node id, target label, integer index,
        numeric string index, and None when there is a single transition.
        """
        if isinstance(value, str):
            for transition in outgoing:
                if transition.to_node_id == value:
                    return transition
            for transition in outgoing:
                target = definition.get_node(transition.to_node_id)
                if target is not None and target.label == value:
                    return transition

        index: Optional[int] = None
        if isinstance(value, int) and not isinstance(value, bool):
            index = value
        elif isinstance(value, str):
            try:
                index = int(value.strip())
            except ValueError:
                index = None
        if index is not None:
            return outgoing[index] if 0 <= index < len(outgoing) else None

        if value is None and len(outgoing) == 1:
            return outgoing[0]
        return None

    async def advance_by_choice_value(self, workflow_id: str, value: Any) -> bool:
        """
        Move the instance along the outgoing transition `value` selects.

        Returns:
            False when nothing matched (the instance does not move)
        """
        definition = self._require(workflow_id)

        current = self.states.get_current_node(workflow_id)
        if not current:
            current = await self.start_instance(workflow_id)
            if not current:
                return False

        outgoing = definition.outgoing(current)
        transition = self._resolve_choice(definition, outgoing, value)
        if transition is None:
            logger.info(f"No transition from {current} matches {value!r} in workflow {workflow_id}")
            return False

        target = transition.to_node_id
        await self._move_to(workflow_id, current, target)

        await self._enter_node(definition, target)
        return True

    async def _move_to(self, workflow_id: str, from_node_id: str, to_node_id: str) -> None:
        self.states.set_current_node(workflow_id, to_node_id)
        logger.info(f"Workflow {workflow_id} advanced {from_node_id} -> {to_node_id}")
        await self._persist_current_node(workflow_id, to_node_id)

    async def _enter_node(self, definition: WorkflowDefinition, node_id: str) -> str:
        """Run the action of a node just entered and step past it once it completed."""
        if not await self._try_execute_node_action(definition, node_id):
            return node_id
        follow = definition.outgoing(node_id)
        if len(follow) != 1:
            return node_id
        await self._move_to(definition.id, node_id, follow[0].to_node_id)
        return follow[0].to_node_id

    async def _try_execute_node_action(self, definition: WorkflowDefinition, node_id: str) -> bool:
        node = definition.get_node(node_id)
        if node is None:
            return False
        try:
            result = await self.executor.execute_action(definition.id, node, definition)
        except Exception as e:
            logger.error(f"Executing action of node {node_id} failed: {e}", exc_info=True)
            return False
        return result.status == ActionStatus.COMPLETED

    # --- persistence (best effort) ---

    async def _load_persisted_node(self, workflow_id: str) -> Optional[str]:
        if self.persistence is None:
            return None
        try:
            return await self.persistence.get_current_node_id(workflow_id)
        except Exception as e:
            logger.warning(f"Could not load persisted node for {workflow_id}: {e}")
            return None

    async def _persist_current_node(self, workflow_id: str, node_id: Optional[str]) -> None:
        if self.persistence is None:
            return
        try:
            await self.persistence.update_current_node_id(workflow_id, node_id)
        except Exception as e:
            logger.warning(f"Could not persist current node for {workflow_id}: {e}")

    async def _persist_definition(self, definition: WorkflowDefinition) -> None:
        if self.persistence is None:
            return
        snapshot = definition.to_dict()
        snapshot["current_node_id"] = self.states.get_current_node(definition.id)
        try:
            await self.persistence.create_definition(snapshot)
        except Exception as e:
            logger.warning(f"Could not persist definition {definition.id}: {e}")
