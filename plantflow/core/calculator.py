"""
State calculation: where an instance starts and what it shows next.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple
import logging

from .graph import WorkflowDefinition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChoiceOption:
    """One selectable outgoing transition."""
    index: int
    display_text: str
    target_node_id: str
    condition: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "display_text": self.display_text,
            "target_node_id": self.target_node_id,
            "condition": self.condition,
        }


@dataclass(frozen=True)
class WorkflowStatePayload:
    """
    What the presentation layer should render for the current node.

    Attributes:
        is_choice: True when the user has to pick an outgoing transition
        text: Prompt text (note markdown, or the node label for plain steps)
        choices: Options in transition declaration order
        node_label: Label of the current node
    """
    is_choice: bool
    text: Optional[str] = None
    choices: Tuple[ChoiceOption, ...] = field(default_factory=tuple)
    node_label: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_choice": self.is_choice,
            "text": self.text,
            "choices": [c.to_dict() for c in self.choices],
            "node_label": self.node_label,
        }


class StateCalculator:
    """Computes start nodes and per-node payloads from a definition."""

    def calculate_start_node(self, definition: WorkflowDefinition) -> Optional[str]:
        """
        Get the effective start node of a definition.

        Uses the first declared start point (or the first node). When that
        node has exactly one outgoing transition the start moves one hop to
        its target, so a bare entry marker is never what the user sees first.
        """
        if definition is None:
            raise ValueError("definition is required")

        if definition.start_points:
            start = definition.start_points[0].node_id
        elif definition.nodes:
            start = definition.nodes[0].id
        else:
            return None

        outgoing = definition.outgoing(start)
        if len(outgoing) == 1:
            target = outgoing[0].to_node_id
            logger.debug(f"Start of {definition.id} advanced from {start} to {target}")
            return target

        return start

    def calculate_current_payload(
        self,
        definition: WorkflowDefinition,
        current_node_id: Optional[str],
    ) -> WorkflowStatePayload:
        """Build the payload for the instance's current node."""
        if definition is None:
            raise ValueError("definition is required")

        node = definition.get_node(current_node_id)
        outgoing = definition.outgoing(current_node_id)
        label = node.label if node else None

        is_choice = len(outgoing) > 1 or any(t.condition and t.condition.strip() for t in outgoing)
        if is_choice:
            choices = []
            for index, transition in enumerate(outgoing):
                target = definition.get_node(transition.to_node_id)
                choices.append(ChoiceOption(
                    index=index,
                    display_text=target.label if target and target.label else transition.to_node_id,
                    target_node_id=transition.to_node_id,
                    condition=transition.condition,
                ))
            return WorkflowStatePayload(
                is_choice=True,
                text=node.note_markdown if node else None,
                choices=tuple(choices),
                node_label=label,
            )

        text = None
        if node is not None:
            text = node.note_markdown if node.note_markdown and node.note_markdown.strip() else node.label
        return WorkflowStatePayload(is_choice=False, text=text, node_label=label)
