"""
Graph definition module for diagram-driven workflows.

A WorkflowDefinition represents an imported diagram as a directed graph where:
- Nodes are the steps a user walks through
- Transitions define the flow between nodes
- Conditional transitions carry the branch label shown as a choice
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Dict, List, Tuple
import json
import hashlib


@dataclass(frozen=True)
class WorkflowNode:
    """
    A node in the workflow graph.

    Attributes:
        id: Unique identifier for the node within its definition
        label: Human-visible node name
        json_metadata: Optional action descriptor ({"action", "params"})
        note_markdown: Optional guidance text shown to the user
    """
    id: str
    label: str
    json_metadata: Optional[str] = None
    note_markdown: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "json_metadata": self.json_metadata,
            "note_markdown": self.note_markdown,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowNode":
        return cls(
            id=data["id"],
            label=data.get("label", data["id"]),
            json_metadata=data.get("json_metadata"),
            note_markdown=data.get("note_markdown"),
        )


@dataclass(frozen=True)
class Transition:
    """
    A directed edge between two nodes.

    Attributes:
        id: Transition identifier
        from_node_id: Source node id
        to_node_id: Target node id
        condition: Branch label, None for unconditional edges
    """
    id: str
    from_node_id: str
    to_node_id: str
    condition: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "from_node_id": self.from_node_id,
            "to_node_id": self.to_node_id,
            "condition": self.condition,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transition":
        return cls(
            id=data["id"],
            from_node_id=data["from_node_id"],
            to_node_id=data["to_node_id"],
            condition=data.get("condition"),
        )


@dataclass(frozen=True)
class StartPoint:
    """Entry node declared by the diagram's initial marker."""
    node_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {"node_id": self.node_id}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StartPoint":
        return cls(node_id=data["node_id"])


@dataclass(frozen=True)
class WorkflowDefinition:
    """
    An immutable parsed workflow graph.

    Definitions are produced by the DiagramParser and never mutated
    afterwards, so they can be shared between instances and threads.

    Example:
        definition = DiagramParser().parse(text, id="tour")
        for transition in definition.outgoing("Start"):
            print(transition.to_node_id)
    """
    id: str
    name: str
    nodes: Tuple[WorkflowNode, ...] = field(default_factory=tuple)
    transitions: Tuple[Transition, ...] = field(default_factory=tuple)
    start_points: Tuple[StartPoint, ...] = field(default_factory=tuple)

    def __post_init__(self):
        # Accept any sequence but always hold tuples
        object.__setattr__(self, "nodes", tuple(self.nodes))
        object.__setattr__(self, "transitions", tuple(self.transitions))
        object.__setattr__(self, "start_points", tuple(self.start_points))

    def get_node(self, node_id: Optional[str]) -> Optional[WorkflowNode]:
        """Get a node by id."""
        if node_id is None:
            return None
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def has_node(self, node_id: str) -> bool:
        return self.get_node(node_id) is not None

    def outgoing(self, node_id: Optional[str]) -> List[Transition]:
        """Get outgoing transitions of a node in declaration order."""
        return [t for t in self.transitions if t.from_node_id == node_id]

    def incoming(self, node_id: str) -> List[Transition]:
        """Get incoming transitions of a node in declaration order."""
        return [t for t in self.transitions if t.to_node_id == node_id]

    def validate(self) -> List[str]:
        """
        Check structural invariants.

        Returns a list of problems; an empty list means every transition
        and start point references an existing node and node ids are unique.
        """
        problems = []
        seen = set()
        for node in self.nodes:
            if node.id in seen:
                problems.append(f"Duplicate node id '{node.id}'")
            seen.add(node.id)

        for t in self.transitions:
            if t.from_node_id not in seen:
                problems.append(f"Transition {t.id} source '{t.from_node_id}' not found")
            if t.to_node_id not in seen:
                problems.append(f"Transition {t.id} target '{t.to_node_id}' not found")

        for sp in self.start_points:
            if sp.node_id not in seen:
                problems.append(f"Start point '{sp.node_id}' not found")

        return problems

    def get_graph_hash(self) -> str:
        """Get a hash representing the graph structure."""
        data = self.to_dict()
        data.pop("id")
        data.pop("name")
        return hashlib.sha256(json.dumps(data, sort_keys=True).encode()).hexdigest()[:16]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the definition to a dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "nodes": [node.to_dict() for node in self.nodes],
            "transitions": [t.to_dict() for t in self.transitions],
            "start_points": [sp.to_dict() for sp in self.start_points],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowDefinition":
        """Deserialize a definition from a dictionary."""
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            nodes=[WorkflowNode.from_dict(n) for n in data.get("nodes", [])],
            transitions=[Transition.from_dict(t) for t in data.get("transitions", [])],
            start_points=[StartPoint.from_dict(s) for s in data.get("start_points", [])],
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, json_str: str) -> "WorkflowDefinition":
        return cls.from_dict(json.loads(json_str))

    def visualize(self) -> str:
        """Generate a simple ASCII visualization of the graph."""
        lines = [f"Workflow: {self.name} ({self.id})", "=" * 40]

        for sp in self.start_points:
            lines.append(f"[START] -> {sp.node_id}")

        for t in self.transitions:
            if t.condition:
                lines.append(f"  {t.from_node_id} -> {t.to_node_id} [{t.condition}]")
            else:
                lines.append(f"  {t.from_node_id} -> {t.to_node_id}")

        return "\n".join(lines)
