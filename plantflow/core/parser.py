"""
Diagram parser for PlantUML-style activity diagrams.

The parser lowers diagram text into a WorkflowDefinition:
- Action nodes (`:Label;`) and arrow transitions (`A --> B`)
- `if / else if / else / endif` chains become a decision node, one
  conditional transition per branch and a synthetic `join` node
- `repeat / repeat while (cond)` loops become a synthetic `loop_entry`
  node, a conditional back-edge and a synthetic `after_loop` node
- Notes attach guidance text and JSON action descriptors to nodes

Malformed input never aborts the parse: unknown lines are skipped and
constructs left open at the end of input are closed automatically.
"""

from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Set, Tuple, Union
import json
import logging
import re
import uuid

from .graph import WorkflowDefinition, WorkflowNode, Transition, StartPoint

logger = logging.getLogger(__name__)

DEFAULT_WORKFLOW_NAME = "ImportedWorkflow"
START_MARKER = "[*]"

# Synthetic node labels
DECISION_PREFIX = "if: "
JOIN = "join"
LOOP_ENTRY = "loop_entry"
AFTER_LOOP = "after_loop"
ELSE_CONDITION = "else"

_DIRECTION = r"(?:left|right|top|bottom)"

STYLE_START_RE = re.compile(r"^<style\b", re.IGNORECASE)
STYLE_END_RE = re.compile(r"</style>", re.IGNORECASE)
SKINPARAM_RE = re.compile(r"^skinparam\s+(\S+)\s+(.*?);?$", re.IGNORECASE)
PRAGMA_RE = re.compile(r"^!\s*pragma\s+(\S+)(?:\s+(.*))?$", re.IGNORECASE)
NOTE_RE = re.compile(r"^note\b", re.IGNORECASE)
SHORTHAND_NOTE_RE = re.compile(rf"^note(?:\s+{_DIRECTION})?\s*:\s*(.*)$", re.IGNORECASE)
INLINE_NOTE_RE = re.compile(rf"^note(?:\s+{_DIRECTION})?\s+of\s+(.+?)\s*:\s*(.*)$", re.IGNORECASE)
BLOCK_NOTE_RE = re.compile(rf"^note(?:\s+{_DIRECTION})?(?:\s+of\s+(.+?))?\s*;?$", re.IGNORECASE)
END_NOTE_RE = re.compile(r"^end\s?note;?$", re.IGNORECASE)
START_RE = re.compile(r"^start;?$", re.IGNORECASE)
STOP_RE = re.compile(r"^(?:stop|end);?$", re.IGNORECASE)
IF_RE = re.compile(
    r"^if\s*\((.*?)\)\s*(?:(?:is|equals)\s*\((.*?)\)\s*)?then(?:\s*\((.*?)\))?;?$",
    re.IGNORECASE,
)
ELSE_RE = re.compile(
    r"^else\s*(?:if\s*\((.*?)\)\s*(?:(?:is|equals)\s*\((.*?)\)\s*)?then)?(?:\s*\((.*?)\))?;?$",
    re.IGNORECASE,
)
ENDIF_RE = re.compile(r"^end\s?if;?$", re.IGNORECASE)
REPEAT_RE = re.compile(r"^repeat(?:\s*:(.*?);)?$", re.IGNORECASE)
REPEAT_WHILE_RE = re.compile(r"^repeat\s+while\s*\((.*?)\).*$", re.IGNORECASE)
ARROW_RE = re.compile(r"^(.*?)\s*(-{1,2}>|<-{1,2})\s*(.*)$")
ACTION_RE = re.compile(r"^(?:#(?P<color>[^:\s]+)\s*)?:(?P<text>.*?)[;|<>/\]}]?$")
ACTION_START_RE = re.compile(r"^(?:#[^:\s]+\s*)?:")
STEREOTYPE_RE = re.compile(r"<<\s*(\w+)\s*>>")
QUOTED_RE = re.compile(r"\"[^\"]*\"")
ARROW_LABEL_RE = re.compile(r"^(?P<target>[^:].*?)\s*:\s*(?P<label>.+)$")


@dataclass
class _Branch:
    condition: str
    tag: Optional[str] = None
    entered: bool = False
    tail: Optional[str] = None


@dataclass
class _IfFrame:
    decision_id: str
    branches: List[_Branch]

    @property
    def current(self) -> _Branch:
        return self.branches[-1]


@dataclass
class _LoopFrame:
    entry_id: str
    condition: Optional[str] = None


_Frame = Union[_IfFrame, _LoopFrame]


def make_id(label: str, index: int) -> str:
    """Build a synthetic node id from a label and the parse-scoped counter."""
    s = re.sub(r"\s+", "_", label or "")
    s = re.sub(r"[^A-Za-z0-9_]+", "_", s)
    if not s:
        return f"node_{index}"
    return f"{s}_{index}"


def normalize_label(raw: str) -> str:
    """Strip the `:` / `;` action delimiters from a diagram token."""
    raw = raw.strip()
    if raw.startswith(":"):
        raw = raw[1:].strip()
    if raw.endswith(";"):
        raw = raw[:-1].strip()
    return raw


def _balanced_object_end(text: str) -> int:
    """
    Find the index of the brace closing the object that opens text.

    String literals are skipped so braces inside JSON strings do not count.
    Returns -1 when the braces never balance.
    """
    depth = 0
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return -1


def split_note_body(text: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Split a note body into (json_metadata, note_markdown).

    A leading balanced `{...}` that parses as a JSON object becomes the
    metadata; whatever follows it (minus an optional `|` separator) is the
    markdown. Bodies without a leading JSON object are pure markdown.
    """
    body = (text or "").strip()
    if not body:
        return None, None
    if not body.startswith("{"):
        return None, body

    end = _balanced_object_end(body)
    if end < 0:
        return None, body

    prefix = body[:end + 1]
    try:
        parsed = json.loads(prefix)
    except ValueError:
        return None, body
    if not isinstance(parsed, dict):
        return None, body

    rest = body[end + 1:].strip()
    if rest.startswith("|"):
        rest = rest[1:].strip()
    return prefix, rest or None


class DiagramParser:
    """
    Parser that lowers activity-diagram text into a WorkflowDefinition.

    Each call to parse() starts from a clean slate, so re-parsing identical
    text yields an identical graph (same node ids, same transition ids, same
    order). Global diagram directives encountered during the last parse are
    kept for diagnostics.

    Example:
        parser = DiagramParser()
        definition = parser.parse('''
            @startuml
            start
            :Welcome;
            if (hungry?) then (yes)
              :Find food;
            else (no)
              :Keep walking;
            endif
            stop
            @enduml
        ''', id="tour")
    """

    def __init__(self):
        self.skinparams: Dict[str, str] = {}
        self.pragmas: List[Tuple[str, Optional[str]]] = []
        self.style_blocks: List[str] = []
        self.skipped_lines: List[str] = []
        self._reset()

    def _reset(self) -> None:
        self._nodes: Dict[str, WorkflowNode] = {}
        self._transitions: List[Transition] = []
        self._start_points: List[StartPoint] = []
        self._synthetic: Set[str] = set()
        self._frames: List[_Frame] = []
        self._index = 0
        self._current: Optional[str] = None
        self._pending_condition: Optional[str] = None
        self._last_declared: Optional[str] = None

    @staticmethod
    def _prepare_lines(text: str) -> List[str]:
        lines = []
        for raw in text.splitlines():
            line = raw.strip()
            if not line:
                continue
            lowered = line.lower()
            if lowered.startswith("@startuml") or lowered.startswith("@enduml"):
                continue
            if line.startswith("'") or line.startswith("//"):
                continue
            lines.append(line)
        return lines

    def parse(
        self,
        text: str,
        id: Optional[str] = None,
        name: Optional[str] = None,
    ) -> WorkflowDefinition:
        """
        Parse diagram text into a workflow definition.

        Args:
            text: Diagram source
            id: Workflow id (a random UUID when omitted)
            name: Workflow name

        Raises:
            ValueError: if text is None or blank
        """
        if text is None or not str(text).strip():
            raise ValueError("Diagram text must not be empty")

        self._reset()
        self.skinparams = {}
        self.pragmas = []
        self.style_blocks = []
        self.skipped_lines = []

        lines = self._prepare_lines(text)
        i = 0
        while i < len(lines):
            i = self._parse_line(lines, i) + 1

        # Close whatever the diagram left open, innermost first
        while self._frames:
            self._close_frame(self._frames.pop())

        definition = WorkflowDefinition(
            id=id or str(uuid.uuid4()),
            name=name or DEFAULT_WORKFLOW_NAME,
            nodes=list(self._nodes.values()),
            transitions=self._transitions,
            start_points=self._start_points,
        )
        logger.debug(
            f"Parsed workflow {definition.id}: {len(definition.nodes)} nodes, "
            f"{len(definition.transitions)} transitions, {len(self.skipped_lines)} skipped lines"
        )
        return definition

    def _parse_line(self, lines: List[str], i: int) -> int:
        """Handle the line at index i and return the index of the last line consumed."""
        line = lines[i]

        if STYLE_START_RE.match(line):
            j = i
            while j < len(lines) - 1 and not STYLE_END_RE.search(lines[j]):
                j += 1
            self.style_blocks.append("\n".join(lines[i:j + 1]))
            return j

        match = SKINPARAM_RE.match(line)
        if match:
            self.skinparams[match.group(1).strip()] = match.group(2).strip()
            return i

        match = PRAGMA_RE.match(line)
        if match:
            value = match.group(2).strip() if match.group(2) else None
            self.pragmas.append((match.group(1).strip(), value))
            return i

        if NOTE_RE.match(line):
            return self._parse_note(lines, i)

        if START_RE.match(line):
            node_id = self._get_or_create_node("Start")
            self._start_points.append(StartPoint(node_id))
            self._current = node_id
            self._pending_condition = None
            self._last_declared = node_id
            return i

        if STOP_RE.match(line):
            node_id = self._get_or_create_node("Stop")
            self._attach(node_id)
            self._last_declared = node_id
            # The path ends here; nothing links out of a stop
            self._current = None
            return i

        match = IF_RE.match(line)
        if match:
            self._open_if(match.group(1).strip(), match.group(3))
            return i

        match = ELSE_RE.match(line)
        if match and self._find_frame(_IfFrame) is not None:
            condition = match.group(1).strip() if match.group(1) is not None else ELSE_CONDITION
            self._open_branch(condition or ELSE_CONDITION, match.group(3))
            return i

        if ENDIF_RE.match(line) and self._find_frame(_IfFrame) is not None:
            self._unwind_to(_IfFrame)
            self._close_frame(self._frames.pop())
            return i

        match = REPEAT_WHILE_RE.match(line)
        if match:
            if self._find_frame(_LoopFrame) is not None:
                self._unwind_to(_LoopFrame)
                frame = self._frames.pop()
                frame.condition = match.group(1).strip()
                self._close_frame(frame)
            else:
                self.skipped_lines.append(line)
            return i

        match = REPEAT_RE.match(line)
        if match:
            self._open_loop(match.group(1))
            return i

        match = ARROW_RE.match(line)
        if (
            match
            and (match.group(1).strip() or match.group(3).strip())
            and not (ACTION_START_RE.match(line) and not match.group(3).strip().startswith(":"))
        ):
            self._parse_arrow(match.group(1), match.group(2), match.group(3))
            return i

        match = ACTION_RE.match(line)
        if match:
            self._parse_action(match.group("text"))
            return i

        # Unknown construct
        logger.debug(f"Skipping unrecognised diagram line: {line!r}")
        self.skipped_lines.append(line)
        return i

    # Notes

    def _parse_note(self, lines: List[str], i: int) -> int:
        line = lines[i]

        match = SHORTHAND_NOTE_RE.match(line)
        if match:
            if self._last_declared is not None:
                self._attach_note(self._last_declared, match.group(1))
            return i

        match = INLINE_NOTE_RE.match(line)
        if match:
            target = self._get_or_create_node(match.group(1))
            self._attach_note(target, match.group(2))
            return i

        match = BLOCK_NOTE_RE.match(line)
        if match:
            body = []
            j = i + 1
            while j < len(lines) and not END_NOTE_RE.match(lines[j]):
                body.append(lines[j])
                j += 1

            if match.group(1):
                target = self._get_or_create_node(match.group(1))
            else:
                target = self._last_declared
            if target is not None:
                self._attach_note(target, "\n".join(body))
            return j

        self.skipped_lines.append(line)
        return i

    def _attach_note(self, node_id: str, text: str) -> None:
        node = self._nodes.get(node_id)
        if node is None:
            return
        json_metadata, markdown = split_note_body(text)
        if json_metadata is None and markdown is None:
            return
        self._nodes[node_id] = replace(
            node,
            json_metadata=json_metadata if json_metadata is not None else node.json_metadata,
            note_markdown=markdown if markdown is not None else node.note_markdown,
        )

    # Nodes and transitions

    def _next_id(self, label: str) -> str:
        """Get the next counter-derived id that no node uses yet."""
        node_id = make_id(label, self._index)
        self._index += 1
        while node_id in self._nodes:
            node_id = make_id(label, self._index)
            self._index += 1
        return node_id

    def _create_synthetic_node(self, label: str) -> str:
        node_id = self._next_id(label)
        self._nodes[node_id] = WorkflowNode(id=node_id, label=label)
        self._synthetic.add(node_id)
        return node_id

    def _get_or_create_node(self, token: str) -> str:
        token = token.strip()
        if token == START_MARKER:
            if START_MARKER not in self._nodes:
                self._nodes[START_MARKER] = WorkflowNode(id=START_MARKER, label=START_MARKER)
            return START_MARKER

        label = normalize_label(token)
        for node in self._nodes.values():
            if node.label == label and node.id not in self._synthetic:
                return node.id

        if label and label not in self._nodes:
            node_id = label
        else:
            node_id = self._next_id(label)

        self._nodes[node_id] = WorkflowNode(id=node_id, label=label)
        return node_id

    def _add_transition(self, from_id: Optional[str], to_id: Optional[str], condition: Optional[str] = None) -> None:
        if not from_id or not to_id:
            return
        # Self-transitions need a condition to mean anything
        if from_id == to_id and not (condition and condition.strip()):
            return
        self._transitions.append(Transition(
            id=f"t_{len(self._transitions)}",
            from_node_id=from_id,
            to_node_id=to_id,
            condition=condition,
        ))

    def _attach(self, node_id: str) -> None:
        """Link the current tail to node_id and make it the new tail."""
        self._add_transition(self._current, node_id, self._pending_condition)
        frame = self._frames[-1] if self._frames else None
        if isinstance(frame, _IfFrame):
            frame.current.entered = True
        self._current = node_id
        self._pending_condition = None

    def _parse_action(self, text: str) -> None:
        stereotype = STEREOTYPE_RE.search(text)
        label = STEREOTYPE_RE.sub("", text).strip()
        if not label:
            self.skipped_lines.append(text)
            return

        node_id = self._get_or_create_node(label)
        self._attach(node_id)
        self._last_declared = node_id

        if stereotype:
            node = self._nodes[node_id]
            marker = f"<<{stereotype.group(1)}>>"
            note = f"{node.note_markdown}\n{marker}" if node.note_markdown else marker
            self._nodes[node_id] = replace(node, note_markdown=note)

    def _parse_arrow(self, left: str, arrow: str, right: str) -> None:
        left = QUOTED_RE.sub("", left).strip()
        right = QUOTED_RE.sub("", right).strip()
        if arrow.startswith("<"):
            left, right = right, left

        condition = None
        label_match = ARROW_LABEL_RE.match(right)
        if label_match and right != START_MARKER:
            right = label_match.group("target").strip()
            condition = label_match.group("label").strip() or None

        if not right:
            self.skipped_lines.append(f"{left} {arrow}")
            return

        if left == START_MARKER:
            target = self._get_or_create_node(right)
            self._start_points.append(StartPoint(target))
            self._current = target
            self._pending_condition = None
            self._last_declared = target
            return

        from_id = self._get_or_create_node(left) if left else self._current
        to_id = self._get_or_create_node(right)
        self._add_transition(from_id, to_id, condition)
        self._current = to_id
        self._pending_condition = None
        self._last_declared = to_id

    # Branch and loop frames

    def _find_frame(self, kind: type) -> Optional[_Frame]:
        for frame in reversed(self._frames):
            if isinstance(frame, kind):
                return frame
        return None

    def _unwind_to(self, kind: type) -> None:
        """Auto-close frames opened after the innermost frame of the given kind."""
        while self._frames and not isinstance(self._frames[-1], kind):
            self._close_frame(self._frames.pop())

    def _open_if(self, condition: str, tag: Optional[str]) -> None:
        decision_id = self._create_synthetic_node(f"{DECISION_PREFIX}{condition}")
        self._attach(decision_id)
        self._last_declared = decision_id
        self._frames.append(_IfFrame(
            decision_id=decision_id,
            branches=[_Branch(condition=condition, tag=tag)],
        ))
        self._current = decision_id
        self._pending_condition = condition

    def _open_branch(self, condition: str, tag: Optional[str]) -> None:
        self._unwind_to(_IfFrame)
        frame = self._frames[-1]
        frame.current.tail = self._current if frame.current.entered else None
        frame.branches.append(_Branch(condition=condition, tag=tag))
        self._current = frame.decision_id
        self._pending_condition = condition

    def _open_loop(self, label: Optional[str]) -> None:
        entry_id = self._create_synthetic_node(LOOP_ENTRY)
        self._attach(entry_id)
        self._frames.append(_LoopFrame(entry_id=entry_id))
        self._current = entry_id
        self._pending_condition = None
        if label and label.strip():
            self._parse_action(label)

    def _close_frame(self, frame: _Frame) -> None:
        if isinstance(frame, _IfFrame):
            self._close_if(frame)
        else:
            self._close_loop(frame)

    def _close_if(self, frame: _IfFrame) -> None:
        frame.current.tail = self._current if frame.current.entered else None
        join_id = self._create_synthetic_node(JOIN)
        for branch in frame.branches:
            if not branch.entered:
                self._add_transition(frame.decision_id, join_id, branch.condition)
            elif branch.tail is not None:
                self._add_transition(branch.tail, join_id)

        self._current = join_id
        self._pending_condition = None
        self._mark_parent_entered()

    def _close_loop(self, frame: _LoopFrame) -> None:
        tail = self._current
        after_id = self._create_synthetic_node(AFTER_LOOP)
        if tail == frame.entry_id:
            self._add_transition(frame.entry_id, after_id)
        elif tail is not None:
            if frame.condition is not None:
                self._add_transition(tail, frame.entry_id, frame.condition)
            self._add_transition(tail, after_id)

        self._current = after_id
        self._pending_condition = None
        self._mark_parent_entered()

    def _mark_parent_entered(self) -> None:
        frame = self._frames[-1] if self._frames else None
        if isinstance(frame, _IfFrame):
            frame.current.entered = True


def parse_diagram(text: str, id: Optional[str] = None, name: Optional[str] = None) -> WorkflowDefinition:
    """Parse diagram text with a fresh parser."""
    return DiagramParser().parse(text, id=id, name=name)
