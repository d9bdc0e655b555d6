"""
Tests for DiagramParser lowering and note handling.
"""

import pytest

from plantflow import DiagramParser, WorkflowDefinition, parse_diagram
from plantflow.core.parser import make_id, split_note_body

from conftest import BRANCH_DIAGRAM, LINEAR_DIAGRAM


def node_by_label(definition: WorkflowDefinition, label: str):
    matches = [n for n in definition.nodes if n.label == label]
    assert matches, f"no node labelled {label!r}"
    return matches[0]


def edges(definition: WorkflowDefinition):
    return [(t.from_node_id, t.to_node_id, t.condition) for t in definition.transitions]


class TestLinearDiagrams:
    """Plain actions, start and stop."""

    def test_linear_flow(self):
        definition = parse_diagram(LINEAR_DIAGRAM, id="wf")

        assert definition.id == "wf"
        assert definition.name == "ImportedWorkflow"
        assert [n.id for n in definition.nodes] == ["Start", "Welcome", "Next", "Stop"]
        assert edges(definition) == [
            ("Start", "Welcome", None),
            ("Welcome", "Next", None),
            ("Next", "Stop", None),
        ]
        assert [sp.node_id for sp in definition.start_points] == ["Start"]
        assert definition.validate() == []

    def test_random_id_when_omitted(self):
        first = parse_diagram(LINEAR_DIAGRAM)
        second = parse_diagram(LINEAR_DIAGRAM)
        assert first.id and second.id
        assert first.id != second.id

    def test_blank_text_rejected(self):
        parser = DiagramParser()
        with pytest.raises(ValueError):
            parser.parse("   \n  ")
        with pytest.raises(ValueError):
            parser.parse(None)

    def test_parse_is_idempotent(self):
        parser = DiagramParser()
        first = parser.parse(BRANCH_DIAGRAM, id="wf", name="tour")
        second = parser.parse(BRANCH_DIAGRAM, id="wf", name="tour")

        assert first.to_dict() == second.to_dict()
        assert first == second
        assert first.get_graph_hash() == second.get_graph_hash()

    def test_repeated_label_reuses_node(self):
        definition = parse_diagram("""
            start
            :Ask;
            :Answer;
            :Ask;
        """)
        assert len([n for n in definition.nodes if n.label == "Ask"]) == 1
        assert ("Answer", "Ask", None) in edges(definition)

    def test_colour_and_stereotype(self):
        definition = parse_diagram("""
            start
            #LightGreen:Find food;
            :Pay <<output>>;
        """)
        assert definition.has_node("Find food")
        pay = node_by_label(definition, "Pay")
        assert pay.note_markdown == "<<output>>"


class TestBranchLowering:
    """if / else if / else / endif."""

    def test_if_else(self):
        definition = parse_diagram(BRANCH_DIAGRAM)
        decision = node_by_label(definition, "if: hungry?")
        join = node_by_label(definition, "join")

        outgoing = definition.outgoing(decision.id)
        assert [(t.to_node_id, t.condition) for t in outgoing] == [
            ("Eat", "hungry?"),
            ("Walk", "else"),
        ]
        assert {t.from_node_id for t in definition.incoming(join.id)} == {"Eat", "Walk"}
        assert all(t.condition is None for t in definition.incoming(join.id))
        assert [t.to_node_id for t in definition.outgoing(join.id)] == ["Done"]
        assert len([n for n in definition.nodes if n.label == "join"]) == 1

    def test_else_if_chain(self):
        definition = parse_diagram("""
            start
            if (a) then (yes)
              :A;
            else if (b) then (yes)
              :B;
            elseif (c) then
              :C;
            else (no)
              :D;
            endif
        """)
        decision = node_by_label(definition, "if: a")
        assert [(t.to_node_id, t.condition) for t in definition.outgoing(decision.id)] == [
            ("A", "a"),
            ("B", "b"),
            ("C", "c"),
            ("D", "else"),
        ]
        join = node_by_label(definition, "join")
        assert {t.from_node_id for t in definition.incoming(join.id)} == {"A", "B", "C", "D"}

    def test_empty_branch_links_decision_to_join(self):
        definition = parse_diagram("""
            start
            if (skip?) then (yes)
            else (no)
              :Work;
            endif
        """)
        decision = node_by_label(definition, "if: skip?")
        join = node_by_label(definition, "join")
        assert (decision.id, join.id, "skip?") in edges(definition)
        assert ("Work", join.id, None) in edges(definition)

    def test_stop_inside_branch_does_not_reach_join(self):
        definition = parse_diagram("""
            start
            if (quit?) then (yes)
              :Bye;
              stop
            else (no)
              :Stay;
            endif
        """)
        join = node_by_label(definition, "join")
        assert [t.from_node_id for t in definition.incoming(join.id)] == ["Stay"]
        assert definition.outgoing("Stop") == []

    def test_nested_if(self):
        definition = parse_diagram("""
            start
            if (outer) then
              if (inner) then
                :Deep;
              else
                :Shallow;
              endif
            else
              :Other;
            endif
        """)
        joins = [n for n in definition.nodes if n.label == "join"]
        assert len(joins) == 2
        inner_join, outer_join = joins
        assert {t.from_node_id for t in definition.incoming(inner_join.id)} == {"Deep", "Shallow"}
        assert {t.from_node_id for t in definition.incoming(outer_join.id)} == {inner_join.id, "Other"}

    def test_unterminated_if_still_joins(self):
        definition = parse_diagram("""
            start
            if (a) then (yes)
              :X;
        """)
        join = node_by_label(definition, "join")
        assert ("X", join.id, None) in edges(definition)


class TestLoopLowering:
    """repeat / repeat while."""

    def test_repeat_while(self):
        definition = parse_diagram("""
            start
            repeat
              :Work;
            repeat while (notDone)
            :Finish;
        """)
        entry = node_by_label(definition, "loop_entry")
        after = node_by_label(definition, "after_loop")

        assert ("Start", entry.id, None) in edges(definition)
        assert (entry.id, "Work", None) in edges(definition)
        assert ("Work", entry.id, "notDone") in edges(definition)
        assert ("Work", after.id, None) in edges(definition)
        assert (after.id, "Finish", None) in edges(definition)

    def test_repeat_with_inline_label(self):
        definition = parse_diagram("""
            start
            repeat :Poll;
            repeat while (pending)
        """)
        entry = node_by_label(definition, "loop_entry")
        assert (entry.id, "Poll", None) in edges(definition)
        assert ("Poll", entry.id, "pending") in edges(definition)

    def test_unterminated_repeat_still_has_after_loop(self):
        definition = parse_diagram("""
            start
            repeat
              :W;
        """)
        after = node_by_label(definition, "after_loop")
        entry = node_by_label(definition, "loop_entry")
        assert ("W", after.id, None) in edges(definition)
        assert not any(t.to_node_id == entry.id and t.condition for t in definition.transitions)

    def test_repeat_while_closes_open_if(self):
        definition = parse_diagram("""
            start
            repeat
              if (ok?) then
                :Good;
              else
                :Bad;
            repeat while (again)
        """)
        join = node_by_label(definition, "join")
        entry = node_by_label(definition, "loop_entry")
        assert (join.id, entry.id, "again") in edges(definition)
        assert ("join_2", "after_loop_3", None) in edges(definition)


class TestArrows:
    """Explicit arrow transitions."""

    def test_arrows_and_start_marker(self):
        definition = parse_diagram("""
            [*] --> Idle
            Idle --> Busy
            Busy --> Idle : reset
            Done <- Busy
        """)
        assert [sp.node_id for sp in definition.start_points] == ["Idle"]
        assert edges(definition) == [
            ("Idle", "Busy", None),
            ("Busy", "Idle", "reset"),
            ("Busy", "Done", None),
        ]

    def test_arrow_to_end_marker(self):
        definition = parse_diagram("""
            [*] --> A
            A --> [*]
        """)
        assert ("A", "[*]", None) in edges(definition)

    def test_arrow_from_current_tail(self):
        definition = parse_diagram("""
            start
            :A;
            --> B
        """)
        assert ("A", "B", None) in edges(definition)

    def test_arrow_inside_action_label(self):
        definition = parse_diagram("""
            start
            :Go -> there;
            :Next;
        """)
        go = node_by_label(definition, "Go -> there")

        assert [n.label for n in definition.nodes] == ["Start", "Go -> there", "Next"]
        assert ("Start", go.id, None) in edges(definition)
        assert (go.id, "Next", None) in edges(definition)

    def test_arrow_between_actions(self):
        definition = parse_diagram("""
            [*] --> :A;
            :A --> :B;
        """)
        assert ("A", "B", None) in edges(definition)


class TestNotes:
    """Block, shorthand and inline notes."""

    def test_block_note_with_json_and_prose(self):
        definition = parse_diagram("""
            start
            :Locate;
            note right
            {"action": "locate", "params": {"who": "me"}}
            Where **am** I?
            end note
        """)
        node = definition.get_node("Locate")
        assert node.json_metadata == '{"action": "locate", "params": {"who": "me"}}'
        assert node.note_markdown == "Where **am** I?"

    def test_shorthand_note(self):
        definition = parse_diagram("""
            start
            :Welcome;
            note left: Say hello
        """)
        assert definition.get_node("Welcome").note_markdown == "Say hello"

    def test_inline_note_of_target(self):
        definition = parse_diagram("""
            start
            :Welcome;
            :Other;
            note right of Welcome: Hi there
        """)
        assert definition.get_node("Welcome").note_markdown == "Hi there"
        assert definition.get_node("Other").note_markdown is None

    def test_note_on_decision(self):
        definition = parse_diagram("""
            start
            if (hungry?) then (yes)
            note right: Are you hungry?
              :Eat;
            endif
        """)
        decision = node_by_label(definition, "if: hungry?")
        assert decision.note_markdown == "Are you hungry?"

    def test_split_note_body(self):
        assert split_note_body('{"action": "a"} | Some text') == ('{"action": "a"}', "Some text")
        assert split_note_body('{"action": "a {b}"}') == ('{"action": "a {b}"}', None)
        assert split_note_body("Just prose") == (None, "Just prose")
        assert split_note_body("{not json} text") == (None, "{not json} text")
        assert split_note_body("   ") == (None, None)


class TestTolerance:
    """Malformed input never aborts a parse."""

    def test_garbage_lines_are_skipped(self):
        parser = DiagramParser()
        definition = parser.parse("""
            @startuml
            title Something
            skinparam ActivityBackgroundColor #EEEEEE
            !pragma useVerticalIf on
            <style>
            activityDiagram { BackgroundColor white }
            </style>
            ' a comment
            start
            this is not plantuml
            :Welcome;
            endif
            repeat while (nothing open)
            %%%
            stop
            @enduml
        """)

        assert [n.id for n in definition.nodes] == ["Start", "Welcome", "Stop"]
        assert parser.skinparams == {"ActivityBackgroundColor": "#EEEEEE"}
        assert parser.pragmas == [("useVerticalIf", "on")]
        assert len(parser.style_blocks) == 1
        assert "this is not plantuml" in parser.skipped_lines

    def test_make_id(self):
        assert make_id("if: a b", 3) == "if__a_b_3"
        assert make_id("", 7) == "node_7"

    def test_synthetic_ids_skip_declared_nodes(self):
        definition = parse_diagram("start\n:join_1;\nif (a) then (y)\n:X;\nendif")

        assert [n.id for n in definition.nodes if n.label == "join_1"] == ["join_1"]
        join = node_by_label(definition, "join")
        assert join.id == "join_2"
        assert ("Start", "join_1", None) in edges(definition)
        assert ("join_1", "if__a_0", None) in edges(definition)
        assert ("if__a_0", "X", "a") in edges(definition)
        assert ("X", "join_2", None) in edges(definition)
        assert len({n.id for n in definition.nodes}) == len(definition.nodes)
        assert definition.validate() == []


class TestDefinitionSerialization:
    """to_dict / from_dict snapshots."""

    def test_snapshot_restores_definition(self):
        definition = parse_diagram(BRANCH_DIAGRAM, id="wf", name="tour")
        restored = WorkflowDefinition.from_json(definition.to_json())
        assert restored == definition

    def test_graph_hash_ignores_identity(self):
        first = parse_diagram(BRANCH_DIAGRAM, id="a", name="one")
        second = parse_diagram(BRANCH_DIAGRAM, id="b", name="two")
        assert first.get_graph_hash() == second.get_graph_hash()
        assert first.get_graph_hash() != parse_diagram(LINEAR_DIAGRAM).get_graph_hash()
