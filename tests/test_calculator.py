"""
Tests for StateCalculator.
"""

import pytest

from plantflow import StartPoint, StateCalculator, Transition, WorkflowDefinition, WorkflowNode, parse_diagram

from conftest import BRANCH_DIAGRAM, LINEAR_DIAGRAM


@pytest.fixture
def calculator() -> StateCalculator:
    return StateCalculator()


class TestStartNode:

    def test_start_hops_once_past_single_edge(self, calculator):
        definition = parse_diagram(LINEAR_DIAGRAM)
        assert calculator.calculate_start_node(definition) == "Welcome"

    def test_start_stays_on_branching_node(self, calculator):
        definition = WorkflowDefinition(
            id="wf",
            name="wf",
            nodes=[WorkflowNode("A", "A"), WorkflowNode("B", "B"), WorkflowNode("C", "C")],
            transitions=[Transition("t_0", "A", "B"), Transition("t_1", "A", "C")],
            start_points=[StartPoint("A")],
        )
        assert calculator.calculate_start_node(definition) == "A"

    def test_first_node_without_start_point(self, calculator):
        definition = WorkflowDefinition(id="wf", name="wf", nodes=[WorkflowNode("Only", "Only")])
        assert calculator.calculate_start_node(definition) == "Only"

    def test_empty_definition(self, calculator):
        assert calculator.calculate_start_node(WorkflowDefinition(id="wf", name="wf")) is None

    def test_definition_required(self, calculator):
        with pytest.raises(ValueError):
            calculator.calculate_start_node(None)


class TestPayload:

    def test_plain_step_uses_label(self, calculator):
        definition = parse_diagram(LINEAR_DIAGRAM)
        payload = calculator.calculate_current_payload(definition, "Welcome")

        assert payload.is_choice is False
        assert payload.text == "Welcome"
        assert payload.choices == ()
        assert payload.node_label == "Welcome"

    def test_plain_step_prefers_note(self, calculator):
        definition = WorkflowDefinition(
            id="wf",
            name="wf",
            nodes=[WorkflowNode("A", "A", note_markdown="Read me"), WorkflowNode("B", "B")],
            transitions=[Transition("t_0", "A", "B")],
        )
        payload = calculator.calculate_current_payload(definition, "A")
        assert payload.is_choice is False
        assert payload.text == "Read me"

    def test_choice_preserves_declaration_order(self, calculator):
        definition = parse_diagram(BRANCH_DIAGRAM)
        decision = next(n for n in definition.nodes if n.label == "if: hungry?")
        payload = calculator.calculate_current_payload(definition, decision.id)

        assert payload.is_choice is True
        assert [(c.index, c.display_text, c.target_node_id, c.condition) for c in payload.choices] == [
            (0, "Eat", "Eat", "hungry?"),
            (1, "Walk", "Walk", "else"),
        ]
        assert payload.to_dict()["choices"][1]["condition"] == "else"

    def test_single_conditional_edge_is_a_choice(self, calculator):
        definition = WorkflowDefinition(
            id="wf",
            name="wf",
            nodes=[WorkflowNode("A", "A"), WorkflowNode("B", "Bee")],
            transitions=[Transition("t_0", "A", "B", condition="yes")],
        )
        payload = calculator.calculate_current_payload(definition, "A")
        assert payload.is_choice is True
        assert payload.choices[0].display_text == "Bee"

    def test_missing_target_falls_back_to_id(self, calculator):
        definition = WorkflowDefinition(
            id="wf",
            name="wf",
            nodes=[WorkflowNode("A", "A")],
            transitions=[Transition("t_0", "A", "Ghost"), Transition("t_1", "A", "A", condition="again")],
        )
        payload = calculator.calculate_current_payload(definition, "A")
        assert [c.display_text for c in payload.choices] == ["Ghost", "A"]

    def test_resting_node(self, calculator):
        definition = parse_diagram(LINEAR_DIAGRAM)
        payload = calculator.calculate_current_payload(definition, "Stop")
        assert payload.is_choice is False
        assert payload.text == "Stop"

    def test_unknown_node(self, calculator):
        definition = parse_diagram(LINEAR_DIAGRAM)
        payload = calculator.calculate_current_payload(definition, None)
        assert payload.is_choice is False
        assert payload.text is None
