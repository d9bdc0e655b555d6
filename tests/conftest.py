"""
Shared fixtures for plantflow tests.
"""

import pytest

from plantflow import ActionHandlerRegistry, WorkflowController


LINEAR_DIAGRAM = """
@startuml
start
:Welcome;
:Next;
stop
@enduml
"""

BRANCH_DIAGRAM = """
@startuml
start
:Welcome;
if (hungry?) then (yes)
  :Eat;
else (no)
  :Walk;
endif
:Done;
stop
@enduml
"""

ACTION_DIAGRAM = """
@startuml
start
:Welcome;
:Locate;
note right
{"action": "locate", "params": {"who": "{{name}}"}}
Finding out where **{{name}}** is.
end note
:Show;
stop
@enduml
"""


@pytest.fixture
def registry() -> ActionHandlerRegistry:
    return ActionHandlerRegistry()


@pytest.fixture
def controller(registry) -> WorkflowController:
    return WorkflowController(registry=registry)
