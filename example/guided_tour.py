"""
Example: Guided Tour Workflow

This example imports an activity diagram, registers the actions its
nodes reference and walks the instance to the end, always taking the
first choice offered (no Redis required).
"""

import asyncio
import logging

from plantflow import ActionHandlerRegistry, WorkflowController


DIAGRAM = """
@startuml
title Guided tour
skinparam ActivityBackgroundColor #EEEEEE
start
:Welcome;
note right
{"action": "get_location", "params": {"user": "{{user}}"}}
Welcome to the **tour**.
end note
if (Hungry?) then (yes)
  #LightGreen:Find food;
else (no)
  :Keep walking;
endif
:Say goodbye;
note right
{"action": "log", "params": {"message": "Bye from {{city}}"}}
end note
stop
@enduml
"""


registry = ActionHandlerRegistry()


@registry.action("get_location")
async def get_location(context, params):
    """Pretend to look up where the user is."""
    await asyncio.sleep(0.1)
    print(f"[get_location] locating {params.get('user') or 'someone'}")
    return {"city": "Lisbon"}


@registry.action("log")
def log_message(context, params):
    print(f"[log] {params.get('message')}")
    return None


async def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    controller = WorkflowController(registry=registry)
    definition = await controller.import_workflow(DIAGRAM, id="tour", name="Guided tour")

    print("Graph structure:")
    print(definition.visualize())
    print()

    print("Walking the tour...")
    print("-" * 50)

    visited = []
    while True:
        node_id = await controller.get_current_node_id("tour")
        visited.append(node_id)
        payload = await controller.get_current_state_payload("tour")

        if payload.is_choice:
            print(f"[{payload.node_label}] choices:")
            for choice in payload.choices:
                print(f"  {choice.index}. {choice.display_text} ({choice.condition})")
            value = payload.choices[0].index
        else:
            print(f"[{payload.node_label}] {payload.text}")
            value = None

        if not await controller.advance_by_choice_value("tour", value):
            break

    print("-" * 50)
    print("\nVariables:")
    for key, value in (await controller.get_variables("tour")).items():
        print(f"  {key} = {value}")

    print("\nVisited nodes:")
    for i, node_id in enumerate(visited):
        print(f"  {i+1}. {node_id}")


if __name__ == "__main__":
    asyncio.run(main())
