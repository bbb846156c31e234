"""Basic usage example for the Graph Rollback engine.

This example demonstrates:
1. Registering a workflow graph
2. Following an execution through its event stream
3. Handling failures
4. Resuming from the last checkpoint
"""

import asyncio
import sys
from pathlib import Path

# Add src to path for development
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from graph_rollback import (
    END,
    ERROR,
    EventType,
    WorkflowConfig,
    WorkflowManager,
    WorkflowStatus,
    agent_node,
    command_node,
    configure_logging,
    eval_node,
)

MARKER = Path("data/release.ok")

RELEASE_WORKFLOW = WorkflowConfig(
    id="release",
    name="Release check",
    initial_context={"version": "1.0.0"},
    nodes=[
        command_node("lint", "echo linting", then="check_marker"),
        command_node(
            "check_marker",
            f"test -f {MARKER}",
            then="summarize",
        ),
        agent_node(
            "summarize",
            "Write a one paragraph release note for this build.",
            role="release manager",
            then="decide",
        ),
        eval_node(
            "decide",
            lambda s: {"approved": bool(s.conversation_history)},
            then=lambda s: END if s.context["approved"] else ERROR,
        ),
    ],
)


async def main():
    """Main example function."""
    configure_logging()
    manager = WorkflowManager()

    try:
        await manager.initialize()
        manager.register_workflow(RELEASE_WORKFLOW)
        print("✅ Workflow manager initialized")

        # Example 1: Start an execution and follow it
        print("\n📋 Example 1: Starting a new execution")
        print("-" * 50)

        MARKER.unlink(missing_ok=True)
        execution_id = await manager.start_workflow("release")
        print(f"✨ Started execution {execution_id}")

        async with manager.subscribe(execution_id) as events:
            async for event in events:
                if event.type != EventType.LOG:
                    print(f"   {event.type.value:<20} {event.node_id or event.current_node_id or ''}")

        record = await manager.get_execution(execution_id)
        if record.status == WorkflowStatus.FAILED:
            print(f"❌ Execution failed at {record.current_node}: {record.last_error}")

        # Example 2: Inspect the checkpoint
        print("\n\n📋 Example 2: Analyzing the checkpoint")
        print("-" * 50)

        analysis = await manager.analyze_execution(execution_id)
        details = analysis["resumption_analysis"]
        print(f"Completed nodes: {details['completed_nodes']}")
        print(f"Next node: {details['next_node']}")
        for recommendation in analysis.get("recommendations", []):
            print(f"  [{recommendation['type']}] {recommendation['message']}")

        # Example 3: Fix the cause and resume
        print("\n\n📋 Example 3: Resuming")
        print("-" * 50)

        MARKER.parent.mkdir(parents=True, exist_ok=True)
        MARKER.write_text("ok")
        final = await manager.resume_and_wait(execution_id)
        print(f"🔄 Resumed execution finished with status {final.status.value}")

    finally:
        await manager.close()
        print("\n👋 Workflow manager closed")


if __name__ == "__main__":
    asyncio.run(main())
