"""Execution state analyzer for resumption decisions.

This module analyzes checkpoints to determine:
- Which nodes have completed, failed or were interrupted
- Where a resumed run will continue
- Whether the execution can be resumed against the registered graph
"""

from typing import Any, Dict, List, Optional
from uuid import UUID

from ..core.models import (
    RESUMABLE_STATUSES,
    ExecutionRecord,
    NodeStatus,
    WorkflowStatus,
    is_terminal_node,
)
from ..core.schema import WorkflowConfig
from ..storage.base import StorageBackend


class ExecutionAnalyzer:
    """Analyzes execution checkpoints for resumption capabilities."""

    def __init__(self, storage: StorageBackend):
        """Initialize the analyzer.

        Args:
            storage: Storage backend for accessing checkpoints
        """
        self.storage = storage

    async def analyze_execution(
        self,
        execution_id: UUID,
        config: Optional[WorkflowConfig] = None,
    ) -> Dict[str, Any]:
        """Analyze an execution to determine how it would resume.

        Args:
            execution_id: Execution to analyze
            config: Registered workflow definition, if any

        Returns:
            Analysis results
        """
        record = await self.storage.get_execution(execution_id)
        if not record:
            return {
                "error": f"Execution {execution_id} not found",
                "resumable": False,
            }
        return self.analyze_record(record, config)

    def analyze_record(
        self,
        record: ExecutionRecord,
        config: Optional[WorkflowConfig] = None,
    ) -> Dict[str, Any]:
        node_names = config.node_names if config else []
        nodes = self._classify_nodes(record)
        blockers = self._find_blockers(record, config)

        return {
            "execution_id": str(record.execution_id),
            "workflow_id": record.workflow_id,
            "status": record.status.value,
            "current_node": record.current_node,
            "last_error": record.last_error,
            "retry_count": record.retry_count,
            "started_at": record.started_at.isoformat(),
            "updated_at": record.updated_at.isoformat(),
            "resumption_analysis": {
                "resumable": not blockers,
                "blockers": blockers,
                "next_node": None if is_terminal_node(record.current_node) else record.current_node,
                "completed_nodes": nodes["completed"],
                "failed_nodes": nodes["failed"],
                "interrupted_nodes": nodes["interrupted"],
                "remaining_nodes": [
                    name for name in node_names if name not in nodes["completed"]
                ],
            },
            "stored_data_summary": {
                "context_keys": sorted(record.context.keys()),
                "conversation_messages": len(record.conversation_history),
                "tracked_nodes": len(record.node_states),
            },
        }

    async def get_resumable_summary(self, workflow_id: Optional[str] = None) -> Dict[str, Any]:
        """Get summary of all resumable executions.

        Args:
            workflow_id: Optional workflow filter

        Returns:
            Summary of resumable executions
        """
        records = await self.storage.get_resumable_executions(workflow_id)

        by_status = {status.value: 0 for status in RESUMABLE_STATUSES}
        executions = []
        for record in records:
            by_status[record.status.value] = by_status.get(record.status.value, 0) + 1
            executions.append({
                "execution_id": str(record.execution_id),
                "workflow_id": record.workflow_id,
                "status": record.status.value,
                "current_node": record.current_node,
                "completed_nodes": record.completed_nodes(),
                "last_error": record.last_error,
                "updated_at": record.updated_at.isoformat(),
            })

        return {
            "total_resumable_executions": len(records),
            "by_status": by_status,
            "executions": executions,
        }

    def _classify_nodes(self, record: ExecutionRecord) -> Dict[str, List[str]]:
        classified: Dict[str, List[str]] = {"completed": [], "failed": [], "interrupted": []}
        for name, node_state in record.node_states.items():
            if node_state.status == NodeStatus.COMPLETED:
                classified["completed"].append(name)
            elif node_state.status == NodeStatus.FAILED:
                classified["failed"].append(name)
            elif node_state.status == NodeStatus.RUNNING:
                classified["interrupted"].append(name)
        return classified

    def _find_blockers(
        self,
        record: ExecutionRecord,
        config: Optional[WorkflowConfig],
    ) -> List[str]:
        blockers = []
        if record.status not in RESUMABLE_STATUSES:
            blockers.append(f"Execution is {record.status.value}")
        if config is None:
            blockers.append(f"Workflow '{record.workflow_id}' is not registered")
        elif (
            not is_terminal_node(record.current_node)
            and record.current_node not in config.node_names
        ):
            blockers.append(f"Node '{record.current_node}' no longer exists in the workflow")
        return blockers

    def generate_recommendations(self, analysis: Dict[str, Any]) -> List[Dict[str, str]]:
        """Generate resumption recommendations based on analysis.

        Args:
            analysis: Output of ``analyze_record``

        Returns:
            List of recommendations
        """
        recommendations = []
        resumption = analysis["resumption_analysis"]

        if resumption["interrupted_nodes"]:
            recommendations.append({
                "type": "warning",
                "message": (
                    f"Node {resumption['interrupted_nodes'][0]} was interrupted and will "
                    "run again from the start"
                ),
            })

        if resumption["completed_nodes"]:
            recommendations.append({
                "type": "optimal",
                "message": f"{len(resumption['completed_nodes'])} completed node(s) will not run again",
            })

        # Check error patterns
        error = (analysis.get("last_error") or "").lower()
        if "timed out" in error or "timeout" in error:
            recommendations.append({
                "type": "warning",
                "message": "Previous failure was a timeout - consider increasing the node timeout",
            })
        elif "rate limit" in error or "api" in error:
            recommendations.append({
                "type": "warning",
                "message": "Previous failure was API-related - check API quotas and limits",
            })
        elif "exit code" in error:
            recommendations.append({
                "type": "warning",
                "message": "Previous failure was a command error - fix the command before resuming",
            })

        if analysis["status"] == WorkflowStatus.PAUSED.value:
            recommendations.append({
                "type": "info",
                "message": f"Execution is paused before node {analysis['current_node']}",
            })

        return recommendations
