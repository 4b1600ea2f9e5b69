"""Workflow orchestration: steps interface, orchestrator, watchers and decisions"""
from letterflow.workflow.steps import WorkflowSteps
from letterflow.workflow.orchestrator import WorkflowOrchestrator
from letterflow.workflow.watchers import ApprovalWatcher, NeedsImprovementWatcher
from letterflow.workflow.trigger_monitor import TriggerMonitor
from letterflow.workflow.decisions import ApprovalDecision, DecisionType, apply_decision

__all__ = [
    "WorkflowSteps",
    "WorkflowOrchestrator",
    "ApprovalWatcher",
    "NeedsImprovementWatcher",
    "TriggerMonitor",
    "ApprovalDecision",
    "DecisionType",
    "apply_decision",
]
