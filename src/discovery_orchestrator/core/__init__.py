"""Core package initialization."""

from discovery_orchestrator.core.config import WorkflowSettings
from discovery_orchestrator.core.orchestrator import WorkflowOrchestrator

__all__ = [
    "WorkflowOrchestrator",
    "WorkflowSettings",
]
