"""Discovery workflow orchestrator.

Runs the five-step requirements discovery pipeline against a durable,
checkpointed session on local disk:
- crash-safe JSON persistence of the session record
- a soft deadline that pauses the run between steps
- resume from the first step without a checkpoint
"""

__version__ = "0.1.0"

from discovery_orchestrator.core.config import WorkflowSettings
from discovery_orchestrator.core.orchestrator import (
    RunOptions,
    WorkflowOrchestrator,
    WorkflowSummary,
)

__all__ = [
    "__version__",
    "RunOptions",
    "WorkflowOrchestrator",
    "WorkflowSettings",
    "WorkflowSummary",
]
