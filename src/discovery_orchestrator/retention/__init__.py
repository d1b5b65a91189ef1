"""Retention of old session directories."""

from discovery_orchestrator.retention.sweeper import RetentionSweeper, SweepResult

__all__ = ["RetentionSweeper", "SweepResult"]
