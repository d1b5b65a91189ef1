"""Explicit workflow domain concepts.

This package introduces first-class types for:
- the fixed step order and the status transition table
- the checkpoint ledger (pure session transitions)
- the step collaborator contract
- the soft deadline
- single-step execution

The intent is to make each property (skip if done, stop at the first
incomplete step, pause at the deadline) testable without running the whole
pipeline.
"""

__all__: list[str] = []
