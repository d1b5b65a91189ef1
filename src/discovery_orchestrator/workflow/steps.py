"""Step collaborator contract.

A collaborator performs one stage's real work (document extraction, design
extraction, cross-validation, question generation, document generation).
The orchestrator treats it as opaque: it is awaited with the session and
either returns the locations of what it wrote or raises.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol

from discovery_orchestrator.state.session import STEP_ORDER, Session, WorkflowStep

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StepResult:
    output_refs: list[str] = field(default_factory=list)
    provider_used: str | None = None
    estimated_cost: float | None = None


class StepCollaborator(Protocol):
    """One pipeline stage. Must not decide workflow transitions."""

    async def __call__(self, session: Session) -> StepResult: ...


@dataclass(frozen=True, slots=True)
class RequiresDesignSource:
    """Run `collaborator` only when the session has a design source.

    Without one the step still completes, with no outputs, so every attempted
    step leaves a checkpoint.
    """

    collaborator: StepCollaborator

    async def __call__(self, session: Session) -> StepResult:
        if not session.source_refs.design:
            logger.info(
                "No design source; completing step without work",
                extra={"session_id": session.session_id},
            )
            return StepResult(output_refs=[])
        return await self.collaborator(session)


class StepCollaborators:
    """The five collaborators, indexed by step."""

    def __init__(self, collaborators: Mapping[WorkflowStep, StepCollaborator]) -> None:
        missing = [step.value for step in STEP_ORDER if step not in collaborators]
        if missing:
            raise ValueError(f"Missing collaborators for steps: {', '.join(missing)}")
        self._by_step = dict(collaborators)

    @classmethod
    def build(
        cls,
        *,
        prd_analysis: StepCollaborator,
        figma_analysis: StepCollaborator,
        validation: StepCollaborator,
        clarification: StepCollaborator,
        tdd_generation: StepCollaborator,
    ) -> StepCollaborators:
        """Wire the standard pipeline; design analysis is skipped without a design source."""

        return cls(
            {
                WorkflowStep.PRD_ANALYSIS: prd_analysis,
                WorkflowStep.FIGMA_ANALYSIS: RequiresDesignSource(figma_analysis),
                WorkflowStep.VALIDATION: validation,
                WorkflowStep.CLARIFICATION: clarification,
                WorkflowStep.TDD_GENERATION: tdd_generation,
            }
        )

    def for_step(self, step: WorkflowStep) -> StepCollaborator:
        return self._by_step[step]
