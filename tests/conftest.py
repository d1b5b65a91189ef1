"""Test configuration and fixtures."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from discovery_orchestrator.core.config import WorkflowSettings
from discovery_orchestrator.core.orchestrator import WorkflowOrchestrator
from discovery_orchestrator.state.session import Session, SourceRefs
from discovery_orchestrator.state.store import SessionStore
from discovery_orchestrator.workflow.steps import StepCollaborators, StepResult


@dataclass
class FakeStep:
    """Step collaborator double that records calls into a shared list."""

    name: str
    calls: list[str]
    outputs: list[str] = field(default_factory=list)
    error: Exception | None = None
    delay: float = 0.0

    async def __call__(self, session: Session) -> StepResult:
        self.calls.append(self.name)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return StepResult(output_refs=list(self.outputs))


@dataclass
class FakePipeline:
    calls: list[str]
    steps: dict[str, FakeStep]
    collaborators: StepCollaborators


def build_pipeline(**overrides: dict[str, object]) -> FakePipeline:
    calls: list[str] = []
    steps = {
        name: FakeStep(name=name, calls=calls, outputs=[f"{name}/out.yaml"])
        for name in (
            "prd_analysis",
            "figma_analysis",
            "validation",
            "clarification",
            "tdd_generation",
        )
    }
    for name, attrs in overrides.items():
        for key, value in attrs.items():
            setattr(steps[name], key, value)
    return FakePipeline(calls=calls, steps=steps, collaborators=StepCollaborators.build(**steps))


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    """Provide a temporary session storage root."""
    return tmp_path / ".prism" / "sessions"


@pytest.fixture
def settings(storage_root: Path) -> WorkflowSettings:
    """Provide test settings that never read the developer's `.env`."""
    return WorkflowSettings(
        _env_file=None,
        session_storage_path=storage_root,
        ai_provider="anthropic",
        workflow_timeout_minutes=1000,
        max_clarification_iterations=3,
        log_level="DEBUG",
    )


@pytest.fixture
def store(storage_root: Path) -> SessionStore:
    return SessionStore(storage_root)


@pytest.fixture
def source_refs() -> SourceRefs:
    return SourceRefs(document="./docs/prd.md", design="figma-abc123")


@pytest.fixture
def pipeline() -> FakePipeline:
    return build_pipeline()


@pytest.fixture
def orchestrator(
    pipeline: FakePipeline, settings: WorkflowSettings, store: SessionStore
) -> WorkflowOrchestrator:
    return WorkflowOrchestrator(pipeline.collaborators, settings, store=store)


@pytest.fixture
def make_pipeline():
    """Build a pipeline whose fake steps can be overridden per test."""
    return build_pipeline
