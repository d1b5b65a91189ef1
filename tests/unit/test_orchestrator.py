"""Unit tests for the workflow orchestrator (fake step collaborators)."""

from __future__ import annotations

import pytest
from pydantic import ValidationError as PydanticValidationError

from discovery_orchestrator.core.orchestrator import RunOptions, WorkflowOrchestrator
from discovery_orchestrator.errors import SessionError, StepFailure
from discovery_orchestrator.state.session import (
    STEP_ORDER,
    SessionStatus,
    SourceRefs,
    WorkflowStep,
)
from discovery_orchestrator.state.store import SessionStore
from discovery_orchestrator.workflow.state_machine import append_checkpoint, transition_status

ALL_STEPS = [
    "prd_analysis",
    "figma_analysis",
    "validation",
    "clarification",
    "tdd_generation",
]


def _paused_after(store: SessionStore, source_refs: SourceRefs, settings, count: int) -> str:
    session = store.create(source_refs, settings.session_config())
    for step in STEP_ORDER[:count]:
        session, _ = append_checkpoint(session, step, [f"{step.value}.out"], 5)
    store.save(transition_status(session, SessionStatus.PAUSED))
    return session.session_id


@pytest.mark.asyncio
async def test_fresh_run_completes_all_steps(
    orchestrator: WorkflowOrchestrator, pipeline, store: SessionStore, source_refs: SourceRefs
) -> None:
    summary = await orchestrator.run(RunOptions(source_refs=source_refs, deadline_minutes=1000))

    assert summary.status is SessionStatus.COMPLETED
    assert summary.completed_steps == list(STEP_ORDER)
    assert summary.executed_steps == list(STEP_ORDER)
    assert summary.elapsed_ms >= 0
    assert pipeline.calls == ALL_STEPS

    session = store.load(summary.session_id)
    assert session.status is SessionStatus.COMPLETED
    assert len(session.checkpoints) == 5
    assert session.checkpoints[0].output_refs == ("prd_analysis/out.yaml",)
    assert session.config.workflow_timeout_minutes == 1000
    assert not store.is_active(summary.session_id)


@pytest.mark.asyncio
async def test_expired_deadline_pauses_before_any_step(
    orchestrator: WorkflowOrchestrator, pipeline, store: SessionStore, source_refs: SourceRefs
) -> None:
    summary = await orchestrator.run(RunOptions(source_refs=source_refs, deadline_minutes=0))

    assert summary.status is SessionStatus.PAUSED
    assert summary.completed_steps == []
    assert pipeline.calls == []

    session = store.load(summary.session_id)
    assert session.status is SessionStatus.PAUSED
    assert session.checkpoints == ()
    assert store.is_active(summary.session_id)


@pytest.mark.asyncio
async def test_resume_skips_completed_steps(
    orchestrator: WorkflowOrchestrator, pipeline, store: SessionStore, source_refs, settings
) -> None:
    session_id = _paused_after(store, source_refs, settings, 2)
    before = store.load(session_id).checkpoints

    summary = await orchestrator.run(RunOptions(resume_id=session_id))

    assert summary.session_id == session_id
    assert summary.status is SessionStatus.COMPLETED
    assert pipeline.calls == ["validation", "clarification", "tdd_generation"]
    assert summary.executed_steps == list(STEP_ORDER[2:])

    session = store.load(session_id)
    assert session.checkpoints[:2] == before
    assert [cp.step for cp in session.checkpoints] == list(STEP_ORDER)


@pytest.mark.asyncio
async def test_step_failure_keeps_session_resumable(
    make_pipeline, settings, store: SessionStore, source_refs: SourceRefs
) -> None:
    pipeline = make_pipeline(validation={"error": RuntimeError("gap analysis rejected: quota")})
    orchestrator = WorkflowOrchestrator(pipeline.collaborators, settings, store=store)

    with pytest.raises(StepFailure) as excinfo:
        await orchestrator.run(RunOptions(source_refs=source_refs))

    failure = excinfo.value
    assert failure.step == "validation"
    assert failure.message == "gap analysis rejected: quota"
    assert pipeline.calls == ["prd_analysis", "figma_analysis", "validation"]

    session = store.load(failure.session_id)
    assert len(session.checkpoints) == 2
    assert session.current_step is WorkflowStep.FIGMA_ANALYSIS
    assert session.status is SessionStatus.IN_PROGRESS

    # Fixed collaborator, same session: only the failed step onwards runs.
    pipeline.steps["validation"].error = None
    pipeline.calls.clear()
    summary = await orchestrator.run(RunOptions(resume_id=failure.session_id))

    assert summary.status is SessionStatus.COMPLETED
    assert pipeline.calls == ["validation", "clarification", "tdd_generation"]
    assert len(store.load(failure.session_id).checkpoints) == 5


@pytest.mark.asyncio
async def test_deadline_during_step_lets_step_finish(
    make_pipeline, settings, store: SessionStore, source_refs: SourceRefs
) -> None:
    pipeline = make_pipeline(prd_analysis={"delay": 0.2})
    orchestrator = WorkflowOrchestrator(pipeline.collaborators, settings, store=store)

    # 30ms deadline expires while the first step is still running.
    summary = await orchestrator.run(
        RunOptions(source_refs=source_refs, deadline_minutes=0.0005)
    )

    assert summary.status is SessionStatus.PAUSED
    assert summary.completed_steps == [WorkflowStep.PRD_ANALYSIS]
    assert pipeline.calls == ["prd_analysis"]

    session = store.load(summary.session_id)
    assert session.status is SessionStatus.PAUSED
    assert [cp.step for cp in session.checkpoints] == [WorkflowStep.PRD_ANALYSIS]


@pytest.mark.asyncio
async def test_pause_resume_cycles_never_duplicate_checkpoints(
    make_pipeline, settings, store: SessionStore, source_refs: SourceRefs
) -> None:
    pipeline = make_pipeline(**{name: {"delay": 0.05} for name in ALL_STEPS})
    orchestrator = WorkflowOrchestrator(pipeline.collaborators, settings, store=store)

    summary = await orchestrator.run(RunOptions(source_refs=source_refs, deadline_minutes=0.0001))
    session_id = summary.session_id
    runs = 1
    while summary.status is SessionStatus.PAUSED:
        assert len(store.load(session_id).checkpoints) < 5
        summary = await orchestrator.run(
            RunOptions(resume_id=session_id, deadline_minutes=0.0001)
        )
        runs += 1
        assert runs <= 10

    session = store.load(session_id)
    assert summary.status is SessionStatus.COMPLETED
    assert [cp.step for cp in session.checkpoints] == list(STEP_ORDER)
    assert sorted(pipeline.calls) == sorted(ALL_STEPS)


@pytest.mark.asyncio
async def test_missing_design_source_still_checkpoints(
    orchestrator: WorkflowOrchestrator, pipeline, store: SessionStore
) -> None:
    summary = await orchestrator.run(RunOptions(source_refs=SourceRefs(document="./prd.md")))

    assert summary.status is SessionStatus.COMPLETED
    assert "figma_analysis" not in pipeline.calls
    session = store.load(summary.session_id)
    design = session.checkpoints[1]
    assert design.step is WorkflowStep.FIGMA_ANALYSIS
    assert design.output_refs == ()


@pytest.mark.asyncio
async def test_completed_session_cannot_be_resumed(
    orchestrator: WorkflowOrchestrator, pipeline, source_refs: SourceRefs
) -> None:
    summary = await orchestrator.run(RunOptions(source_refs=source_refs))
    pipeline.calls.clear()

    with pytest.raises(SessionError, match="completed"):
        await orchestrator.run(RunOptions(resume_id=summary.session_id))
    assert pipeline.calls == []


@pytest.mark.asyncio
async def test_unknown_session_cannot_be_resumed(orchestrator: WorkflowOrchestrator) -> None:
    with pytest.raises(SessionError, match="not found"):
        await orchestrator.run(RunOptions(resume_id="sess-1735689600000"))


@pytest.mark.asyncio
async def test_failed_session_requires_reopen(
    make_pipeline, settings, store: SessionStore, source_refs: SourceRefs
) -> None:
    pipeline = make_pipeline(clarification={"error": RuntimeError("no reviewer available")})
    orchestrator = WorkflowOrchestrator(pipeline.collaborators, settings, store=store)

    with pytest.raises(StepFailure) as excinfo:
        await orchestrator.run(RunOptions(source_refs=source_refs))
    session_id = excinfo.value.session_id
    assert store.is_active(session_id)

    failed = orchestrator.fail(session_id, excinfo.value)
    assert failed.status is SessionStatus.FAILED
    assert not store.is_active(session_id)
    report = store.read_error_report(session_id)
    assert report is not None
    assert report.step == "clarification"
    assert "no reviewer available" in report.message

    with pytest.raises(SessionError, match="reopen"):
        await orchestrator.run(RunOptions(resume_id=session_id))

    pipeline.steps["clarification"].error = None
    pipeline.calls.clear()
    orchestrator.reopen(session_id)
    summary = await orchestrator.run(RunOptions(resume_id=session_id))

    assert summary.status is SessionStatus.COMPLETED
    assert pipeline.calls == ["clarification", "tdd_generation"]


def test_reopen_rejects_non_failed_session(
    orchestrator: WorkflowOrchestrator, store: SessionStore, source_refs, settings
) -> None:
    session_id = _paused_after(store, source_refs, settings, 1)

    with pytest.raises(SessionError, match="only failed"):
        orchestrator.reopen(session_id)


def test_run_options_require_source_or_resume() -> None:
    with pytest.raises(PydanticValidationError):
        RunOptions()
    with pytest.raises(PydanticValidationError):
        RunOptions(source_refs=SourceRefs(document="./prd.md"), deadline_minutes=-1)


@pytest.mark.asyncio
async def test_full_ledger_completes_even_when_deadline_expired(
    orchestrator: WorkflowOrchestrator, pipeline, store: SessionStore, source_refs, settings
) -> None:
    # Interrupted after the last checkpoint was saved but before completion.
    session = store.create(source_refs, settings.session_config())
    for step in STEP_ORDER:
        session, _ = append_checkpoint(session, step, [f"{step.value}.out"], 5)
    store.save(session)

    summary = await orchestrator.run(
        RunOptions(resume_id=session.session_id, deadline_minutes=0)
    )

    assert summary.status is SessionStatus.COMPLETED
    assert summary.executed_steps == []
    assert pipeline.calls == []
    assert store.load(session.session_id).status is SessionStatus.COMPLETED
    assert not store.is_active(session.session_id)


@pytest.mark.asyncio
async def test_run_deadline_override_does_not_stick_to_session(
    orchestrator: WorkflowOrchestrator, pipeline, store: SessionStore, source_refs, settings
) -> None:
    paused = await orchestrator.run(RunOptions(source_refs=source_refs, deadline_minutes=0))
    assert paused.status is SessionStatus.PAUSED

    session = store.load(paused.session_id)
    assert session.config.workflow_timeout_minutes == settings.workflow_timeout_minutes

    summary = await orchestrator.run(RunOptions(resume_id=paused.session_id))

    assert summary.status is SessionStatus.COMPLETED
    assert pipeline.calls == ALL_STEPS
