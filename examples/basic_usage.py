#!/usr/bin/env python3
"""Run the discovery workflow with placeholder step collaborators.

This demonstrates wiring the orchestrator directly:

* load settings from `.env`
* start a new session (or resume one with `--resume`)
* write one placeholder file per step into the session's output directories

A run that hits its deadline prints the session id to resume with.
"""

from __future__ import annotations

import argparse
import asyncio
from typing import Sequence

from discovery_orchestrator import RunOptions, WorkflowOrchestrator, WorkflowSettings
from discovery_orchestrator.core.logging import configure_logging
from discovery_orchestrator.errors import SessionError, StepFailure, is_recoverable
from discovery_orchestrator.state.session import Session, SessionStatus, SourceRefs, WorkflowStep
from discovery_orchestrator.state.store import SessionStore
from discovery_orchestrator.workflow.steps import StepCollaborators, StepResult


class PlaceholderStep:
    """Writes a single file into the step's output directory."""

    def __init__(self, store: SessionStore, step: WorkflowStep, delay: float) -> None:
        self._store = store
        self._step = step
        self._delay = delay

    async def __call__(self, session: Session) -> StepResult:
        await asyncio.sleep(self._delay)
        path = self._store.output_dir(session.session_id, self._step) / "output.txt"
        path.write_text(f"{self._step.value} for {session.source_refs.document}\n", encoding="utf-8")
        return StepResult(output_refs=[str(path)], provider_used="placeholder", estimated_cost=0.0)


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the discovery workflow (example).")
    parser.add_argument("--document", default="./docs/prd.md", help="Requirements document reference")
    parser.add_argument("--design", default=None, help="Design reference (optional)")
    parser.add_argument("--resume", default=None, help="Session id to resume")
    parser.add_argument("--deadline-minutes", type=float, default=None)
    parser.add_argument("--step-delay", type=float, default=0.1, help="Seconds each step sleeps")
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> int:
    settings = WorkflowSettings()
    configure_logging(settings.log_level)

    store = SessionStore(settings.session_storage_path)
    steps = {
        name: PlaceholderStep(store, step, args.step_delay)
        for name, step in (
            ("prd_analysis", WorkflowStep.PRD_ANALYSIS),
            ("figma_analysis", WorkflowStep.FIGMA_ANALYSIS),
            ("validation", WorkflowStep.VALIDATION),
            ("clarification", WorkflowStep.CLARIFICATION),
            ("tdd_generation", WorkflowStep.TDD_GENERATION),
        )
    }
    orchestrator = WorkflowOrchestrator(StepCollaborators.build(**steps), settings, store=store)

    if args.resume:
        options = RunOptions(resume_id=args.resume, deadline_minutes=args.deadline_minutes)
    else:
        options = RunOptions(
            source_refs=SourceRefs(document=args.document, design=args.design),
            deadline_minutes=args.deadline_minutes,
        )

    try:
        summary = await orchestrator.run(options)
    except StepFailure as exc:
        print(str(exc))
        if is_recoverable(exc):
            print("The failure looks transient; retrying the same session may succeed.")
        print(f"Resume with: --resume {exc.session_id}")
        return 1
    except SessionError as exc:
        print(str(exc))
        return 1

    print(f"Session {summary.session_id}: {summary.status.value} in {summary.elapsed_ms} ms")
    print(f"Completed steps: {', '.join(s.value for s in summary.completed_steps) or '-'}")
    if summary.status is SessionStatus.PAUSED:
        print(f"Resume with: --resume {summary.session_id}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    return asyncio.run(_run(_parse_args(argv)))


if __name__ == "__main__":
    raise SystemExit(main())
