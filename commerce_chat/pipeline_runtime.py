from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Generic, List, Optional, TypeVar

logger = logging.getLogger("commerce_chat.pipeline")

C = TypeVar("C")


@dataclass
class PipelineStep(Generic[C]):
    """Step descriptor for the turn pipeline runner."""
    name: str
    fn: Callable[[C], None]
    skip_if: Optional[Callable[[C], bool]] = None
    always_run: bool = False


class PipelineRunner(Generic[C]):
    """Runs an ordered list of steps over one mutable context."""

    def __init__(self, steps: List[PipelineStep[C]]) -> None:
        """Purpose: Initialize the runner with an ordered list of steps.
        Inputs/Outputs: Input is a list of PipelineStep; no return value.
        Side Effects / State: Stores the step list for later execution.
        Dependencies: None beyond PipelineStep definitions.
        Failure Modes: None; assumes valid callables in steps.
        If Removed: The orchestrator's turn stages are never executed.
        Testing Notes: Provide a minimal step list and ensure order is preserved.
        """
        # Store the pipeline steps for deterministic execution.
        self._steps = list(steps)

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self._steps]

    def run(self, context: C) -> C:
        """Purpose: Execute steps in order with optional skip/always-run rules.
        Inputs/Outputs: Input is a mutable context object; returns the same object.
        Side Effects / State: Invokes step functions that may mutate context.
        Dependencies: Depends on PipelineStep.fn and PipelineStep.skip_if semantics.
        Failure Modes: Exceptions in step functions propagate to the caller.
        If Removed: A turn cannot progress past session resolution.
        Testing Notes: Verify skip_if and always_run logic with simple steps.
        """
        # Iterate steps and honor always_run/skip_if guards.
        for step in self._steps:
            if not step.always_run and step.skip_if and step.skip_if(context):
                logger.debug("step=%s status=skipped", step.name)
                continue
            started = time.perf_counter()
            step.fn(context)
            logger.debug("step=%s status=success elapsed_ms=%.1f", step.name, (time.perf_counter() - started) * 1000)
        return context
