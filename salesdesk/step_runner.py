from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Protocol

logger = logging.getLogger("salesdesk.pipeline")


class StepContext(Protocol):
    """Anything with a `done` flag and a list of executed step names."""
    done: bool
    steps: List[str]


@dataclass
class PipelineStep:
    """Step descriptor for the message pipeline runner."""
    name: str
    fn: Callable[[StepContext], Awaitable[None]]
    skip_if: Optional[Callable[[StepContext], bool]] = None
    always_run: bool = False


class StepRunner:
    """Ordered async step runner that stops once a step marks the context done."""

    def __init__(self, steps: List[PipelineStep]) -> None:
        self._steps = steps

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self._steps]

    async def run(self, context: StepContext) -> None:
        """Purpose: Execute steps in order with skip, always-run, and early-exit rules.
        Inputs/Outputs: Input is a mutable context object; no return value.
        Side Effects / State: Invokes step coroutines that mutate context; appends each
            executed step name to context.steps.
        Dependencies: Depends on PipelineStep.fn and PipelineStep.skip_if semantics.
        Failure Modes: Exceptions in step functions propagate to the caller.
        If Removed: Inbound messages are never processed.
        Testing Notes: A step that sets done=True prevents later non-always_run steps.
        """
        # Run steps in order, honoring done, skip_if, and always_run.
        for step in self._steps:
            if context.done and not step.always_run:
                continue
            if not step.always_run and step.skip_if and step.skip_if(context):
                continue
            await step.fn(context)
            context.steps.append(step.name)
            logger.debug("step=%s done=%s", step.name, context.done)
