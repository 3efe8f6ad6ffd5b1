import asyncio
from dataclasses import dataclass, field
from typing import List

from salesdesk.step_runner import PipelineStep, StepRunner


@dataclass
class Ctx:
    done: bool = False
    steps: List[str] = field(default_factory=list)
    seen: List[str] = field(default_factory=list)


def _record(name, finish=False):
    async def step(ctx):
        ctx.seen.append(name)
        if finish:
            ctx.done = True

    return step


def test_done_skips_later_steps_but_not_always_run():
    runner = StepRunner(
        [
            PipelineStep("first", _record("first", finish=True)),
            PipelineStep("second", _record("second")),
            PipelineStep("audit", _record("audit"), always_run=True),
        ]
    )
    ctx = Ctx()
    asyncio.run(runner.run(ctx))
    assert ctx.seen == ["first", "audit"]
    assert ctx.steps == ["first", "audit"]


def test_always_run_ignores_skip_if():
    runner = StepRunner(
        [
            PipelineStep("optional", _record("optional"), skip_if=lambda ctx: True),
            PipelineStep("audit", _record("audit"), skip_if=lambda ctx: True, always_run=True),
        ]
    )
    ctx = Ctx()
    asyncio.run(runner.run(ctx))
    assert ctx.steps == ["audit"]
    assert runner.step_names == ["optional", "audit"]
