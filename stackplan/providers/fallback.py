"""
Fallback provider.

Always matches, so provider selection is total. It copies the tree into
the image and leaves the start command to the Procfile or the
STACKPLAN_START_CMD override.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from stackplan.plan import WHOLE_TREE, BuildPlan, Phase, StepBuilder

from .common import BUILD_STEP

if TYPE_CHECKING:
    from stackplan.generate.context import GenerateContext


class FallbackProvider:
    @property
    def name(self) -> str:
        return "fallback"

    def detect(self, ctx: GenerateContext) -> bool:
        return True

    def initialize(self, ctx: GenerateContext) -> None:
        pass

    def plan(self, ctx: GenerateContext) -> None:
        build = StepBuilder(BUILD_STEP).inputs(WHOLE_TREE).outputs(WHOLE_TREE)
        if ctx.env.install_cmd:
            build.exec(ctx.env.install_cmd)
        if ctx.env.build_cmd:
            build.exec(ctx.env.build_cmd)
        ctx.plan.add_step(Phase.BUILD, build)

    def cleanse_plan(self, plan: BuildPlan) -> BuildPlan:
        return plan

    def start_command_help(self) -> str:
        return (
            "The project type was not recognized. Add a Procfile with a 'web:' "
            "entry or set STACKPLAN_START_CMD."
        )
