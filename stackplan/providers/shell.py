"""
Shell script provider.

Runs a start script (start.sh by default) from the project root.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from stackplan.plan import WHOLE_TREE, BuildPlan, Phase, StepBuilder
from stackplan.resolver import ResolutionChain

from .common import BUILD_STEP

if TYPE_CHECKING:
    from stackplan.generate.context import GenerateContext

logger = logging.getLogger(__name__)

DEFAULT_SCRIPT = "start.sh"


class ShellProvider:
    @property
    def name(self) -> str:
        return "shell"

    def detect(self, ctx: GenerateContext) -> bool:
        return ctx.env.shell_script is not None or ctx.app.has_file(DEFAULT_SCRIPT)

    def initialize(self, ctx: GenerateContext) -> None:
        script = self.script_chain().resolve(ctx)
        ctx.metadata.set("shellScript", script)
        if not ctx.app.has_file(script):
            logger.warning(f"Shell script '{script}' does not exist in the project")

    def plan(self, ctx: GenerateContext) -> None:
        script = ctx.metadata.get("shellScript")
        build = (
            StepBuilder(BUILD_STEP)
            .inputs(WHOLE_TREE)
            .exec(ctx.env.build_cmd or f"chmod +x {script}")
            .outputs(WHOLE_TREE)
        )
        ctx.plan.add_step(Phase.BUILD, build)
        ctx.start_command_default = ResolutionChain("shell.start").then(
            "script", lambda c: f"sh {script}" if c.app.has_file(script) else None
        )

    def cleanse_plan(self, plan: BuildPlan) -> BuildPlan:
        return plan

    def start_command_help(self) -> str:
        return f"Add a {DEFAULT_SCRIPT} or set STACKPLAN_SHELL_SCRIPT."

    def script_chain(self) -> ResolutionChain:
        return (
            ResolutionChain("shell.script", default=DEFAULT_SCRIPT)
            .then("env", lambda c: c.env.shell_script)
        )
