"""
Static site provider.

Serves a directory of static files. The Staticfile manifest is YAML with
an optional `root:` key. Web-server configuration is rendered by the
builder; the plan only records the root directory.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from stackplan.plan import BuildPlan, Phase, StepBuilder
from stackplan.resolver import ResolutionChain

from .common import APP_DIR, BUILD_STEP, PACKAGES_STEP, dig, toolchain_step

if TYPE_CHECKING:
    from stackplan.generate.context import GenerateContext

logger = logging.getLogger(__name__)


class StaticfileProvider:
    """Copies the static root and serves it with a file server."""

    @property
    def name(self) -> str:
        return "staticfile"

    def detect(self, ctx: GenerateContext) -> bool:
        if ctx.env.static_root is not None:
            return True
        return bool(ctx.app.existing(["Staticfile", "public/index.html", "index.html"]))

    def initialize(self, ctx: GenerateContext) -> None:
        ctx.metadata.set("staticRoot", self.root_chain().resolve(ctx))

    def plan(self, ctx: GenerateContext) -> None:
        root = ctx.metadata.get("staticRoot")
        ctx.plan.add_step(Phase.INSTALL, toolchain_step({"caddy": "latest"}))

        build = StepBuilder(BUILD_STEP).depends_on(PACKAGES_STEP).inputs(root).outputs(root)
        if ctx.env.build_cmd:
            build.exec(ctx.env.build_cmd)
        ctx.plan.add_step(Phase.BUILD, build)

        def serve(c: GenerateContext) -> str | None:
            if root not in c.plan.outputs():
                return None
            path = APP_DIR if root == "." else f"{APP_DIR}/{root}"
            return f"caddy file-server --root {path} --listen :${{PORT:-80}}"

        ctx.start_command_default = ResolutionChain("staticfile.start").then("root", serve)

    def cleanse_plan(self, plan: BuildPlan) -> BuildPlan:
        return plan

    def start_command_help(self) -> str:
        return "Set STACKPLAN_STATIC_ROOT to the directory containing index.html."

    def root_chain(self) -> ResolutionChain:
        return (
            ResolutionChain("staticfile.root", default=".")
            .then("env", lambda c: _normalize_root(c.env.static_root))
            .then("Staticfile", _staticfile_root)
            .then("public", lambda c: "public" if c.app.has_file("public/index.html") else None)
        )


def _staticfile_root(ctx: GenerateContext) -> str | None:
    if not ctx.app.has_file("Staticfile"):
        return None
    root = dig(ctx.app.read_yaml("Staticfile"), "root")
    return _normalize_root(root) if isinstance(root, str) else None


def _normalize_root(root: str | None) -> str | None:
    if root is None:
        return None
    return root.strip("/") or "."
