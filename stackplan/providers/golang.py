"""
Go provider.

Detects go.mod, go.work or a root main.go. Module downloads are cached
separately from the build cache so editing source keeps the dependency
layer.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from stackplan.plan import WHOLE_TREE, BuildPlan, Phase, StepBuilder
from stackplan.resolver import ResolutionChain

from .common import BUILD_STEP, INSTALL_STEP, PACKAGES_STEP, read_if_exists, toolchain_step, version_chain

if TYPE_CHECKING:
    from stackplan.generate.context import GenerateContext

logger = logging.getLogger(__name__)

DEFAULT_GO_VERSION = "1.23"
BINARY = "out"

_GO_DIRECTIVE = re.compile(r"^go\s+(\d+\.\d+(?:\.\d+)?)\s*$", re.MULTILINE)
_LOCAL_REPLACE = re.compile(r"=>\s*\.{1,2}/")


class GoProvider:
    """Plans `go mod download` + `go build` for Go modules."""

    @property
    def name(self) -> str:
        return "golang"

    def detect(self, ctx: GenerateContext) -> bool:
        return bool(ctx.app.existing(["go.mod", "go.work", "main.go"]))

    def initialize(self, ctx: GenerateContext) -> None:
        go_mod = read_if_exists(ctx, "go.mod")
        ctx.metadata.set("goMod", go_mod is not None)
        ctx.metadata.set_flag("goWorkspace", ctx.app.has_file("go.work"))
        ctx.metadata.set_flag("goLocalReplace", bool(go_mod and _LOCAL_REPLACE.search(go_mod)))

    def plan(self, ctx: GenerateContext) -> None:
        version = self.version_chain().resolve(ctx)
        ctx.metadata.set("goVersion", version)

        ctx.plan.add_step(Phase.INSTALL, toolchain_step({"go": version}))

        previous = PACKAGES_STEP
        if ctx.metadata.get("goMod"):
            full_tree = bool(ctx.metadata.get("goLocalReplace") or ctx.metadata.get("goWorkspace"))
            install = (
                StepBuilder(INSTALL_STEP)
                .depends_on(PACKAGES_STEP)
                .inputs(*ctx.caches.install_inputs(
                    ["go.mod", "go.sum", "go.work", "go.work.sum"], full_tree
                ))
                .exec(ctx.env.install_cmd or "go mod download")
                .cache(ctx.caches.mount("go-mod", "/go/pkg/mod"))
            )
            ctx.plan.add_step(Phase.INSTALL, install)
            previous = INSTALL_STEP

        package = self.package_chain().resolve(ctx)
        build_cmd = ctx.env.build_cmd or f'go build -ldflags="-w -s" -o {BINARY} {package}'
        build = (
            StepBuilder(BUILD_STEP)
            .depends_on(previous)
            .inputs(WHOLE_TREE)
            .env(CGO_ENABLED="0")
            .exec(build_cmd)
            .cache(ctx.caches.mount("go-build", "/root/.cache/go-build"))
            .outputs(BINARY)
        )
        ctx.plan.add_step(Phase.BUILD, build)

        ctx.start_command_default = ResolutionChain("golang.start").then(
            "binary", lambda c: f"./{BINARY}" if BINARY in c.plan.outputs() else None
        )

    def cleanse_plan(self, plan: BuildPlan) -> BuildPlan:
        return plan

    def start_command_help(self) -> str:
        return (
            "No Go binary was built. Make sure the module has a main package "
            "or set STACKPLAN_START_CMD."
        )

    # ==================== Chains ====================

    def version_chain(self) -> ResolutionChain:
        return (
            version_chain("golang", lambda c: c.env.go_version, DEFAULT_GO_VERSION)
            .then("go.mod", lambda c: _go_directive(c, "go.mod"))
            .then("go.work", lambda c: _go_directive(c, "go.work"))
        )

    def package_chain(self) -> ResolutionChain:
        return (
            ResolutionChain("golang.package", default=".")
            .then("env", lambda c: f"./{c.env.workspace}" if c.env.workspace else None)
            .then("main.go", lambda c: "." if c.app.has_file("main.go") else None)
            .then("cmd", _first_cmd_package)
        )


def _go_directive(ctx: GenerateContext, rel: str) -> str | None:
    text = read_if_exists(ctx, rel)
    if text is None:
        return None
    match = _GO_DIRECTIVE.search(text)
    return match.group(1) if match else None


def _first_cmd_package(ctx: GenerateContext) -> str | None:
    mains = ctx.app.find_files("cmd/*/main.go")
    if not mains:
        return None
    return "./" + mains[0].rsplit("/", 1)[0]
