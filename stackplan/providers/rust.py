"""
Rust provider.

Detects Cargo.toml. Registry and git caches are shared; the target
directory cache is locked because cargo does not tolerate concurrent
writers.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from stackplan.plan import WHOLE_TREE, BuildPlan, CacheSharing, Phase, StepBuilder
from stackplan.resolver import ResolutionChain

from .common import (
    APP_DIR,
    BUILD_STEP,
    INSTALL_STEP,
    PACKAGES_STEP,
    dig,
    first_line,
    read_if_exists,
    toolchain_step,
    version_chain,
)

if TYPE_CHECKING:
    from stackplan.generate.context import GenerateContext

logger = logging.getLogger(__name__)

DEFAULT_RUST_VERSION = "1.85"
BIN_DIR = "bin"

_DEPENDENCY_TABLES = ("dependencies", "dev-dependencies", "build-dependencies")


class RustProvider:
    """Plans `cargo fetch` + `cargo build --release`."""

    @property
    def name(self) -> str:
        return "rust"

    def detect(self, ctx: GenerateContext) -> bool:
        return ctx.app.has_file("Cargo.toml")

    def initialize(self, ctx: GenerateContext) -> None:
        cargo = ctx.app.read_toml("Cargo.toml")
        ctx.metadata.set_flag("rustWorkspace", "workspace" in cargo)
        ctx.metadata.set_flag("rustPathDependencies", _has_path_dependencies(cargo))
        name = dig(cargo, "package", "name")
        if isinstance(name, str):
            ctx.metadata.set("rustPackage", name)

    def plan(self, ctx: GenerateContext) -> None:
        version = self.version_chain().resolve(ctx)
        ctx.metadata.set("rustVersion", version)

        ctx.plan.add_step(Phase.INSTALL, toolchain_step({"rust": version}))

        full_tree = bool(
            ctx.metadata.get("rustWorkspace") or ctx.metadata.get("rustPathDependencies")
        )
        install = (
            StepBuilder(INSTALL_STEP)
            .depends_on(PACKAGES_STEP)
            .inputs(*ctx.caches.install_inputs(["Cargo.toml", "Cargo.lock"], full_tree))
            .exec(ctx.env.install_cmd or "cargo fetch")
            .cache(
                ctx.caches.mount("registry", "/root/.cargo/registry"),
                ctx.caches.mount("git", "/root/.cargo/git"),
            )
        )
        ctx.plan.add_step(Phase.INSTALL, install)

        binary = self.binary_chain().resolve(ctx)
        build = (
            StepBuilder(BUILD_STEP)
            .depends_on(INSTALL_STEP)
            .inputs(WHOLE_TREE)
            .cache(
                ctx.caches.mount("registry", "/root/.cargo/registry"),
                ctx.caches.mount("target", f"{APP_DIR}/target", CacheSharing.LOCKED),
            )
        )
        if ctx.env.build_cmd:
            build.exec(ctx.env.build_cmd)
        else:
            build.exec("cargo build --release")
            if binary:
                build.exec(f"mkdir -p {BIN_DIR} && cp target/release/{binary} {BIN_DIR}/")
                build.outputs(f"{BIN_DIR}/{binary}")
        ctx.plan.add_step(Phase.BUILD, build)

        def start_from_binary(c: GenerateContext) -> str | None:
            if binary and f"{BIN_DIR}/{binary}" in c.plan.outputs():
                return f"./{BIN_DIR}/{binary}"
            return None

        ctx.start_command_default = ResolutionChain("rust.start").then("binary", start_from_binary)

    def cleanse_plan(self, plan: BuildPlan) -> BuildPlan:
        return plan

    def start_command_help(self) -> str:
        return (
            "No binary target was found in Cargo.toml. Add a [package] name or "
            "[[bin]] entry, or set STACKPLAN_START_CMD."
        )

    # ==================== Chains ====================

    def version_chain(self) -> ResolutionChain:
        return (
            version_chain("rust", lambda c: c.env.rust_version, DEFAULT_RUST_VERSION)
            .then("rust-toolchain.toml", _toolchain_toml_channel)
            .then("rust-toolchain", _toolchain_file)
            .then("Cargo.toml", _cargo_rust_version)
        )

    def binary_chain(self) -> ResolutionChain:
        return (
            ResolutionChain("rust.binary")
            .then("env", lambda c: c.env.workspace)
            .then("bin", _first_bin_target)
            .then("package", lambda c: c.metadata.get("rustPackage"))
        )


def _has_path_dependencies(cargo: dict[str, Any]) -> bool:
    for table in _DEPENDENCY_TABLES:
        deps = cargo.get(table) or {}
        for spec in deps.values():
            if isinstance(spec, dict) and "path" in spec:
                return True
    return False


def _toolchain_toml_channel(ctx: GenerateContext) -> str | None:
    if not ctx.app.has_file("rust-toolchain.toml"):
        return None
    channel = dig(ctx.app.read_toml("rust-toolchain.toml"), "toolchain", "channel")
    return channel if isinstance(channel, str) else None


def _cargo_rust_version(ctx: GenerateContext) -> str | None:
    """package.rust-version, following `rust-version.workspace = true` to the workspace table."""
    cargo = ctx.app.read_toml("Cargo.toml")
    version = dig(cargo, "package", "rust-version")
    if isinstance(version, dict) and version.get("workspace") is True:
        version = dig(cargo, "workspace", "package", "rust-version")
    return version if isinstance(version, str) else None


def _toolchain_file(ctx: GenerateContext) -> str | None:
    text = read_if_exists(ctx, "rust-toolchain")
    return first_line(text) if text else None


def _first_bin_target(ctx: GenerateContext) -> str | None:
    bins = ctx.app.read_toml("Cargo.toml").get("bin") or []
    for target in bins:
        if isinstance(target, dict) and isinstance(target.get("name"), str):
            return target["name"]
    return None
