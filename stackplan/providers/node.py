"""
Node provider.

Detects package.json and supports npm, pnpm, yarn and bun.

The install step copies only package.json and the lock files unless the
project has install lifecycle hooks (preinstall, install, postinstall,
prepare) or local dependencies (file:, link:, workspace:, workspaces),
in which case the whole tree is needed for `install` to succeed.

Versions from engines.node and the version files are pinned for mise:
exact versions pass through, ranges such as ">=18" or "^20.1" become
their first major version, and aliases such as "lts/*" are ignored.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any

from stackplan.plan import WHOLE_TREE, BuildPlan, Phase, StepBuilder
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

DEFAULT_NODE_VERSION = "22"
PRUNE_STEP = "prune"
NODE_BIN = f"{APP_DIR}/node_modules/.bin"

LIFECYCLE_HOOKS = ("preinstall", "install", "postinstall", "prepare")
LOCAL_PROTOCOLS = ("file:", "link:", "workspace:", "portal:")

INSTALL_MANIFESTS = [
    "package.json",
    "package-lock.json",
    "pnpm-lock.yaml",
    "pnpm-workspace.yaml",
    "yarn.lock",
    "bun.lockb",
    "bun.lock",
    ".npmrc",
    ".yarnrc.yml",
]

_EXACT_VERSION = re.compile(r"^\d+(\.\d+){0,2}$")
_MAJOR = re.compile(r"\d+")

# Lock file -> package manager, in precedence order
_LOCK_FILES = (
    ("pnpm-lock.yaml", "pnpm"),
    ("bun.lockb", "bun"),
    ("bun.lock", "bun"),
    ("yarn.lock", "yarn"),
    ("package-lock.json", "npm"),
)

_CACHES = {
    "npm": "/root/.npm",
    "pnpm": "/root/.local/share/pnpm/store/v3",
    "yarn": "/usr/local/share/.cache/yarn",
    "bun": "/root/.bun/install/cache",
}

_PRUNE = {
    "npm": "npm prune --omit=dev",
    "pnpm": "pnpm prune --prod",
    "yarn": "yarn install --production --frozen-lockfile --ignore-scripts",
    "bun": "rm -rf node_modules && bun install --production",
}

# Dependency -> framework, in precedence order
_FRAMEWORKS = (
    ("next", "next"),
    ("nuxt", "nuxt"),
    ("@remix-run/serve", "remix"),
    ("astro", "astro"),
    ("vite", "vite"),
)

# Framework -> directory its build produces
_FRAMEWORK_OUTPUTS = {
    "next": ".next",
    "nuxt": ".output",
    "remix": "build",
    "astro": "dist",
    "vite": "dist",
}

_STATIC_SERVE = "caddy file-server --root dist --listen :${PORT:-80}"

_FRAMEWORK_STARTS = {
    "next": "npx next start --port ${PORT:-3000}",
    "nuxt": "node .output/server/index.mjs",
    "remix": "npx remix-serve ./build/server/index.js",
    "astro": _STATIC_SERVE,
    "vite": _STATIC_SERVE,
}

_ENTRY_FILES = ("index.js", "server.js", "main.js", "index.mjs")


class NodeProvider:
    """Plans dependency install, build script and optional pruning for Node projects."""

    @property
    def name(self) -> str:
        return "node"

    def detect(self, ctx: GenerateContext) -> bool:
        return ctx.app.has_file("package.json")

    def initialize(self, ctx: GenerateContext) -> None:
        pkg = _package_json(ctx)
        scripts = pkg.get("scripts") or {}

        manager = self.package_manager_chain().resolve(ctx)
        ctx.metadata.set("nodePackageManager", manager)

        framework = self.framework_chain(pkg).resolve(ctx)
        if framework:
            ctx.metadata.set("nodeFramework", framework)

        ctx.metadata.set_flag("nodeBuildScript", "build" in scripts)
        ctx.metadata.set_flag("nodeStartScript", "start" in scripts)
        ctx.metadata.set_flag(
            "nodeLifecycleHooks", any(hook in scripts for hook in LIFECYCLE_HOOKS)
        )
        ctx.metadata.set_flag("nodeLocalDependencies", _has_local_dependencies(pkg))
        ctx.metadata.set_flag("nodeWorkspaces", _has_workspaces(ctx, pkg))

    def plan(self, ctx: GenerateContext) -> None:
        pkg = _package_json(ctx)
        version = self.version_chain().resolve(ctx)
        ctx.metadata.set("nodeVersion", version)
        manager = ctx.metadata.get("nodePackageManager")
        if manager not in _CACHES:
            logger.warning(f"Unsupported Node package manager '{manager}', using npm")
            manager = "npm"
        framework = ctx.metadata.get("nodeFramework")

        tools = {"node": version}
        if manager == "bun":
            tools["bun"] = "latest"
        packages = toolchain_step(tools)
        if manager in ("pnpm", "yarn"):
            packages.exec("corepack enable")
        ctx.plan.add_step(Phase.INSTALL, packages)

        full_tree = (
            ctx.metadata.get("nodeLifecycleHooks")
            or ctx.metadata.get("nodeLocalDependencies")
            or ctx.metadata.get("nodeWorkspaces")
        )
        install = (
            StepBuilder(INSTALL_STEP)
            .depends_on(PACKAGES_STEP)
            .inputs(*ctx.caches.install_inputs(INSTALL_MANIFESTS, bool(full_tree)))
            .env(CI="true")
            .exec(ctx.env.install_cmd or _install_command(ctx, manager))
            .path(NODE_BIN)
            .cache(ctx.caches.mount(manager, _CACHES[manager]))
            .outputs("node_modules")
        )
        ctx.plan.add_step(Phase.INSTALL, install)

        build = (
            StepBuilder(BUILD_STEP)
            .depends_on(INSTALL_STEP)
            .inputs(WHOLE_TREE)
            .env(CI="true")
            .cache(ctx.caches.mount("node-modules", f"{APP_DIR}/node_modules/.cache"))
            .outputs(WHOLE_TREE)
        )
        build_cmd = ctx.env.build_cmd
        if build_cmd is None and ctx.metadata.get("nodeBuildScript"):
            build_cmd = f"{manager} run build"
        if build_cmd:
            build.exec(build_cmd)
            if framework in _FRAMEWORK_OUTPUTS:
                build.outputs(_FRAMEWORK_OUTPUTS[framework])
            if framework == "next":
                build.cache(ctx.caches.mount("next", f"{APP_DIR}/.next/cache"))
        ctx.plan.add_step(Phase.BUILD, build)

        if ctx.env.prune_deps:
            prune = (
                StepBuilder(PRUNE_STEP)
                .depends_on(BUILD_STEP)
                .exec(_PRUNE[manager])
                .outputs("node_modules")
            )
            ctx.plan.add_step(Phase.DEPLOY, prune)

        ctx.plan.add_deploy_path(NODE_BIN)
        ctx.plan.set_deploy_env("NODE_ENV", "production")

        ctx.start_command_default = self.start_chain(pkg, manager)

    def cleanse_plan(self, plan: BuildPlan) -> BuildPlan:
        return plan

    def start_command_help(self) -> str:
        return (
            "No start command was found. Add a 'start' script to package.json, "
            "a 'main' field, an index.js, or set STACKPLAN_START_CMD."
        )

    # ==================== Chains ====================

    def version_chain(self) -> ResolutionChain:
        return (
            version_chain("node", lambda c: c.env.node_version, DEFAULT_NODE_VERSION)
            .then("package.json", _engines_version)
            .then(".nvmrc", lambda c: _version_file(c, ".nvmrc"))
            .then(".node-version", lambda c: _version_file(c, ".node-version"))
        )

    def package_manager_chain(self) -> ResolutionChain:
        chain = (
            ResolutionChain("node.package_manager", default="npm")
            .then("env", lambda c: c.env.package_manager)
            .then("packageManager", _package_manager_field)
        )
        for lock_file, manager in _LOCK_FILES:
            chain.then(lock_file, lambda c, f=lock_file, m=manager: m if c.app.has_file(f) else None)
        return chain

    def framework_chain(self, pkg: dict[str, Any]) -> ResolutionChain:
        deps = _all_dependencies(pkg)
        chain = ResolutionChain("node.framework")
        for dependency, framework in _FRAMEWORKS:
            chain.then(dependency, lambda c, d=dependency, f=framework: f if d in deps else None)
        return chain

    def start_chain(self, pkg: dict[str, Any], manager: str) -> ResolutionChain:
        runner = "bun" if manager == "bun" else "node"

        def start_script(c: GenerateContext) -> str | None:
            return f"{manager} run start" if c.metadata.get("nodeStartScript") else None

        def framework_start(c: GenerateContext) -> str | None:
            framework = c.metadata.get("nodeFramework")
            output = _FRAMEWORK_OUTPUTS.get(framework)
            if output and output in c.plan.outputs():
                return _FRAMEWORK_STARTS[framework]
            return None

        def main_field(c: GenerateContext) -> str | None:
            main = pkg.get("main")
            if isinstance(main, str) and c.app.has_file(main):
                return f"{runner} {main}"
            return None

        def entry_file(c: GenerateContext) -> str | None:
            found = c.app.existing(_ENTRY_FILES)
            for candidate in _ENTRY_FILES:
                if candidate in found:
                    return f"{runner} {candidate}"
            return None

        return (
            ResolutionChain("node.start")
            .then("start script", start_script)
            .then("framework", framework_start)
            .then("main", main_field)
            .then("entry file", entry_file)
        )


def _package_json(ctx: GenerateContext) -> dict[str, Any]:
    pkg = ctx.app.read_json("package.json")
    return pkg if isinstance(pkg, dict) else {}


def _all_dependencies(pkg: dict[str, Any]) -> dict[str, Any]:
    deps: dict[str, Any] = {}
    for table in ("dependencies", "devDependencies", "optionalDependencies"):
        deps.update(pkg.get(table) or {})
    return deps


def _has_local_dependencies(pkg: dict[str, Any]) -> bool:
    return any(
        isinstance(spec, str) and spec.startswith(LOCAL_PROTOCOLS)
        for spec in _all_dependencies(pkg).values()
    )


def _has_workspaces(ctx: GenerateContext, pkg: dict[str, Any]) -> bool:
    if pkg.get("workspaces"):
        return True
    if ctx.app.has_file("pnpm-workspace.yaml"):
        workspace = ctx.app.read_yaml("pnpm-workspace.yaml") or {}
        return bool(dig(workspace, "packages"))
    return False


def _package_manager_field(ctx: GenerateContext) -> str | None:
    field = _package_json(ctx).get("packageManager")
    if not isinstance(field, str) or not field:
        return None
    return field.split("@", 1)[0]


def _engines_version(ctx: GenerateContext) -> str | None:
    return _node_version(dig(_package_json(ctx), "engines", "node"))


def _version_file(ctx: GenerateContext, rel: str) -> str | None:
    text = read_if_exists(ctx, rel)
    return _node_version(first_line(text)) if text else None


def _node_version(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    version = value.strip().removeprefix("v")
    if _EXACT_VERSION.match(version):
        return version
    match = _MAJOR.search(version)
    if match is None:
        logger.debug(f"[node] ignoring version alias '{value}'")
        return None
    return match.group(1)


def _install_command(ctx: GenerateContext, manager: str) -> str:
    if manager == "pnpm":
        return "pnpm install --frozen-lockfile" if ctx.app.has_file("pnpm-lock.yaml") else "pnpm install"
    if manager == "yarn":
        if not ctx.app.has_file("yarn.lock"):
            return "yarn install"
        if ctx.app.has_file(".yarnrc.yml"):
            return "yarn install --immutable"
        return "yarn install --frozen-lockfile"
    if manager == "bun":
        locked = ctx.app.has_file("bun.lockb") or ctx.app.has_file("bun.lock")
        return "bun install --frozen-lockfile" if locked else "bun install"
    return "npm ci" if ctx.app.has_file("package-lock.json") else "npm install"
