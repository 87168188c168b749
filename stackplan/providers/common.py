"""
Helpers shared by the language providers.

These are plain functions, not a base class: each provider composes
what it needs.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Callable

from stackplan.plan import StepBuilder
from stackplan.resolver import ResolutionChain

if TYPE_CHECKING:
    from stackplan.generate.context import GenerateContext


PACKAGES_STEP = "packages"
INSTALL_STEP = "install"
BUILD_STEP = "build"

APP_DIR = "/app"

# Reads one overlay option: (context) -> value or None
Override = Callable[["GenerateContext"], Any]


def toolchain_step(tools: Mapping[str, str]) -> StepBuilder:
    """
    Step declaring the toolchain versions the builder must provide.

    Installing them is up to the builder; the plan only records the
    requested tool and version.
    """
    step = StepBuilder(PACKAGES_STEP)
    for tool, version in tools.items():
        step.exec(f"mise use --global {tool}@{version}", label=f"{tool}@{version}")
    return step


def version_chain(
    name: str,
    override: Override,
    default: str,
) -> ResolutionChain:
    """Start a version chain whose first source is the environment overlay."""
    return ResolutionChain(f"{name}.version", default=default).then("env", override)


def first_line(text: str) -> str | None:
    """First non-empty, non-comment line of a text file."""
    for line in text.splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            return line
    return None


def read_if_exists(ctx: GenerateContext, rel: str) -> str | None:
    if not ctx.app.has_file(rel):
        return None
    return ctx.app.read_text(rel)


def dig(data: Any, *keys: str) -> Any:
    """Walk nested mappings, returning None at the first missing key."""
    for key in keys:
        if not isinstance(data, Mapping):
            return None
        data = data.get(key)
    return data
