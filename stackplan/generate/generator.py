"""
Build plan generation.

Drives one generation pass end to end:

    SourceTree + EnvironmentOverlay
        -> detect_provider()            exactly one provider
        -> provider.initialize()        metadata
        -> provider.plan()              steps into the assembler
        -> start command resolution     Procfile > override > provider default
        -> assembler.build()            draft plan
        -> provider.cleanse_plan()
        -> cleanse_plan()               validated, immutable BuildPlan

Any provider failure aborts the pass; no partial plan is returned. The
same holds for cancellation: a pass cancelled at any point raises
GenerationCancelled instead of returning.

Usage:
    registry = create_default_registry()
    result = generate_build_plan("/path/to/app", os.environ, registry)
    print(result.plan.to_json())

    # With a deadline, off the event loop
    result = await generate_build_plan_async("/path/to/app", timeout=5.0)
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
import warnings
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from stackplan.config import EnvironmentOverlay
from stackplan.errors import (
    DetectionError,
    GenerationCancelled,
    MissingStartCommandWarning,
)
from stackplan.plan import BuildPlan, cleanse_plan
from stackplan.providers.registry import ProviderRegistry, create_default_registry, detect_provider
from stackplan.resolver import UNSET, ResolutionChain, ResolvedValue
from stackplan.source import CancelToken, SourceTree

from .context import GenerateContext

logger = logging.getLogger(__name__)

PROCESS_MANIFEST = "Procfile"
START_COMMAND_CHAIN = "start_command"

_PROCFILE_ENTRY = re.compile(r"^([A-Za-z0-9_-]+)\s*:\s*(.+?)\s*$")


@dataclass
class GenerateResult:
    """
    Outcome of a successful generation pass.

    `warnings` lists non-fatal problems (e.g. an unset start command)
    the caller should show to the user.
    """

    plan: BuildPlan
    provider: str
    metadata: dict[str, Any] = field(default_factory=dict)
    resolutions: list[ResolvedValue] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def start_command_unset(self) -> bool:
        return self.plan.start_command_unset

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "plan": self.plan.to_dict(),
            "metadata": self.metadata,
            "resolutions": [r.to_dict() for r in self.resolutions],
            "warnings": list(self.warnings),
        }


def procfile_command(ctx: GenerateContext) -> str | None:
    """The `web` process of the Procfile, else its first process."""
    if not ctx.app.has_file(PROCESS_MANIFEST):
        return None
    entries: dict[str, str] = {}
    for line in ctx.app.read_text(PROCESS_MANIFEST).splitlines():
        match = _PROCFILE_ENTRY.match(line.strip())
        if match and not line.lstrip().startswith("#"):
            entries.setdefault(match.group(1), match.group(2))
    if not entries:
        return None
    return entries.get("web", next(iter(entries.values())))


def start_command_chain(ctx: GenerateContext) -> ResolutionChain:
    """Process manifest > explicit override > provider-computed default."""
    chain = (
        ResolutionChain(START_COMMAND_CHAIN)
        .then("process-manifest", procfile_command)
        .then("override", lambda c: c.env.start_cmd)
    )
    if ctx.start_command_default is not None:
        chain.then("provider", ctx.start_command_default)
    return chain


def generate_build_plan(
    source: SourceTree | str | Path,
    env: EnvironmentOverlay | Mapping[str, str] | None = None,
    registry: ProviderRegistry | None = None,
    *,
    cancel: CancelToken | None = None,
) -> GenerateResult:
    """
    Compile a build plan for a project tree.

    Args:
        source: Project root or an existing SourceTree
        env: Environment overlay, or a raw mapping of environment variables
        registry: Provider registry (the default registry when omitted)
        cancel: Cancellation token for a source given as a path

    Returns:
        GenerateResult with the finalized plan

    Raises:
        DetectionError: the tree could not be read
        InvalidPlanError: the provider produced a structurally invalid plan
        UnresolvedValueError: a required chain resolved nothing
        GenerationCancelled: the token fired or the deadline passed
    """
    started = time.perf_counter()
    app = source if isinstance(source, SourceTree) else SourceTree(source, cancel)
    overlay = env if isinstance(env, EnvironmentOverlay) else EnvironmentOverlay.from_mapping(env)
    registry = registry or create_default_registry()

    ctx = GenerateContext(app=app, env=overlay)
    provider = detect_provider(ctx, registry)
    ctx.bind_provider(provider.name)

    try:
        provider.initialize(ctx)
        provider.plan(ctx)

        start = start_command_chain(ctx).evaluate(ctx)
        if start.value is not UNSET:
            ctx.plan.set_start_command(start.value, start.source)

        draft = ctx.plan.build()
        plan = cleanse_plan(provider.cleanse_plan(draft))
    except DetectionError as e:
        if e.provider is None:
            raise DetectionError(e.message, provider=provider.name) from e
        raise
    except OSError as e:
        raise DetectionError(str(e), provider=provider.name) from e

    # Never hand out a plan from a pass that was cancelled midway
    app.cancel.raise_if_cancelled()

    result = GenerateResult(
        plan=plan,
        provider=provider.name,
        metadata=ctx.metadata.to_dict(),
        resolutions=list(ctx.resolutions),
        duration_ms=(time.perf_counter() - started) * 1000,
    )

    if plan.start_command_unset:
        message = f"No start command for provider '{provider.name}'. {provider.start_command_help()}"
        logger.warning(message)
        warnings.warn(MissingStartCommandWarning(message), stacklevel=2)
        result.warnings.append(message)

    logger.info(
        f"Plan generated: provider={provider.name}, "
        f"phases={[p.value for p in plan.phases]}, steps={len(plan.steps())}, "
        f"start={plan.deploy.status.value}, duration={result.duration_ms:.1f}ms"
    )
    return result


async def generate_build_plan_async(
    source: SourceTree | str | Path,
    env: EnvironmentOverlay | Mapping[str, str] | None = None,
    registry: ProviderRegistry | None = None,
    *,
    timeout: float | None = None,
) -> GenerateResult:
    """
    Run generate_build_plan() in a worker thread with a deadline.

    On timeout (or when the awaiting task is cancelled) the pass's token
    is cancelled, so the worker stops at its next tree access and its
    partial state is discarded.

    Raises:
        GenerationCancelled: the deadline passed
    """
    if isinstance(source, SourceTree):
        app = source
    else:
        app = SourceTree(source, CancelToken(deadline_seconds=timeout))

    try:
        return await asyncio.wait_for(
            asyncio.to_thread(generate_build_plan, app, env, registry),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        app.cancel.cancel()
        raise GenerationCancelled(f"Plan generation exceeded {timeout}s deadline") from None
    except asyncio.CancelledError:
        app.cancel.cancel()
        raise
