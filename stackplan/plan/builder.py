"""
Build Plan Assembler.

Providers contribute steps phase by phase; the assembler keeps them
ordered and rejects structural mistakes as early as it can.

Example:
    assembler = PlanAssembler("node")
    assembler.add_step(
        Phase.INSTALL,
        StepBuilder("install")
        .inputs("package.json", "package-lock.json")
        .exec("npm ci")
        .cache(caches.mount("npm", "/root/.npm")),
    )
    assembler.add_step(
        Phase.BUILD,
        StepBuilder("build").depends_on("install").inputs(".").exec("npm run build"),
    )
    draft = assembler.build()

Rules:
    - Step ids are unique across the plan.
    - Dependencies may only point to the same or an earlier phase.
    - Inside a phase, steps are reordered so dependencies come first;
      among independent steps the insertion order is kept.
    - Steps of one phase run on a shared filesystem, so inputs already
      materialized by an earlier step are not copied again.
"""

from __future__ import annotations

import heapq
import logging
from collections.abc import Mapping, Sequence

from stackplan.errors import InvalidPlanError

from .model import (
    PHASE_ORDER,
    WHOLE_TREE,
    BuildPlan,
    CacheMount,
    Command,
    DeployConfig,
    Layer,
    Phase,
    StartCommandStatus,
    Step,
)

logger = logging.getLogger(__name__)


class StepBuilder:
    """
    Fluent builder for a single Step.

    Example:
        step = (
            StepBuilder("build")
            .depends_on("install")
            .inputs(".")
            .exec("go build -o out")
            .build()
        )
    """

    def __init__(self, step_id: str):
        if not step_id:
            raise ValueError("Step id must not be empty")
        self.id = step_id
        self._commands: list[Command] = []
        self._inputs: list[str] = []
        self._caches: list[CacheMount] = []
        self._env: dict[str, str] = {}
        self._depends_on: set[str] = set()
        self._outputs: list[str] = []

    def exec(self, cmd: str, label: str | None = None) -> StepBuilder:
        self._commands.append(Command.exec(cmd, label))
        return self

    def path(self, directory: str) -> StepBuilder:
        self._commands.append(Command.path(directory))
        return self

    def copy(self, src: str, dest: str) -> StepBuilder:
        self._commands.append(Command.copy(src, dest))
        return self

    def inputs(self, *globs: str) -> StepBuilder:
        self._inputs.extend(globs)
        return self

    def cache(self, *mounts: CacheMount | None) -> StepBuilder:
        """Attach cache mounts; None entries (disabled caches) are skipped."""
        for mount in mounts:
            if mount is not None and mount.id not in {c.id for c in self._caches}:
                self._caches.append(mount)
        return self

    def env(self, values: Mapping[str, str] | None = None, **kwargs: str) -> StepBuilder:
        self._env.update(values or {})
        self._env.update(kwargs)
        return self

    def depends_on(self, *step_ids: str) -> StepBuilder:
        self._depends_on.update(step_ids)
        return self

    def outputs(self, *globs: str) -> StepBuilder:
        self._outputs.extend(globs)
        return self

    def build(self) -> Step:
        return Step(
            id=self.id,
            commands=tuple(self._commands),
            inputs=tuple(dict.fromkeys(self._inputs)),
            caches=tuple(self._caches),
            env=self._env,
            depends_on=tuple(self._depends_on),
            outputs=tuple(dict.fromkeys(self._outputs)),
        )


def order_steps(steps: Sequence[Step], phase: Phase | None = None) -> list[Step]:
    """
    Stable topological order of steps within one phase.

    Dependencies on steps outside `steps` are ignored here (they belong
    to earlier phases). Raises InvalidPlanError on a cycle.
    """
    position = {step.id: i for i, step in enumerate(steps)}
    pending = {
        step.id: {dep for dep in step.depends_on if dep in position} for step in steps
    }
    dependents: dict[str, list[str]] = {step.id: [] for step in steps}
    for step_id, deps in pending.items():
        for dep in deps:
            dependents[dep].append(step_id)

    ready = [position[sid] for sid, deps in pending.items() if not deps]
    heapq.heapify(ready)
    ordered: list[Step] = []
    while ready:
        step = steps[heapq.heappop(ready)]
        ordered.append(step)
        for child in dependents[step.id]:
            pending[child].discard(step.id)
            if not pending[child]:
                heapq.heappush(ready, position[child])

    if len(ordered) != len(steps):
        stuck = sorted(sid for sid, deps in pending.items() if deps)
        where = f" in phase '{phase.value}'" if phase else ""
        raise InvalidPlanError(
            f"Dependency cycle{where} between steps: {', '.join(stuck)}",
            step_id=stuck[0],
        )
    return ordered


def dedup_inputs(steps: Sequence[Step]) -> list[Step]:
    """Drop inputs that earlier steps of the same phase already materialized."""
    result: list[Step] = []
    materialized: set[str] = set()
    for step in steps:
        if step.inputs and materialized:
            if WHOLE_TREE in materialized:
                kept: tuple[str, ...] = ()
            else:
                kept = tuple(g for g in step.inputs if g not in materialized)
            if kept != step.inputs:
                logger.debug(
                    f"Step '{step.id}' reuses materialized inputs: "
                    f"{sorted(set(step.inputs) - set(kept))}"
                )
                step = step.model_copy(update={"inputs": kept})
        materialized.update(step.inputs)
        result.append(step)
    return result


class PlanAssembler:
    """
    Accumulates steps into per-phase layers and builds a draft BuildPlan.

    The draft still goes through cleanse_plan() before it is handed out.
    """

    def __init__(self, provider: str):
        self.provider = provider
        self._layers: dict[Phase, list[Step]] = {phase: [] for phase in PHASE_ORDER}
        self._phase_of: dict[str, Phase] = {}
        self._deploy_env: dict[str, str] = {}
        self._deploy_paths: list[str] = []
        self._start_command: str | None = None
        self._start_command_source: str | None = None

    # ==================== Steps ====================

    def add_step(self, phase: Phase, step: Step | StepBuilder) -> Step:
        """
        Append a step to a phase.

        Raises:
            InvalidPlanError: duplicate id, or a dependency pointing to a
                later phase (in either direction of insertion)
        """
        if isinstance(step, StepBuilder):
            step = step.build()
        phase = Phase(phase)

        if step.id in self._phase_of:
            raise InvalidPlanError(f"Duplicate step id '{step.id}'", step_id=step.id)

        for dep in step.depends_on:
            dep_phase = self._phase_of.get(dep)
            if dep_phase is not None and dep_phase.order > phase.order:
                raise InvalidPlanError(
                    f"Step '{step.id}' ({phase.value}) depends on '{dep}' "
                    f"in later phase '{dep_phase.value}'",
                    step_id=step.id,
                )

        for earlier in PHASE_ORDER[: phase.order]:
            for other in self._layers[earlier]:
                if step.id in other.depends_on:
                    raise InvalidPlanError(
                        f"Step '{other.id}' ({earlier.value}) depends on '{step.id}' "
                        f"in later phase '{phase.value}'",
                        step_id=other.id,
                    )

        self._layers[phase].append(step)
        self._phase_of[step.id] = phase
        logger.debug(f"Added step '{step.id}' to {phase.value} (deps={list(step.depends_on)})")
        return step

    def has_step(self, step_id: str) -> bool:
        return step_id in self._phase_of

    def phase_of(self, step_id: str) -> Phase | None:
        return self._phase_of.get(step_id)

    def steps(self, phase: Phase) -> list[Step]:
        return list(self._layers[Phase(phase)])

    def outputs(self) -> list[str]:
        """Paths produced by the steps added so far, in insertion order."""
        produced: list[str] = []
        for phase in PHASE_ORDER:
            for step in self._layers[phase]:
                produced.extend(step.outputs)
        return list(dict.fromkeys(produced))

    # ==================== Deploy ====================

    def set_deploy_env(self, key: str, value: str) -> None:
        self._deploy_env[key] = value

    def add_deploy_path(self, path: str) -> None:
        if path not in self._deploy_paths:
            self._deploy_paths.append(path)

    def set_start_command(self, command: str | None, source: str | None = None) -> None:
        self._start_command = command
        self._start_command_source = source if command is not None else None

    # ==================== Build ====================

    def build(self) -> BuildPlan:
        """
        Produce the draft plan.

        Raises:
            InvalidPlanError: unknown dependency or dependency cycle
        """
        for phase in PHASE_ORDER:
            for step in self._layers[phase]:
                for dep in step.depends_on:
                    if dep not in self._phase_of:
                        raise InvalidPlanError(
                            f"Step '{step.id}' depends on unknown step '{dep}'",
                            step_id=step.id,
                        )

        layers = []
        for phase in PHASE_ORDER:
            ordered = order_steps(self._layers[phase], phase)
            layers.append(Layer(phase=phase, steps=tuple(dedup_inputs(ordered))))

        status = StartCommandStatus.SET if self._start_command else StartCommandStatus.UNSET
        deploy = DeployConfig(
            start_command=self._start_command or None,
            start_command_source=self._start_command_source if self._start_command else None,
            status=status,
            env=self._deploy_env,
            paths=tuple(self._deploy_paths),
            inputs=tuple(self.outputs()),
        )
        return BuildPlan(provider=self.provider, layers=tuple(layers), deploy=deploy)

    def __repr__(self) -> str:
        counts = {phase.value: len(steps) for phase, steps in self._layers.items()}
        return f"PlanAssembler(provider='{self.provider}', steps={counts})"
