"""
CleansePlan Finalizer.

Runs once after every step has been contributed and turns a draft plan
into the plan handed to the builder:

1. Validate structure (phase order, duplicate ids, unknown and forward
   dependencies, cycles). Any violation raises InvalidPlanError.
2. Drop empty layers.
3. Merge adjacent steps of a phase that share identical env and caches.
4. Mark the deploy phase unset when there is no start command.

cleanse_plan(cleanse_plan(plan)) == cleanse_plan(plan).
"""

from __future__ import annotations

import logging

from stackplan.errors import InvalidPlanError

from .builder import order_steps
from .model import BuildPlan, Layer, StartCommandStatus, Step

logger = logging.getLogger(__name__)


def validate_plan(plan: BuildPlan) -> None:
    """
    Check the structural invariants of a plan.

    Raises:
        InvalidPlanError: on the first violation found
    """
    last_order = -1
    for layer in plan.layers:
        if layer.phase.order <= last_order:
            raise InvalidPlanError(
                f"Phase '{layer.phase.value}' is out of order or repeated"
            )
        last_order = layer.phase.order

    phase_of: dict[str, int] = {}
    for layer in plan.layers:
        for step in layer.steps:
            if step.id in phase_of:
                raise InvalidPlanError(f"Duplicate step id '{step.id}'", step_id=step.id)
            phase_of[step.id] = layer.phase.order

    for layer in plan.layers:
        for step in layer.steps:
            for dep in step.depends_on:
                if dep not in phase_of:
                    raise InvalidPlanError(
                        f"Step '{step.id}' depends on unknown step '{dep}'",
                        step_id=step.id,
                    )
                if phase_of[dep] > layer.phase.order:
                    raise InvalidPlanError(
                        f"Step '{step.id}' ({layer.phase.value}) depends on "
                        f"'{dep}' in a later phase",
                        step_id=step.id,
                    )
        order_steps(layer.steps, layer.phase)


def _mergeable(a: Step, b: Step) -> bool:
    return a.env == b.env and frozenset(a.caches) == frozenset(b.caches)


def _merge(a: Step, b: Step) -> Step:
    return a.model_copy(
        update={
            "commands": a.commands + b.commands,
            "inputs": tuple(dict.fromkeys(a.inputs + b.inputs)),
            "depends_on": tuple(sorted((set(a.depends_on) | set(b.depends_on)) - {a.id, b.id})),
            "outputs": tuple(dict.fromkeys(a.outputs + b.outputs)),
        }
    )


def _merge_adjacent(steps: list[Step], renames: dict[str, str]) -> list[Step]:
    merged: list[Step] = []
    for step in steps:
        if merged and _mergeable(merged[-1], step):
            logger.debug(f"Merging step '{step.id}' into '{merged[-1].id}'")
            renames[step.id] = merged[-1].id
            merged[-1] = _merge(merged[-1], step)
        else:
            merged.append(step)
    return merged


def _rename_deps(step: Step, renames: dict[str, str]) -> Step:
    if not renames or not set(step.depends_on) & renames.keys():
        return step
    deps = {renames.get(dep, dep) for dep in step.depends_on} - {step.id}
    return step.model_copy(update={"depends_on": tuple(sorted(deps))})


def cleanse_plan(plan: BuildPlan) -> BuildPlan:
    """
    Finalize a draft plan.

    Returns:
        A new, validated BuildPlan

    Raises:
        InvalidPlanError: if the plan violates a structural invariant
    """
    validate_plan(plan)

    renames: dict[str, str] = {}
    layers: list[tuple[Layer, list[Step]]] = []
    for layer in plan.layers:
        if not layer.steps:
            continue
        ordered = order_steps(layer.steps, layer.phase)
        layers.append((layer, _merge_adjacent(ordered, renames)))

    final_layers = tuple(
        Layer(phase=layer.phase, steps=tuple(_rename_deps(s, renames) for s in steps))
        for layer, steps in layers
    )

    deploy = plan.deploy
    if deploy.start_command:
        deploy = deploy.model_copy(update={"status": StartCommandStatus.SET})
    else:
        deploy = deploy.model_copy(
            update={
                "start_command": None,
                "start_command_source": None,
                "status": StartCommandStatus.UNSET,
            }
        )

    return BuildPlan(provider=plan.provider, layers=final_layers, deploy=deploy)
