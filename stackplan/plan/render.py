"""
Plan inspection output.

Renders a BuildPlan as indented text for debugging, in the spirit of a
`show-plan` command. The JSON form is BuildPlan.to_json().
"""

from __future__ import annotations

from .model import BuildPlan, StartCommandStatus, Step


def _render_step(step: Step) -> list[str]:
    lines = [f"  - {step.id}"]
    if step.depends_on:
        lines.append(f"      after: {', '.join(step.depends_on)}")
    if step.inputs:
        lines.append(f"      inputs: {', '.join(step.inputs)}")
    for cache in step.caches:
        lines.append(f"      cache: {cache.id} -> {cache.path} ({cache.sharing.value})")
    for key, value in step.env.items():
        lines.append(f"      env: {key}={value}")
    for command in step.commands:
        lines.append(f"      {command.display()}")
    if step.outputs:
        lines.append(f"      outputs: {', '.join(step.outputs)}")
    return lines


def render_plan(plan: BuildPlan) -> str:
    """Return a human-readable rendering of the plan."""
    lines = [f"provider: {plan.provider}"]
    for layer in plan.layers:
        lines.append(f"{layer.phase.value}:")
        for step in layer.steps:
            lines.extend(_render_step(step))

    deploy = plan.deploy
    lines.append("start:")
    if deploy.status == StartCommandStatus.UNSET:
        lines.append("  (unset) no start command was found")
    else:
        lines.append(f"  $ {deploy.start_command}  [{deploy.start_command_source}]")
    for path in deploy.paths:
        lines.append(f"  PATH += {path}")
    for key, value in deploy.env.items():
        lines.append(f"  env: {key}={value}")
    return "\n".join(lines) + "\n"
