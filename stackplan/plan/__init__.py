"""
Build plan data model, assembler, cache planning and finalization.
"""

from .builder import PlanAssembler, StepBuilder, dedup_inputs, order_steps
from .cache import CacheLayerPlanner
from .cleanse import cleanse_plan, validate_plan
from .model import (
    PHASE_ORDER,
    WHOLE_TREE,
    BuildPlan,
    CacheMount,
    CacheSharing,
    Command,
    CommandKind,
    DeployConfig,
    Layer,
    Phase,
    StartCommandStatus,
    Step,
)
from .render import render_plan

__all__ = [
    # Model
    "BuildPlan",
    "Layer",
    "Step",
    "Command",
    "CommandKind",
    "CacheMount",
    "CacheSharing",
    "DeployConfig",
    "Phase",
    "PHASE_ORDER",
    "StartCommandStatus",
    "WHOLE_TREE",
    # Assembly
    "PlanAssembler",
    "StepBuilder",
    "order_steps",
    "dedup_inputs",
    # Caches
    "CacheLayerPlanner",
    # Finalization
    "cleanse_plan",
    "validate_plan",
    # Rendering
    "render_plan",
]
