"""
Generation pass: context, metadata and the plan generator.
"""

from .context import GenerateContext, Metadata
from .generator import (
    GenerateResult,
    generate_build_plan,
    generate_build_plan_async,
    procfile_command,
    start_command_chain,
)

__all__ = [
    "GenerateContext",
    "Metadata",
    "GenerateResult",
    "generate_build_plan",
    "generate_build_plan_async",
    "procfile_command",
    "start_command_chain",
]
