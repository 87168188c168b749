"""
Stackplan - a build-plan compiler for application source trees.

Stackplan inspects a project directory, picks the one provider that
recognizes its ecosystem, and compiles a deterministic, JSON-serializable
build plan that an image builder can execute:

- **Provider Detection**: Fixed-priority providers for Go, Rust, Python,
  Node, static sites and shell scripts, plus a fallback
- **Resolution Chains**: Every setting comes from an ordered list of
  sources (environment overlay, manifests, defaults)
- **Layered Plans**: install, build and deploy phases with explicit
  inputs, namespaced cache mounts and step dependencies
- **Finalization**: Validated, merged plans with a resolved start command

Quick Start:
    >>> import os
    >>> from stackplan import generate_build_plan
    >>>
    >>> result = generate_build_plan("/path/to/app", os.environ)
    >>> print(result.plan.to_json())
"""

__version__ = "0.1.0"
__license__ = "MIT"

from stackplan.config import EnvironmentOverlay
from stackplan.errors import (
    DetectionError,
    GenerationCancelled,
    InvalidPlanError,
    MissingStartCommandWarning,
    StackplanError,
)
from stackplan.generate import (
    GenerateContext,
    GenerateResult,
    generate_build_plan,
    generate_build_plan_async,
)
from stackplan.plan import BuildPlan, Phase, render_plan
from stackplan.providers import ProviderRegistry, create_default_registry
from stackplan.source import CancelToken, SourceTree

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Generation
    "generate_build_plan",
    "generate_build_plan_async",
    "GenerateContext",
    "GenerateResult",
    # Inputs
    "SourceTree",
    "CancelToken",
    "EnvironmentOverlay",
    # Providers
    "ProviderRegistry",
    "create_default_registry",
    # Plan
    "BuildPlan",
    "Phase",
    "render_plan",
    # Errors
    "StackplanError",
    "DetectionError",
    "InvalidPlanError",
    "GenerationCancelled",
    "MissingStartCommandWarning",
]
