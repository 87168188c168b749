"""
Generate Context for Stackplan.

The context carries the state of one generation pass: the read-only
project tree, the typed environment overlay, the metadata collected by
the selected provider, and the plan being assembled.

It is created per invocation, written by one thread only, and dropped
once the finished plan has been handed out.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Union

from stackplan.config import EnvironmentOverlay
from stackplan.errors import MetadataConflictError
from stackplan.plan import CacheLayerPlanner, PlanAssembler
from stackplan.resolver import ResolutionChain, ResolvedValue
from stackplan.source import SourceTree

logger = logging.getLogger(__name__)

Scalar = Union[str, int, float, bool]


class Metadata:
    """
    Facts detected during a pass (framework, package manager, flags).

    Each key is written once: writing the same value again is a no-op,
    writing a different value raises MetadataConflictError.
    """

    def __init__(self) -> None:
        self._values: dict[str, Scalar] = {}

    def set(self, key: str, value: Scalar) -> None:
        if not isinstance(value, (str, int, float, bool)):
            raise TypeError(f"Metadata value for '{key}' must be a scalar, got {type(value).__name__}")
        if key in self._values:
            existing = self._values[key]
            if existing == value and type(existing) is type(value):
                return
            raise MetadataConflictError(key, existing, value)
        self._values[key] = value
        logger.debug(f"metadata {key}={value!r}")

    def set_flag(self, key: str, flag: bool) -> None:
        """Record a boolean fact only when it holds."""
        if flag:
            self.set(key, True)

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def to_dict(self) -> dict[str, Scalar]:
        return {key: self._values[key] for key in sorted(self._values)}


@dataclass
class GenerateContext:
    """
    Per-generation state shared by the detector and the selected provider.

    `plan` and `caches` are bound once a provider is selected.
    """

    app: SourceTree
    env: EnvironmentOverlay = field(default_factory=EnvironmentOverlay)
    metadata: Metadata = field(default_factory=Metadata)

    # Bound after provider selection
    provider_name: str | None = None
    plan: PlanAssembler | None = None
    caches: CacheLayerPlanner | None = None

    # Provider-registered default for the start command chain
    start_command_default: ResolutionChain | None = None

    # Audit trail
    resolutions: list[ResolvedValue] = field(default_factory=list)

    def bind_provider(self, name: str) -> None:
        """Attach the assembler and cache planner for the selected provider."""
        self.provider_name = name
        self.plan = PlanAssembler(name)
        self.caches = CacheLayerPlanner(name, self.app, disabled=self.env.disable_caches)
        self.metadata.set("provider", name)

    def record_resolution(self, value: ResolvedValue) -> None:
        self.resolutions.append(value)

    def resolution(self, name: str) -> ResolvedValue | None:
        """Most recent resolution recorded for a chain name."""
        for value in reversed(self.resolutions):
            if value.name == name:
                return value
        return None

    def to_audit_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider_name,
            "metadata": self.metadata.to_dict(),
            "resolutions": [r.to_dict() for r in self.resolutions],
        }
