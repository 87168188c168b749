"""
Cache Layer Planner.

Decides, per step, how much of the project tree to materialize and hands
out cache-mount identifiers.

Materialization:
    A provider supplies a predicate such as "has install lifecycle hooks"
    or "has local path dependencies". When it holds, the step copies the
    whole tree (always correct, invalidated by any file change). When it
    does not, only the manifest and lock files are copied, so the install
    layer stays cached until the dependencies change.

Namespacing:
    Cache ids are "<provider>:<purpose>". Two providers declaring a cache
    at the same path never share a mount.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Sequence

from .model import WHOLE_TREE, CacheMount, CacheSharing

if TYPE_CHECKING:
    from stackplan.source import SourceTree

logger = logging.getLogger(__name__)

_GLOB_CHARS = frozenset("*?[")


class CacheLayerPlanner:
    """
    Per-provider cache and input planning.

    Args:
        provider: Name of the provider owning the caches
        app: Tree used to filter declared manifests to those that exist
        disabled: When True, mount() returns None and no caches are planned
    """

    def __init__(
        self,
        provider: str,
        app: SourceTree | None = None,
        *,
        disabled: bool = False,
    ):
        if not provider:
            raise ValueError("Cache namespace requires a provider name")
        self.provider = provider
        self.app = app
        self.disabled = disabled

    def cache_id(self, purpose: str) -> str:
        return f"{self.provider}:{purpose}"

    def mount(
        self,
        purpose: str,
        path: str,
        sharing: CacheSharing = CacheSharing.SHARED,
    ) -> CacheMount | None:
        """Create a namespaced cache mount, or None when caches are disabled."""
        if self.disabled:
            return None
        return CacheMount(id=self.cache_id(purpose), path=path, sharing=sharing)

    def install_inputs(
        self,
        manifests: Sequence[str],
        full_tree: bool | Callable[[], bool],
    ) -> list[str]:
        """
        Choose the input globs for a dependency-install step.

        Args:
            manifests: Manifest and lock-file paths or globs, in preferred order
            full_tree: Predicate (or its value) requiring the whole tree

        Returns:
            [WHOLE_TREE] when the predicate holds, otherwise the manifests
            that exist in the tree
        """
        needs_tree = full_tree() if callable(full_tree) else full_tree
        if needs_tree:
            logger.debug(f"[{self.provider}] install step materializes the whole tree")
            return [WHOLE_TREE]

        if self.app is None:
            return list(dict.fromkeys(manifests))

        literal = [m for m in manifests if not _GLOB_CHARS.intersection(m)]
        found = self.app.existing(literal)

        inputs: list[str] = []
        for manifest in manifests:
            if _GLOB_CHARS.intersection(manifest):
                inputs.extend(self.app.find_files(manifest))
            elif manifest in found:
                inputs.append(manifest)

        inputs = list(dict.fromkeys(inputs))
        logger.debug(f"[{self.provider}] install step inputs: {inputs}")
        return inputs

    def __repr__(self) -> str:
        return f"CacheLayerPlanner(provider='{self.provider}', disabled={self.disabled})"
