"""
Provider Registry for Stackplan.

An immutable, priority-ordered list of providers plus a fallback that
always matches. Build it once at process start and pass it to every
generation; it holds no per-generation state.

Selection rule:
    Providers are asked in priority order and the first one whose
    detect() returns True is selected; later providers are never asked.
    A tree matching several ecosystems (say, both go.mod and
    package.json) goes to whichever provider is registered first. No
    attempt is made to guess which manifest is "more specific".

Usage:
    registry = create_default_registry()
    provider = detect_provider(ctx, registry)
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from typing import TYPE_CHECKING

from stackplan.errors import DetectionError, UnknownProviderError

from .base import REQUIRED_METHODS, Provider

if TYPE_CHECKING:
    from stackplan.generate.context import GenerateContext

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """
    Fixed-priority provider list.

    Args:
        providers: Providers in priority order (index 0 is asked first)
        fallback: Provider selected when no other provider matches

    Raises:
        ValueError: if a provider lacks the capability interface or two
            providers share a name
    """

    def __init__(self, providers: Sequence[Provider], fallback: Provider):
        for provider in (*providers, fallback):
            self._validate_provider(provider)

        names = [p.name for p in (*providers, fallback)]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate provider names: {', '.join(duplicates)}")

        self._providers: tuple[Provider, ...] = tuple(providers)
        self._fallback = fallback
        self._by_name = {p.name: p for p in (*providers, fallback)}
        logger.debug(f"Provider registry: {names}")

    def _validate_provider(self, provider: Provider) -> None:
        if not hasattr(provider, "name"):
            raise ValueError("Provider must have 'name' property")
        for method in REQUIRED_METHODS:
            if not callable(getattr(provider, method, None)):
                raise ValueError(f"Provider '{provider.name}' must have '{method}' method")

    @property
    def providers(self) -> tuple[Provider, ...]:
        return self._providers

    @property
    def fallback(self) -> Provider:
        return self._fallback

    @property
    def names(self) -> list[str]:
        return [p.name for p in self._providers]

    def get(self, name: str) -> Provider:
        try:
            return self._by_name[name]
        except KeyError:
            raise UnknownProviderError(name) from None

    def priority_of(self, name: str) -> int:
        """Index in the priority list; the fallback ranks after every provider."""
        for index, provider in enumerate(self._providers):
            if provider.name == name:
                return index
        if name == self._fallback.name:
            return len(self._providers)
        raise UnknownProviderError(name)

    def __iter__(self) -> Iterator[Provider]:
        return iter(self._providers)

    def __len__(self) -> int:
        return len(self._providers)

    def __repr__(self) -> str:
        return f"ProviderRegistry(providers={self.names}, fallback='{self._fallback.name}')"


def create_default_registry() -> ProviderRegistry:
    """Build the standard registry: golang, rust, python, node, staticfile, shell."""
    from .fallback import FallbackProvider
    from .golang import GoProvider
    from .node import NodeProvider
    from .python import PythonProvider
    from .rust import RustProvider
    from .shell import ShellProvider
    from .staticfile import StaticfileProvider

    return ProviderRegistry(
        [
            GoProvider(),
            RustProvider(),
            PythonProvider(),
            NodeProvider(),
            StaticfileProvider(),
            ShellProvider(),
        ],
        fallback=FallbackProvider(),
    )


def detect_provider(ctx: GenerateContext, registry: ProviderRegistry) -> Provider:
    """
    Select exactly one provider for the project.

    An explicit `provider` option in the environment overlay bypasses
    detection entirely.

    Raises:
        UnknownProviderError: the overlay names an unregistered provider
        DetectionError: a provider failed to read the tree
    """
    if ctx.env.provider:
        provider = registry.get(ctx.env.provider)
        logger.info(f"Provider '{provider.name}' selected by configuration")
        return provider

    for provider in registry:
        try:
            matched = provider.detect(ctx)
        except DetectionError as e:
            if e.provider is None:
                raise DetectionError(e.message, provider=provider.name) from e
            raise
        except OSError as e:
            raise DetectionError(str(e), provider=provider.name) from e

        if matched:
            logger.info(f"Detected provider '{provider.name}'")
            return provider
        logger.debug(f"Provider '{provider.name}' did not match")

    logger.info(f"No provider matched, using '{registry.fallback.name}'")
    return registry.fallback
