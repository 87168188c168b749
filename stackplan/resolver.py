"""
Resolution Chains.

A resolution chain picks one value from several ordered sources:

    version = ResolutionChain("node.version", default="22")
    version.then("env", lambda ctx: ctx.env.node_version)
    version.then("package.json", read_engines_field)
    version.resolve(ctx)

Precedence rule:
    Resolvers run left to right. The first *present* result wins, where
    present means "not None". An empty string is present, so an explicit
    empty override short-circuits the chain. The default is used only when
    every resolver is absent.

Chains are callables themselves, so a chain can be used as a resolver
inside another chain (e.g. a provider's start-command default nested in
the global start-command chain).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from .errors import UnresolvedValueError

logger = logging.getLogger(__name__)


class _Unset:
    """Sentinel for a chain that resolved nothing."""

    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()

# Resolver: (context) -> value, or None when the source is absent
Resolver = Callable[[Any], Any]

DEFAULT_SOURCE = "default"


@dataclass(frozen=True)
class ResolvedValue:
    """
    Records how a chain resolved, for the audit trail.

    `source` is the name of the winning resolver, "default", or None
    when the chain came back unset.
    """

    name: str
    value: Any
    source: str | None

    @property
    def is_set(self) -> bool:
        return self.value is not UNSET

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "value": self.value if self.is_set else None,
            "source": self.source,
        }


class ResolutionChain:
    """
    Ordered precedence lookup with an optional default.

    Args:
        name: Chain identifier, used in logs and errors
        resolvers: Initial (source, resolver) pairs in precedence order
        default: Value used when no resolver is present (UNSET for none)
        required: Raise UnresolvedValueError instead of returning UNSET
    """

    def __init__(
        self,
        name: str,
        resolvers: Sequence[tuple[str, Resolver]] = (),
        *,
        default: Any = UNSET,
        required: bool = False,
    ):
        self.name = name
        self._resolvers: list[tuple[str, Resolver]] = list(resolvers)
        self.default = default
        self.required = required

    @property
    def sources(self) -> list[str]:
        return [source for source, _ in self._resolvers]

    def then(self, source: str, resolver: Resolver) -> ResolutionChain:
        """Append a lower-precedence resolver."""
        self._resolvers.append((source, resolver))
        return self

    def evaluate(self, ctx: Any = None) -> ResolvedValue:
        """Run the chain and return the value together with its source."""
        result: ResolvedValue | None = None
        for source, resolver in self._resolvers:
            value = resolver(ctx)
            if value is not None and value is not UNSET:
                result = ResolvedValue(self.name, value, source)
                break

        if result is None:
            if self.default is not UNSET and self.default is not None:
                result = ResolvedValue(self.name, self.default, DEFAULT_SOURCE)
            elif self.required:
                raise UnresolvedValueError(self.name)
            else:
                result = ResolvedValue(self.name, UNSET, None)

        logger.debug(f"Resolved {self.name} = {result.value!r} (source={result.source})")
        record = getattr(ctx, "record_resolution", None)
        if callable(record):
            record(result)
        return result

    def resolve(self, ctx: Any = None) -> Any:
        """Run the chain and return the value (or UNSET)."""
        return self.evaluate(ctx).value

    def __call__(self, ctx: Any) -> Any:
        # Used as a nested resolver: UNSET reads as absent
        value = self.resolve(ctx)
        return None if value is UNSET else value

    def __repr__(self) -> str:
        return f"ResolutionChain(name='{self.name}', sources={self.sources})"
