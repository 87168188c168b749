"""
Provider Protocol for Stackplan.

A provider recognizes one ecosystem and plans its build. Providers are
independent, stateless implementations of this interface; they are not
subclasses of a shared base. Everything they learn about a project goes
into the GenerateContext, never into the provider instance, so one
instance can serve any number of concurrent generations.

Lifecycle within one pass:
    detect()            -> True if the tree belongs to this ecosystem
    initialize()        -> scan the tree, record facts in ctx.metadata
    plan()              -> resolve chains, emit steps into ctx.plan,
                           register ctx.start_command_default
    cleanse_plan()      -> provider-specific touch-ups of the draft plan
    start_command_help()-> hint shown when no start command resolved
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from stackplan.generate.context import GenerateContext
    from stackplan.plan import BuildPlan


@runtime_checkable
class Provider(Protocol):
    """
    Capability interface every provider implements.

    Only tree I/O failures may escape detect(); they surface as
    DetectionError and abort the generation.
    """

    @property
    def name(self) -> str:
        """Provider identifier, also the cache namespace."""
        ...

    def detect(self, ctx: GenerateContext) -> bool:
        """Return True when the project belongs to this provider."""
        ...

    def initialize(self, ctx: GenerateContext) -> None:
        """Scan the tree and record detected facts as metadata."""
        ...

    def plan(self, ctx: GenerateContext) -> None:
        """Contribute steps to ctx.plan."""
        ...

    def cleanse_plan(self, plan: BuildPlan) -> BuildPlan:
        """Adjust the assembled draft before generic finalization."""
        ...

    def start_command_help(self) -> str:
        """Explain how to configure a start command for this ecosystem."""
        ...


REQUIRED_METHODS = ("detect", "initialize", "plan", "cleanse_plan", "start_command_help")
