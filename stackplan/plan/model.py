"""
Build Plan Schema.

JSON-serializable description of how to materialize and run a project.
A BuildPlan is handed to an external image builder (which executes the
steps as filesystem layers) and to the plan renderer.

Structure:
    BuildPlan
    ├── layers: one Layer per phase, ordered install → build → deploy
    │   └── steps: ordered Steps (commands, inputs, caches, env, deps)
    └── deploy: start command and runtime settings

All models are frozen. Collections are tuples, mappings are stored with
sorted keys and dependency sets are sorted, so two equal plans always
serialize to the same bytes.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Input glob meaning "the entire project tree"
WHOLE_TREE = "."


class Phase(str, Enum):
    """Coarse execution ordering of steps."""

    INSTALL = "install"
    BUILD = "build"
    DEPLOY = "deploy"

    @property
    def order(self) -> int:
        return PHASE_ORDER.index(self)


PHASE_ORDER: tuple[Phase, ...] = (Phase.INSTALL, Phase.BUILD, Phase.DEPLOY)


class CommandKind(str, Enum):
    EXEC = "exec"
    PATH = "path"
    COPY = "copy"


class Command(BaseModel):
    """
    One instruction inside a step.

    - exec: run a shell command
    - path: prepend a directory to PATH for later commands
    - copy: copy a path into the step's filesystem
    """

    model_config = ConfigDict(frozen=True)

    kind: CommandKind
    args: tuple[str, ...]
    label: str | None = None

    @classmethod
    def exec(cls, cmd: str, label: str | None = None) -> Command:
        return cls(kind=CommandKind.EXEC, args=(cmd,), label=label)

    @classmethod
    def path(cls, directory: str) -> Command:
        return cls(kind=CommandKind.PATH, args=(directory,))

    @classmethod
    def copy(cls, src: str, dest: str) -> Command:
        return cls(kind=CommandKind.COPY, args=(src, dest))

    def display(self) -> str:
        if self.kind == CommandKind.EXEC:
            return f"$ {self.args[0]}"
        if self.kind == CommandKind.PATH:
            return f"PATH += {self.args[0]}"
        return f"COPY {' '.join(self.args)}"


class CacheSharing(str, Enum):
    """How concurrent builds may use a cache mount."""

    SHARED = "shared"
    LOCKED = "locked"
    PRIVATE = "private"


class CacheMount(BaseModel):
    """Named, reusable storage a step reads and writes across builds."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Namespaced identifier, '<provider>:<purpose>'")
    path: str = Field(..., description="Mount path inside the build filesystem")
    sharing: CacheSharing = CacheSharing.SHARED


def _sorted_mapping(value: dict[str, str] | None) -> dict[str, str]:
    return {key: value[key] for key in sorted(value or {})}


class Step(BaseModel):
    """
    Atomic unit of a build plan.

    Attributes:
        id: Unique within the plan
        commands: Ordered commands
        inputs: Path globs materialized before the commands run
        caches: Cache mounts available to the commands
        env: Environment variables for the commands
        depends_on: Ids of steps that must complete first
        outputs: Path globs the step produces
    """

    model_config = ConfigDict(frozen=True)

    id: str
    commands: tuple[Command, ...] = ()
    inputs: tuple[str, ...] = ()
    caches: tuple[CacheMount, ...] = ()
    env: dict[str, str] = Field(default_factory=dict)
    depends_on: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()

    @field_validator("env", mode="after")
    @classmethod
    def _sort_env(cls, value: dict[str, str]) -> dict[str, str]:
        return _sorted_mapping(value)

    @field_validator("depends_on", mode="after")
    @classmethod
    def _sort_depends_on(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(sorted(set(value)))

    @property
    def materializes_whole_tree(self) -> bool:
        return WHOLE_TREE in self.inputs

    @property
    def cache_ids(self) -> tuple[str, ...]:
        return tuple(cache.id for cache in self.caches)


class Layer(BaseModel):
    """All steps of one phase, in execution order."""

    model_config = ConfigDict(frozen=True)

    phase: Phase
    steps: tuple[Step, ...] = ()


class StartCommandStatus(str, Enum):
    SET = "set"
    UNSET = "unset"


class DeployConfig(BaseModel):
    """
    Runtime settings of the final image.

    `status` is UNSET when no start command resolved; consumers are
    responsible for telling the user to configure one.
    """

    model_config = ConfigDict(frozen=True)

    start_command: str | None = None
    start_command_source: str | None = None
    status: StartCommandStatus = StartCommandStatus.UNSET
    env: dict[str, str] = Field(default_factory=dict)
    paths: tuple[str, ...] = ()
    inputs: tuple[str, ...] = ()

    @field_validator("env", mode="after")
    @classmethod
    def _sort_env(cls, value: dict[str, str]) -> dict[str, str]:
        return _sorted_mapping(value)


class BuildPlan(BaseModel):
    """
    Ordered, serializable build description.

    Usage:
        plan.layer(Phase.INSTALL).steps
        plan.step("install").inputs
        plan.to_json()
    """

    model_config = ConfigDict(frozen=True)

    provider: str
    layers: tuple[Layer, ...] = ()
    deploy: DeployConfig = Field(default_factory=DeployConfig)

    @property
    def phases(self) -> list[Phase]:
        return [layer.phase for layer in self.layers]

    def layer(self, phase: Phase) -> Layer | None:
        for layer in self.layers:
            if layer.phase == phase:
                return layer
        return None

    def steps(self) -> list[Step]:
        """All steps in execution order."""
        return [step for layer in self.layers for step in layer.steps]

    def step(self, step_id: str) -> Step | None:
        for step in self.steps():
            if step.id == step_id:
                return step
        return None

    def phase_of(self, step_id: str) -> Phase | None:
        for layer in self.layers:
            if any(step.id == step_id for step in layer.steps):
                return layer.phase
        return None

    @property
    def start_command_unset(self) -> bool:
        return self.deploy.status == StartCommandStatus.UNSET

    def to_json(self, indent: int | None = 2) -> str:
        """Byte-deterministic JSON serialization."""
        return self.model_dump_json(indent=indent)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
