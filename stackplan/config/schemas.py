"""
Configuration Schemas for Stackplan.

The environment overlay is the only configuration the core reads. Each
override a resolution chain may consult is declared here as a typed
field, so providers never look up raw environment strings.

Semantics:
    An unset variable is None (absent). A variable set to an empty string
    is a present override and short-circuits its chain.
"""

from __future__ import annotations

from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

ENV_PREFIX = "STACKPLAN_"


class EnvironmentOverlay(BaseModel):
    """
    Typed view over the build environment.

    Build from a raw mapping with `EnvironmentOverlay.from_mapping(os.environ)`;
    only `STACKPLAN_*` variables are read, anything else is ignored.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    # Provider selection
    provider: str | None = Field(
        None, alias="STACKPLAN_PROVIDER", description="Force a provider, skipping detection"
    )

    # Toolchain versions
    node_version: str | None = Field(None, alias="STACKPLAN_NODE_VERSION")
    python_version: str | None = Field(None, alias="STACKPLAN_PYTHON_VERSION")
    go_version: str | None = Field(None, alias="STACKPLAN_GO_VERSION")
    rust_version: str | None = Field(None, alias="STACKPLAN_RUST_VERSION")

    # Package manager / workspace selectors
    package_manager: str | None = Field(
        None, alias="STACKPLAN_PACKAGE_MANAGER", description="Override lock-file detection"
    )
    workspace: str | None = Field(
        None, alias="STACKPLAN_WORKSPACE", description="Workspace member (Go module, Cargo bin)"
    )

    # Command overrides
    install_cmd: str | None = Field(None, alias="STACKPLAN_INSTALL_CMD")
    build_cmd: str | None = Field(None, alias="STACKPLAN_BUILD_CMD")
    start_cmd: str | None = Field(None, alias="STACKPLAN_START_CMD")

    # Toggles
    prune_deps: bool = Field(False, alias="STACKPLAN_PRUNE_DEPS")
    disable_caches: bool = Field(False, alias="STACKPLAN_DISABLE_CACHES")

    # Provider-specific
    static_root: str | None = Field(None, alias="STACKPLAN_STATIC_ROOT")
    shell_script: str | None = Field(None, alias="STACKPLAN_SHELL_SCRIPT")

    @field_validator("prune_deps", "disable_caches", mode="before")
    @classmethod
    def _parse_flag(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return value

    @classmethod
    def from_mapping(cls, env: Mapping[str, str] | None = None) -> EnvironmentOverlay:
        """Create an overlay from a raw environment mapping."""
        if not env:
            return cls()
        declared = {
            key: value for key, value in env.items() if key.startswith(ENV_PREFIX)
        }
        return cls.model_validate(declared)

    def declared(self) -> dict[str, object]:
        """Return only the options that were explicitly set, keyed by variable name."""
        return self.model_dump(by_alias=True, exclude_defaults=True)
