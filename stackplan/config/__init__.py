"""
Stackplan Configuration

Typed environment overlay consumed by resolution chains.
"""

from .schemas import ENV_PREFIX, EnvironmentOverlay

__all__ = [
    "ENV_PREFIX",
    "EnvironmentOverlay",
]
