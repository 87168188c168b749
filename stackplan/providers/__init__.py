"""
Stackplan Providers

One provider per ecosystem, registered in a fixed priority order.
"""

from .base import Provider
from .fallback import FallbackProvider
from .golang import GoProvider
from .node import NodeProvider
from .python import PythonProvider
from .registry import ProviderRegistry, create_default_registry, detect_provider
from .rust import RustProvider
from .shell import ShellProvider
from .staticfile import StaticfileProvider

__all__ = [
    # Interface
    "Provider",
    # Registry
    "ProviderRegistry",
    "create_default_registry",
    "detect_provider",
    # Providers
    "GoProvider",
    "RustProvider",
    "PythonProvider",
    "NodeProvider",
    "StaticfileProvider",
    "ShellProvider",
    "FallbackProvider",
]
