"""Plugin registry and provider registry."""

from orchestrion.core.registry.hookspecs import OrchestrionSpecs, hookimpl, hookspec
from orchestrion.core.registry.manager import PluginManager
from orchestrion.core.registry.providers import ProviderRegistry

__all__ = [
    "OrchestrionSpecs",
    "PluginManager",
    "ProviderRegistry",
    "hookimpl",
    "hookspec",
]
