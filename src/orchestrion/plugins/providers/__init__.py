"""Execution provider plugins."""

from orchestrion.core.registry.hookspecs import hookimpl
from orchestrion.core.registry.manager import PluginManager
from orchestrion.plugins.providers.http import HttpExecutionProvider
from orchestrion.plugins.providers.mock import MockExecutionProvider


class ProvidersPlugin:
    """Plugin that registers the built-in execution providers."""

    @hookimpl
    def register_execution_providers(self):
        """Register available execution providers."""
        return [MockExecutionProvider, HttpExecutionProvider]


def register(manager: PluginManager) -> None:
    """Register provider plugins."""
    manager.register(ProvidersPlugin(), name="providers")


__all__ = [
    "HttpExecutionProvider",
    "MockExecutionProvider",
    "ProvidersPlugin",
    "register",
]
