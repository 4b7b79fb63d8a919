"""Plugin manager implementation."""

from __future__ import annotations

import asyncio
import importlib
import importlib.util
import sys
from typing import TYPE_CHECKING, Any

import pluggy
import structlog

from orchestrion.core.errors import ProviderNotFoundError
from orchestrion.core.registry.hookspecs import OrchestrionSpecs

if TYPE_CHECKING:
    from pathlib import Path

    from orchestrion.core.interfaces.provider import IExecutionProvider
    from orchestrion.core.interfaces.sink import INotificationSink

logger = structlog.get_logger(__name__)

BUILTIN_PLUGIN_PACKAGES = ("providers",)


class PluginManager:
    """Manages plugin loading, registration, and hook calls."""

    PROJECT_NAME = "orchestrion"

    def __init__(self) -> None:
        """Initialize the plugin manager."""
        self._pm = pluggy.PluginManager(self.PROJECT_NAME)
        self._pm.add_hookspecs(OrchestrionSpecs)

        # Provider classes keyed by their ``name`` attribute
        self._provider_classes: dict[str, type[IExecutionProvider]] = {}
        self._sinks: list[INotificationSink] = []

        self._loaded_plugins: dict[str, Any] = {}

    @property
    def hook(self) -> Any:
        """Get the hook caller for invoking hooks."""
        return self._pm.hook

    @property
    def sinks(self) -> list[INotificationSink]:
        return list(self._sinks)

    def register(self, plugin: Any, name: str | None = None) -> None:
        """
        Register a plugin.

        Args:
            plugin: Plugin instance or module
            name: Optional plugin name
        """
        plugin_name = name or getattr(plugin, "__name__", str(type(plugin).__name__))

        try:
            self._pm.register(plugin, name=plugin_name)
        except Exception as e:
            logger.error("Failed to register plugin", name=plugin_name, error=str(e))
            raise

        self._loaded_plugins[plugin_name] = plugin
        logger.info("Plugin registered", name=plugin_name)
        self._collect_providers(plugin)

    def unregister(self, name: str) -> None:
        """Unregister a plugin by name. Providers it contributed stay registered."""
        plugin = self._loaded_plugins.pop(name, None)
        if plugin is not None:
            self._pm.unregister(plugin)
            logger.info("Plugin unregistered", name=name)

    def is_registered(self, name: str) -> bool:
        return name in self._loaded_plugins

    def load_builtin_plugins(self, disabled: list[str] | None = None) -> None:
        """Load built-in plugin packages from ``orchestrion.plugins``."""
        skip = set(disabled or [])
        for pkg_name in BUILTIN_PLUGIN_PACKAGES:
            if pkg_name in skip:
                continue
            module = importlib.import_module(f"orchestrion.plugins.{pkg_name}")
            if hasattr(module, "register"):
                module.register(self)
                logger.debug("Loaded plugin package", package=pkg_name)

    def load_external_plugins(self, plugin_dir: Path) -> None:
        """
        Load external plugins from a directory of ``.py`` files.

        Files starting with an underscore are ignored. A plugin that fails
        to import is logged and skipped.
        """
        if not plugin_dir.exists():
            logger.debug("Plugin directory does not exist", path=str(plugin_dir))
            return

        for plugin_path in sorted(plugin_dir.glob("*.py")):
            if plugin_path.name.startswith("_"):
                continue
            try:
                self.load_plugin_from_file(plugin_path)
            except Exception as e:
                logger.warning(
                    "Failed to load external plugin",
                    path=str(plugin_path),
                    error=str(e),
                )

    def load_plugin_from_file(self, path: Path) -> Any:
        """
        Load a plugin from a Python file.

        Args:
            path: Path to the plugin file

        Returns:
            The loaded plugin module
        """
        module_name = f"orchestrion_plugin_{path.stem}"

        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise ImportError(f"Cannot load plugin from {path}")

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        spec.loader.exec_module(module)

        self.register(module, name=path.stem)
        return module

    def _collect_providers(self, plugin: Any) -> None:
        """Collect provider classes and sinks contributed by a plugin."""
        if hasattr(plugin, "register_execution_providers"):
            try:
                providers = plugin.register_execution_providers()
                for provider_cls in providers or []:
                    key = getattr(provider_cls, "name", provider_cls.__name__)
                    self._provider_classes[key] = provider_cls
                    logger.debug("Registered execution provider", provider_type=key)
            except Exception as e:
                logger.warning("Failed to collect execution providers", error=str(e))

        if hasattr(plugin, "register_notification_sinks"):
            try:
                sinks = plugin.register_notification_sinks()
                self._sinks.extend(sinks or [])
            except Exception as e:
                logger.warning("Failed to collect notification sinks", error=str(e))

    def get_provider_class(self, provider_type: str) -> type[IExecutionProvider] | None:
        """Get a provider class by its type key."""
        return self._provider_classes.get(provider_type)

    def list_provider_types(self) -> list[str]:
        return sorted(self._provider_classes)

    def create_provider(self, provider_type: str, **options: Any) -> IExecutionProvider:
        """
        Instantiate a registered provider class.

        Raises:
            ProviderNotFoundError: If no plugin registered ``provider_type``
        """
        provider_cls = self._provider_classes.get(provider_type)
        if provider_cls is None:
            raise ProviderNotFoundError(provider_type)
        return provider_cls(**options)

    def list_plugins(self) -> list[str]:
        return list(self._loaded_plugins)

    async def call_hook_async(self, hook_name: str, **kwargs: Any) -> list[Any]:
        """
        Call a hook whose implementations may be sync or async.

        Coroutine results are awaited concurrently. Exceptions raised by
        implementations are returned in place of their result.

        Args:
            hook_name: Name of the hook to call
            **kwargs: Hook arguments

        Returns:
            List of results from all hook implementations
        """
        hook = getattr(self.hook, hook_name, None)
        if hook is None:
            return []

        results = hook(**kwargs) or []
        pending = [r for r in results if asyncio.iscoroutine(r)]
        resolved = iter(await asyncio.gather(*pending, return_exceptions=True))
        return [next(resolved) if asyncio.iscoroutine(r) else r for r in results]
