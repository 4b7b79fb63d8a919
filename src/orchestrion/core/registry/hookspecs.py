"""Plugin hook specifications using pluggy."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pluggy

if TYPE_CHECKING:
    from orchestrion.core.interfaces.provider import IExecutionProvider
    from orchestrion.core.interfaces.sink import INotificationSink
    from orchestrion.core.models.config import Config

# Plugin markers
hookspec = pluggy.HookspecMarker("orchestrion")
hookimpl = pluggy.HookimplMarker("orchestrion")


class OrchestrionSpecs:
    """Hook specifications for the plugin system."""

    # =========================================================================
    # Engine Lifecycle Hooks
    # =========================================================================

    @hookspec
    def on_engine_start(self, config: Config) -> None:
        """Called after the engine has started."""
        ...

    @hookspec
    def on_engine_stop(self) -> None:
        """Called before the engine shuts down."""
        ...

    # =========================================================================
    # Provider Registration Hooks
    # =========================================================================

    @hookspec
    def register_execution_providers(self) -> list[type[IExecutionProvider]]:
        """
        Register execution provider implementations.

        Return list of provider classes. The class attribute ``name``
        is the provider type used in configuration.
        """
        ...

    @hookspec
    def register_notification_sinks(self) -> list[INotificationSink]:
        """
        Register notification sinks.

        Return list of sink instances; each is subscribed to engine events.
        """
        ...
