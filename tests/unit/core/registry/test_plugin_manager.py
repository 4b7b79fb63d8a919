"""Tests for the pluggy-based PluginManager."""

from __future__ import annotations

import pytest

from orchestrion.core.errors import ProviderNotFoundError
from orchestrion.core.models.config import Config
from orchestrion.core.registry.hookspecs import hookimpl
from orchestrion.core.registry.manager import PluginManager
from orchestrion.plugins.providers import HttpExecutionProvider, MockExecutionProvider

EXTERNAL_PLUGIN = '''
from orchestrion.core.registry.hookspecs import hookimpl
from orchestrion.plugins.providers.mock import MockExecutionProvider


class EchoProvider(MockExecutionProvider):
    name = "echo"


@hookimpl
def register_execution_providers():
    return [EchoProvider]
'''


class _RecordingSink:
    async def on_status_change(self, entity_id, status, metadata):
        pass

    async def on_progress(self, entity_id, progress):
        pass

    async def on_error(self, entity_id, message, context):
        pass


class _LifecyclePlugin:
    def __init__(self) -> None:
        self.started_with: Config | None = None

    @hookimpl
    def on_engine_start(self, config):
        self.started_with = config
        return "sync"

    @hookimpl
    def register_notification_sinks(self):
        return [_RecordingSink()]


class _AsyncPlugin:
    @hookimpl
    async def on_engine_start(self, config):
        return "async"


class _BrokenAsyncPlugin:
    @hookimpl
    async def on_engine_start(self, config):
        raise RuntimeError("plugin crashed")


# ============================================================================
# BUILT-IN PLUGINS
# ============================================================================


class TestBuiltinPlugins:
    """Tests for loading the bundled provider plugin."""

    def test_load_registers_provider_types(self):
        manager = PluginManager()
        manager.load_builtin_plugins()

        assert manager.list_plugins() == ["providers"]
        assert manager.list_provider_types() == ["http", "mock"]
        assert manager.get_provider_class("mock") is MockExecutionProvider
        assert manager.get_provider_class("http") is HttpExecutionProvider

    def test_disabled_package_skipped(self):
        manager = PluginManager()
        manager.load_builtin_plugins(disabled=["providers"])
        assert manager.list_provider_types() == []

    def test_create_provider_passes_options(self):
        manager = PluginManager()
        manager.load_builtin_plugins()

        provider = manager.create_provider("mock", delay=0.25, fail_execution=True)

        assert isinstance(provider, MockExecutionProvider)
        assert provider.delay == 0.25
        assert provider.fail_execution is True

    def test_create_unknown_provider(self):
        manager = PluginManager()
        with pytest.raises(ProviderNotFoundError):
            manager.create_provider("ftp")


# ============================================================================
# EXTERNAL PLUGINS
# ============================================================================


class TestExternalPlugins:
    """Tests for loading plugins from a directory."""

    def test_load_from_directory(self, tmp_path):
        (tmp_path / "echo.py").write_text(EXTERNAL_PLUGIN)
        (tmp_path / "_private.py").write_text("raise RuntimeError('never imported')")

        manager = PluginManager()
        manager.load_external_plugins(tmp_path)

        assert manager.is_registered("echo")
        assert not manager.is_registered("_private")
        assert "echo" in manager.list_provider_types()

    def test_broken_plugin_skipped(self, tmp_path):
        (tmp_path / "broken.py").write_text("import does_not_exist_anywhere")
        (tmp_path / "echo.py").write_text(EXTERNAL_PLUGIN)

        manager = PluginManager()
        manager.load_external_plugins(tmp_path)

        assert manager.list_plugins() == ["echo"]

    def test_missing_directory_ignored(self, tmp_path):
        manager = PluginManager()
        manager.load_external_plugins(tmp_path / "absent")
        assert manager.list_plugins() == []


# ============================================================================
# HOOKS
# ============================================================================


class TestHooks:
    """Tests for hook dispatch and sink collection."""

    def test_sinks_collected(self):
        manager = PluginManager()
        manager.register(_LifecyclePlugin(), name="lifecycle")

        assert len(manager.sinks) == 1
        assert isinstance(manager.sinks[0], _RecordingSink)

    def test_unregister(self):
        manager = PluginManager()
        manager.register(_LifecyclePlugin(), name="lifecycle")
        manager.unregister("lifecycle")

        assert not manager.is_registered("lifecycle")
        assert manager.hook.on_engine_start(config=Config()) == []

    @pytest.mark.asyncio
    async def test_call_hook_async_mixes_sync_and_async(self):
        manager = PluginManager()
        lifecycle = _LifecyclePlugin()
        manager.register(lifecycle, name="lifecycle")
        manager.register(_AsyncPlugin(), name="async")
        config = Config()

        results = await manager.call_hook_async("on_engine_start", config=config)

        assert sorted(results) == ["async", "sync"]
        assert lifecycle.started_with is config

    @pytest.mark.asyncio
    async def test_call_hook_async_returns_exceptions(self):
        manager = PluginManager()
        manager.register(_BrokenAsyncPlugin(), name="broken")

        results = await manager.call_hook_async("on_engine_start", config=Config())

        assert len(results) == 1
        assert isinstance(results[0], RuntimeError)

    @pytest.mark.asyncio
    async def test_unknown_hook(self):
        manager = PluginManager()
        assert await manager.call_hook_async("on_nothing") == []
