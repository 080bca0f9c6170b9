"""Plugin manager: dependency-checked registration, ordered boot, tenant scoping."""

from __future__ import annotations

import importlib
import logging
import weakref
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Set, Type, Union

from .base import BasePlugin, CircularDependency, DependencyMissing, PluginError
from .registry import PluginRegistry

if TYPE_CHECKING:
    from i18n_flow.core.pipeline import TranslationPipeline

logger = logging.getLogger(__name__)

PluginClassRef = Union[str, Type[BasePlugin]]


def _import_plugin_class(path: str) -> Type[BasePlugin]:
    module_name, _, attr = path.replace(":", ".").rpartition(".")
    if not module_name or not attr:
        raise PluginError(f"Invalid plugin class path: {path}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise PluginError(f"Plugin class '{path}' not found: {exc}") from exc
    klass = getattr(module, attr, None)
    if not isinstance(klass, type) or not issubclass(klass, BasePlugin):
        raise PluginError(f"Plugin class '{path}' not found")
    return klass


class PluginManager:
    """
    Owns plugin instances for one process (or one tenant group).

    Registration is all-or-nothing: dependencies are resolved and the
    combined graph is sorted before anything is stored, so a rejected
    plugin leaves both the manager and its registry untouched.
    """

    def __init__(self, registry: Optional[PluginRegistry] = None):
        self.registry = registry if registry is not None else PluginRegistry()
        self._plugins: Dict[str, BasePlugin] = {}
        self._tenant_plugins: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._plugin_classes: Dict[str, PluginClassRef] = {}
        self._default_configs: Dict[str, Dict[str, Any]] = {}
        # pipelines already booted; weak so finished pipelines can be collected
        self._booted: "weakref.WeakSet[TranslationPipeline]" = weakref.WeakSet()
        self._has_booted = False

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, plugin: BasePlugin) -> None:
        self.register_many([plugin])

    def register_many(self, plugins: Iterable[BasePlugin]) -> None:
        batch = list(plugins)
        if self._has_booted:
            raise PluginError("Cannot register plugins after the manager has booted")

        incoming: Dict[str, BasePlugin] = {}
        for plugin in batch:
            if plugin.name in self._plugins or plugin.name in incoming:
                raise PluginError(f"Plugin '{plugin.name}' is already registered")
            incoming[plugin.name] = plugin

        combined = {**self._plugins, **incoming}
        for plugin in batch:
            for dependency in plugin.dependencies:
                if dependency not in combined:
                    raise DependencyMissing(plugin.name, dependency)

        self.sort_by_dependencies(list(combined.values()))

        for plugin in batch:
            self._plugins[plugin.name] = plugin
            plugin.register(self.registry)
            self._apply_tenant_overrides(plugin)
            logger.debug("Registered plugin %s v%s", plugin.name, plugin.version)

    def _apply_tenant_overrides(self, plugin: BasePlugin) -> None:
        for tenant, overrides in self._tenant_plugins.items():
            override = overrides.get(plugin.name)
            if override is None:
                continue
            if override["enabled"]:
                plugin.enable_for_tenant(tenant, override["config"])
            else:
                plugin.disable_for_tenant(tenant)

    def sort_by_dependencies(self, plugins: Iterable[BasePlugin]) -> List[BasePlugin]:
        """Depth-first topological order; dependencies precede dependents."""
        by_name: Dict[str, BasePlugin] = {}
        for plugin in plugins:
            by_name[plugin.name] = plugin
        roots = sorted(by_name.values(), key=lambda p: p.priority, reverse=True)

        ordered: List[BasePlugin] = []
        visited: Set[str] = set()
        visiting: List[str] = []

        def visit(name: str) -> None:
            if name in visiting:
                raise CircularDependency(name, visiting[visiting.index(name):])
            if name in visited:
                return
            visiting.append(name)
            for dependency in by_name[name].dependencies:
                if dependency in by_name:
                    visit(dependency)
            visiting.pop()
            visited.add(name)
            ordered.append(by_name[name])

        for plugin in roots:
            visit(plugin.name)
        return ordered

    # ------------------------------------------------------------------
    # Boot
    # ------------------------------------------------------------------

    def boot(self, pipeline: "TranslationPipeline", tenant: Optional[str] = None) -> None:
        """Attach enabled plugins in dependency order; once per pipeline.

        A plugin whose dependency was left out is left out as well.
        """
        if pipeline in self._booted:
            return
        skipped: Set[str] = set()
        attached = 0
        for plugin in self.sort_by_dependencies(self._plugins.values()):
            if not self._is_enabled(tenant, plugin.name):
                logger.debug("Plugin %s disabled for tenant %s", plugin.name, tenant)
                skipped.add(plugin.name)
                continue
            blocked = [dep for dep in plugin.dependencies if dep in skipped]
            if blocked:
                logger.warning(
                    "Skipping plugin %s: dependency %s is disabled", plugin.name, ", ".join(blocked)
                )
                skipped.add(plugin.name)
                continue
            pipeline.register_plugin(plugin)
            attached += 1
        self._booted.add(pipeline)
        self._has_booted = True
        logger.info("Booted %d plugin(s), skipped %d", attached, len(skipped))

    @property
    def is_booted(self) -> bool:
        return self._has_booted

    def _is_enabled(self, tenant: Optional[str], name: str) -> bool:
        if tenant is None:
            plugin = self._plugins.get(name)
            return plugin is not None and plugin.is_enabled_for(None)
        return self.is_enabled_for_tenant(tenant, name)

    # ------------------------------------------------------------------
    # Tenant scoping
    # ------------------------------------------------------------------

    def enable_for_tenant(
        self, tenant: str, name: str, config: Optional[Dict[str, Any]] = None
    ) -> None:
        self._tenant_plugins.setdefault(tenant, {})[name] = {
            "enabled": True,
            "config": dict(config or {}),
        }
        plugin = self._plugins.get(name)
        if plugin is not None:
            plugin.enable_for_tenant(tenant, config)

    def disable_for_tenant(self, tenant: str, name: str) -> None:
        self._tenant_plugins.setdefault(tenant, {})[name] = {"enabled": False, "config": {}}
        plugin = self._plugins.get(name)
        if plugin is not None:
            plugin.disable_for_tenant(tenant)

    def is_enabled_for_tenant(self, tenant: str, name: str) -> bool:
        override = self._tenant_plugins.get(tenant, {}).get(name)
        if override is not None:
            return bool(override["enabled"])
        plugin = self._plugins.get(name)
        if plugin is None:
            return False
        return plugin.is_enabled_for(tenant)

    def get_enabled(self, tenant: Optional[str] = None) -> Dict[str, BasePlugin]:
        return {
            name: plugin
            for name, plugin in self._plugins.items()
            if self._is_enabled(tenant, name)
        }

    def get_tenant_config(self, tenant: str, name: str) -> Dict[str, Any]:
        plugin = self._plugins.get(name)
        base = plugin.config_for(tenant) if plugin is not None else {}
        override = self._tenant_plugins.get(tenant, {}).get(name) or {}
        return {**base, **override.get("config", {})}

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, name: str) -> Optional[BasePlugin]:
        return self._plugins.get(name)

    def has(self, name: str) -> bool:
        return name in self._plugins

    def all(self) -> Dict[str, BasePlugin]:
        return dict(self._plugins)

    # ------------------------------------------------------------------
    # Config-driven loading
    # ------------------------------------------------------------------

    def register_class(
        self, name: str, plugin_class: PluginClassRef, default_config: Optional[Dict[str, Any]] = None
    ) -> None:
        self._plugin_classes[name] = plugin_class
        self._default_configs[name] = dict(default_config or {})

    def create(self, name: str, config: Optional[Dict[str, Any]] = None) -> Optional[BasePlugin]:
        ref = self._plugin_classes.get(name)
        if ref is None:
            return None
        klass = _import_plugin_class(ref) if isinstance(ref, str) else ref
        merged = {**self._default_configs.get(name, {}), **dict(config or {})}
        plugin = klass(merged)
        if plugin.name != name:
            plugin.name = name
        return plugin

    def load(self, name: str, config: Optional[Dict[str, Any]] = None) -> Optional[BasePlugin]:
        if self.has(name):
            return self.get(name)
        plugin = self.create(name, config)
        if plugin is not None:
            self.register(plugin)
        return plugin

    def load_from_config(self, config: Mapping[str, Any]) -> List[BasePlugin]:
        """Register plugin classes from a mapping and load the enabled ones.

        Values are either a class (or dotted import path) or a dict with
        ``class``, ``config`` and ``enabled``. Enabled plugins are loaded as
        one batch so they may depend on each other in any order.
        """
        to_load: List[str] = []
        entry_configs: Dict[str, Dict[str, Any]] = {}
        for name, entry in (config or {}).items():
            if isinstance(entry, (str, type)):
                self.register_class(name, entry)
            elif isinstance(entry, Mapping):
                klass = entry.get("class")
                if klass:
                    self.register_class(name, klass)
                entry_configs[name] = dict(entry.get("config") or {})
                if entry.get("enabled", False):
                    to_load.append(name)
            else:
                raise PluginError(f"Invalid plugin config for '{name}'")

        batch: List[BasePlugin] = []
        for name in to_load:
            if self.has(name):
                continue
            plugin = self.create(name, entry_configs.get(name))
            if plugin is None:
                raise PluginError(f"Plugin '{name}' has no registered class")
            batch.append(plugin)
        if batch:
            self.register_many(batch)
        return batch

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def reset(self) -> None:
        self._plugins = {}
        self._tenant_plugins = {}
        self._booted = weakref.WeakSet()
        self._has_booted = False
        self.registry.clear()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "total": len(self._plugins),
            "registered_classes": len(self._plugin_classes),
            "tenants": len(self._tenant_plugins),
            "booted": self.is_booted,
        }
