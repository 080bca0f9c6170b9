"""Plugin contracts for the translation pipeline."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from i18n_flow.core.context import TranslationContext
from i18n_flow.core.events import PipelineEvent
from i18n_flow.core.stages import PipelineStage

if TYPE_CHECKING:
    from i18n_flow.core.pipeline import TranslationPipeline
    from .registry import PluginRegistry


class PluginError(RuntimeError):
    pass


class DependencyMissing(PluginError):
    def __init__(self, plugin: str, dependency: str):
        self.plugin = plugin
        self.dependency = dependency
        super().__init__(f"Plugin '{plugin}' depends on '{dependency}' which is not registered")


class CircularDependency(PluginError):
    def __init__(self, plugin: str, path: Optional[List[str]] = None):
        self.plugin = plugin
        self.path = list(path or [])
        chain = " -> ".join(self.path + [plugin]) if self.path else plugin
        super().__init__(f"Circular dependency detected: {chain}")


class BasePlugin:
    """
    Base for every plugin.

    Subclasses set the class attributes below and implement ``boot`` to
    attach themselves to a pipeline. Per-instance config is
    ``default_config()`` merged with the constructor argument.
    """

    name: str = ""
    version: str = "1.0.0"
    priority: int = 0
    dependencies: List[str] = []
    enabled_by_default: bool = True

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        if not self.name:
            self.name = type(self).__name__
        self.dependencies = list(self.dependencies)
        self.config: Dict[str, Any] = {**self.default_config(), **dict(config or {})}
        self._tenant_status: Dict[str, bool] = {}
        self._tenant_configs: Dict[str, Dict[str, Any]] = {}
        self.logger = logging.getLogger(f"i18n_flow.plugins.{self.name}")

    def default_config(self) -> Dict[str, Any]:
        return {}

    def configure(self, config: Dict[str, Any]) -> "BasePlugin":
        self.config.update(config or {})
        return self

    def get_config_value(self, key: str, default: Any = None) -> Any:
        current: Any = self.config
        for part in key.split("."):
            if not isinstance(current, dict) or part not in current:
                return default
            current = current[part]
        return current

    # Tenant scoping

    def is_enabled_for(self, tenant: Optional[str] = None) -> bool:
        if tenant is None:
            return self.enabled_by_default
        return self._tenant_status.get(tenant, self.enabled_by_default)

    def enable_for_tenant(self, tenant: str, config: Optional[Dict[str, Any]] = None) -> None:
        self._tenant_status[tenant] = True
        if config:
            self._tenant_configs[tenant] = dict(config)

    def disable_for_tenant(self, tenant: str) -> None:
        self._tenant_status[tenant] = False
        self._tenant_configs.pop(tenant, None)

    def has_tenant_override(self, tenant: str) -> bool:
        return tenant in self._tenant_status

    def config_for(self, tenant: Optional[str] = None) -> Dict[str, Any]:
        if tenant is None or tenant not in self._tenant_configs:
            return dict(self.config)
        return {**self.config, **self._tenant_configs[tenant]}

    # Lifecycle

    def register(self, registry: "PluginRegistry") -> None:
        registry.register(self)

    def boot(self, pipeline: "TranslationPipeline") -> None:
        raise NotImplementedError

    def should_skip(self, context: TranslationContext) -> bool:
        if not self.is_enabled_for(context.request.tenant_id or None):
            return True
        return bool(context.request.get_option(f"skip_{self.name}", False))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r} priority={self.priority}>"


class StagePlugin(BasePlugin):
    """Attaches ``handle`` to a single stage."""

    stage: PipelineStage = PipelineStage.PRE_PROCESS

    def boot(self, pipeline: "TranslationPipeline") -> None:
        pipeline.register_stage(self.stage, self._run, self.priority)

    def _run(self, context: TranslationContext) -> Any:
        if self.should_skip(context):
            return None
        return self.handle(context)

    def handle(self, context: TranslationContext) -> Any:
        raise NotImplementedError


PipelineNext = Callable[[TranslationContext], Any]


class MiddlewarePlugin(BasePlugin):
    """Wraps the whole stage executor; ``terminate`` runs after every pass."""

    def boot(self, pipeline: "TranslationPipeline") -> None:
        pipeline.register_global_wrapper(self._wrap, self.priority)
        pipeline.register_terminator(self.terminate, self.priority)

    def _wrap(self, context: TranslationContext, next_call: PipelineNext) -> Any:
        if self.should_skip(context):
            return next_call(context)
        return self.handle(context, next_call)

    def handle(self, context: TranslationContext, next_call: PipelineNext) -> Any:
        raise NotImplementedError

    def terminate(self, context: TranslationContext, snapshot: Dict[str, Any]) -> None:
        return None


class ObserverPlugin(BasePlugin):
    """Reacts to lifecycle events; ``subscribe`` maps event names to methods."""

    def subscribe(self) -> Dict[str, str]:
        raise NotImplementedError

    def boot(self, pipeline: "TranslationPipeline") -> None:
        for event_name, method_name in self.subscribe().items():
            handler = getattr(self, method_name, None)
            if handler is None:
                raise PluginError(f"Plugin '{self.name}' has no handler '{method_name}'")
            pipeline.on(event_name, self._listener(handler))

    def _listener(self, handler: Callable[[PipelineEvent], None]) -> Callable[[PipelineEvent], None]:
        def _observe(event: PipelineEvent) -> None:
            if self.should_skip(event.context):
                return
            handler(event)

        return _observe


class ProviderPlugin(BasePlugin):
    """Offers named services and runs ``execute`` at the stages in ``when``."""

    def provides(self) -> List[str]:
        raise NotImplementedError

    def when(self) -> List[PipelineStage]:
        return [PipelineStage.TRANSLATION]

    def execute(self, context: TranslationContext) -> Any:
        raise NotImplementedError

    def boot(self, pipeline: "TranslationPipeline") -> None:
        for service in self.provides():
            pipeline.register_service(service, self.execute)
        for stage in self.when():
            pipeline.register_stage(stage, self._run, self.priority)

    def _run(self, context: TranslationContext) -> Any:
        if self.should_skip(context) or not self.should_provide(context):
            return None
        return self.execute(context)

    def should_provide(self, context: TranslationContext) -> bool:
        requested = list(context.request.get_option("services", []) or [])
        if requested:
            return bool(set(requested) & set(self.provides()))
        return context.current_stage in self.when()
