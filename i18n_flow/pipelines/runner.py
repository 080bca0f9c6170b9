"""Assemble a pipeline from a profile and run one request through it."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type

from i18n_flow.core.pipeline import TranslationPipeline
from i18n_flow.core.request import TranslationOutput, TranslationRequest
from i18n_flow.plugins.base import BasePlugin, PluginError
from i18n_flow.plugins.chunking import TokenChunkingPlugin
from i18n_flow.plugins.consensus import ConsensusPlugin
from i18n_flow.plugins.diff_tracking import DiffTrackingPlugin
from i18n_flow.plugins.glossary import GlossaryPlugin
from i18n_flow.plugins.manager import PluginManager
from i18n_flow.plugins.masking import PIIMaskingPlugin
from i18n_flow.plugins.progress import ProgressObserverPlugin
from i18n_flow.plugins.translation import StreamingTranslationPlugin
from i18n_flow.plugins.validation import ValidationPlugin
from i18n_flow.providers.base import BaseProvider
from i18n_flow.providers.registry import ProviderRegistry
from i18n_flow.registry.profile_store import ProfileStore

logger = logging.getLogger(__name__)

BUILTIN_PLUGINS: Dict[str, Type[BasePlugin]] = {
    PIIMaskingPlugin.name: PIIMaskingPlugin,
    DiffTrackingPlugin.name: DiffTrackingPlugin,
    GlossaryPlugin.name: GlossaryPlugin,
    TokenChunkingPlugin.name: TokenChunkingPlugin,
    StreamingTranslationPlugin.name: StreamingTranslationPlugin,
    ConsensusPlugin.name: ConsensusPlugin,
    ValidationPlugin.name: ValidationPlugin,
    ProgressObserverPlugin.name: ProgressObserverPlugin,
}

DEFAULT_PLUGINS = [
    DiffTrackingPlugin.name,
    TokenChunkingPlugin.name,
    StreamingTranslationPlugin.name,
    ValidationPlugin.name,
]


@dataclass
class RunResult:
    outputs: List[TranslationOutput] = field(default_factory=list)
    translations: Dict[str, str] = field(default_factory=dict)
    snapshot: Dict[str, Any] = field(default_factory=dict)

    @property
    def cached_count(self) -> int:
        return sum(1 for output in self.outputs if output.cached)


class PipelineRunner:
    """
    Pipeline profile keys:
      provider   provider profile id
      plugins    name -> {enabled, config, class}; defaults to the
                 diff/chunking/translation/validation set
      state_dir  snapshot directory for diff tracking
      tenants    tenant -> {plugin name: true|false}

    The consensus plugin names extra provider profiles in its own config
    (``providers`` list and optional ``judge``).
    """

    def __init__(
        self,
        store: ProfileStore,
        profile: Dict[str, Any],
        *,
        provider: Optional[BaseProvider] = None,
        state_dir: Optional[str] = None,
        json_log: bool = False,
    ):
        self.store = store
        self.profile = profile
        self.provider = provider
        self.state_dir = state_dir or profile.get("state_dir")
        self.json_log = json_log

    def _plugin_config(self) -> Dict[str, Any]:
        raw = self.profile.get("plugins")
        if isinstance(raw, Mapping) and raw:
            config = copy.deepcopy(dict(raw))
        else:
            config = {name: {"enabled": True} for name in DEFAULT_PLUGINS}
        if self.json_log:
            config.setdefault(ProgressObserverPlugin.name, {"enabled": True})
        if self.state_dir and DiffTrackingPlugin.name in config:
            entry = config[DiffTrackingPlugin.name]
            plugin_cfg = entry.setdefault("config", {})
            plugin_cfg.setdefault("storage", {})["path"] = self.state_dir
        return config

    def _resolve_provider(self) -> BaseProvider:
        if self.provider is not None:
            return self.provider
        ref = self.profile.get("provider")
        if not ref:
            raise PluginError("Pipeline profile does not name a provider")
        return ProviderRegistry(self.store).get_provider(str(ref))

    def _wire_consensus(self, plugin: ConsensusPlugin) -> None:
        # config: providers = [provider profile ids], judge = provider profile id
        registry = ProviderRegistry(self.store)
        for ref in plugin.get_config_value("providers") or []:
            plugin.providers.setdefault(str(ref), registry.get_provider(str(ref)))
        judge = plugin.get_config_value("judge")
        if judge and plugin.judge is None:
            plugin.judge = registry.get_provider(str(judge))

    def build(self, tenant: Optional[str] = None) -> Tuple[TranslationPipeline, PluginManager]:
        manager = PluginManager()
        for name, klass in BUILTIN_PLUGINS.items():
            manager.register_class(name, klass)
        manager.load_from_config(self._plugin_config())

        translator = manager.get(StreamingTranslationPlugin.name)
        if isinstance(translator, StreamingTranslationPlugin) and translator.provider is None:
            translator.provider = self._resolve_provider()

        consensus = manager.get(ConsensusPlugin.name)
        if isinstance(consensus, ConsensusPlugin):
            self._wire_consensus(consensus)

        for tenant_id, overrides in (self.profile.get("tenants") or {}).items():
            for plugin_name, enabled in (overrides or {}).items():
                if enabled:
                    manager.enable_for_tenant(str(tenant_id), str(plugin_name))
                else:
                    manager.disable_for_tenant(str(tenant_id), str(plugin_name))

        pipeline = TranslationPipeline()
        manager.boot(pipeline, tenant=tenant)
        logger.info("Pipeline ready: %s", ", ".join(p.name for p in pipeline.plugins))
        return pipeline, manager

    def run(
        self,
        texts: Mapping[str, str],
        source_locale: str,
        target_locale: str,
        *,
        domain: Optional[str] = None,
        tenant: Optional[str] = None,
    ) -> RunResult:
        pipeline, _ = self.build(tenant=tenant)
        request = TranslationRequest(
            texts=texts,
            source_locale=source_locale,
            target_locale=target_locale,
            metadata={"domain": domain} if domain else {},
            tenant_id=tenant,
        )
        outputs = list(pipeline.process(request))
        context = pipeline.context
        translated = context.get_translations(target_locale)
        merged = {key: translated[key] for key in request.texts if key in translated}
        return RunResult(outputs=outputs, translations=merged, snapshot=context.snapshot())
