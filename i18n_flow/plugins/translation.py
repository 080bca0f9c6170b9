"""Translation stage: provider fragments -> decoder -> output records."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, Iterator, List, Optional

from i18n_flow.core.context import TranslationContext
from i18n_flow.core.events import EventKind, PipelineEvent
from i18n_flow.core.request import TranslationOutput
from i18n_flow.core.stages import PipelineStage
from i18n_flow.parsers.base import MalformedResponse, ParsedItem, VerificationFailed
from i18n_flow.parsers.streaming import StreamingItemDecoder
from i18n_flow.providers.base import BaseProvider

from .base import PluginError, ProviderPlugin
from .chunking import TokenChunkingPlugin

if TYPE_CHECKING:
    from i18n_flow.core.pipeline import TranslationPipeline

Emitter = Callable[[PipelineEvent], None]


def _no_emit(event: PipelineEvent) -> None:
    return None


class StreamingTranslationPlugin(ProviderPlugin):
    """
    Sends each chunk to the provider and decodes the reply as it streams.

    Every chunk gets a fresh decoder. Items are yielded as soon as they are
    complete. Keys the request never asked for become warnings (and are
    kept in plugin data). A reply that decodes to nothing, or to no
    requested key, is retried for the still-missing keys up to
    ``max_attempts`` times; after that the pass continues with a warning.
    Provider errors are not retried here and fail the stage.
    """

    name = "streaming_translation"
    priority = 50

    def __init__(self, config: Optional[Dict[str, Any]] = None, provider: Optional[BaseProvider] = None):
        super().__init__(config)
        self.provider = provider

    def default_config(self) -> Dict[str, Any]:
        return {"max_attempts": 2, "chunking_plugin": TokenChunkingPlugin.name}

    def provides(self) -> List[str]:
        return ["translation"]

    def when(self) -> List[PipelineStage]:
        return [PipelineStage.TRANSLATION]

    def boot(self, pipeline: "TranslationPipeline") -> None:
        for service in self.provides():
            pipeline.register_service(service, self.execute)
        for stage in self.when():
            pipeline.register_stage(stage, self._handler_for(pipeline), self.priority)

    def _handler_for(self, pipeline: "TranslationPipeline") -> Callable[[TranslationContext], Any]:
        def _handle(context: TranslationContext) -> Optional[Iterator[TranslationOutput]]:
            if self.should_skip(context) or not self.should_provide(context):
                return None
            return self.translate(context, emit=pipeline.emit)

        return _handle

    def execute(self, context: TranslationContext) -> Iterator[TranslationOutput]:
        return self.translate(context)

    # ------------------------------------------------------------------

    @property
    def max_attempts(self) -> int:
        return max(1, int(self.get_config_value("max_attempts", 2)))

    def _state(self, context: TranslationContext) -> Dict[str, Any]:
        state = context.get_plugin_data(self.name)
        if state is None:
            state = {"unknown_keys": [], "comments": {}, "attempts": 0, "missing": []}
            context.set_plugin_data(self.name, state)
        return state

    def chunks_for(self, context: TranslationContext) -> List[Dict[str, str]]:
        data = context.get_plugin_data(str(self.get_config_value("chunking_plugin")))
        if not data or not data.get("chunks"):
            return [dict(context.texts)] if context.texts else []
        chunks: List[Dict[str, str]] = []
        for chunk in data["chunks"]:
            texts = {key: context.texts[key] for key in chunk.texts if key in context.texts}
            if texts:
                chunks.append(texts)
        return chunks

    def translate(self, context: TranslationContext, emit: Emitter = _no_emit) -> Iterator[TranslationOutput]:
        if self.provider is None:
            raise PluginError(f"Plugin '{self.name}' has no provider configured")
        self._state(context)
        for texts in self.chunks_for(context):
            yield from self._translate_chunk(context, texts, emit)

    def _fragments(self, context: TranslationContext, texts: Dict[str, str]) -> Iterable[str]:
        result = self.provider.execute(context, texts)
        if isinstance(result, str):
            return [result]
        return result

    def _translate_chunk(
        self, context: TranslationContext, texts: Dict[str, str], emit: Emitter
    ) -> Iterator[TranslationOutput]:
        state = self._state(context)
        pending = dict(texts)
        for attempt in range(1, self.max_attempts + 1):
            requested = list(pending)
            state["attempts"] += 1

            def _started(key: str) -> None:
                if key in pending:
                    emit(PipelineEvent(EventKind.ITEM_STARTED, context, key=key))

            decoder = StreamingItemDecoder(on_started=_started)
            try:
                for fragment in self._fragments(context, dict(pending)):
                    for item in decoder.add_chunk(fragment):
                        output = self._accept(context, item, pending, attempt, emit)
                        if output is not None:
                            yield output
                decoder.verify(requested)
            except (MalformedResponse, VerificationFailed) as exc:
                message = f"Attempt {attempt}/{self.max_attempts} for {len(requested)} key(s): {exc}"
                self.logger.warning(message)
                context.add_warning(message)

            if not pending:
                return

        state["missing"].extend(pending)
        context.add_warning(f"No translation received for: {', '.join(pending)}")

    def _accept(
        self,
        context: TranslationContext,
        item: ParsedItem,
        pending: Dict[str, str],
        attempt: int,
        emit: Emitter,
    ) -> Optional[TranslationOutput]:
        state = self._state(context)
        if item.key not in context.request.texts:
            state["unknown_keys"].append(item.to_dict())
            context.add_warning(f"Provider returned unknown key '{item.key}'")
            return None
        if item.key not in pending:
            self.logger.debug("Ignoring repeated item for key %s", item.key)
            return None

        del pending[item.key]
        locale = context.request.target_locale
        context.add_translation(locale, item.key, item.translation)
        metadata: Dict[str, Any] = {"attempt": attempt, "provider": self.provider.provider_id}
        if item.comment:
            state["comments"][item.key] = item.comment
            metadata["comment"] = item.comment
        emit(PipelineEvent(EventKind.ITEM_COMPLETED, context, key=item.key))
        return TranslationOutput(
            key=item.key,
            value=item.translation,
            locale=locale,
            cached=False,
            metadata=metadata,
        )
