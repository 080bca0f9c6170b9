"""Skip re-translating unchanged keys by diffing against the last snapshot."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from i18n_flow.core.context import TranslationContext
from i18n_flow.core.events import PipelineEvent
from i18n_flow.core.request import TranslationOutput
from i18n_flow.core.stages import PipelineStage
from i18n_flow.diff.checksum import DEFAULT_ALGORITHM
from i18n_flow.diff.detector import DiffDetector, DiffResult
from i18n_flow.diff.store import SnapshotStore

from .base import ObserverPlugin

DEFAULT_SNAPSHOT_DIR = ".i18n_flow/snapshots"


class DiffTrackingPlugin(ObserverPlugin):
    """
    Runs at diff_detection and on translation.completed.

    Unchanged keys are served from the snapshot as cached outputs and
    dropped from ``context.texts``. The snapshot is rewritten only after a
    pass completes, so a failed pass keeps the previous snapshot intact.
    Keys that disappeared from the request are reported in
    ``DiffResult.removed`` and dropped from the next snapshot.
    """

    name = "diff_tracking"
    priority = 95

    def __init__(self, config: Optional[Dict[str, Any]] = None, store: Optional[SnapshotStore] = None):
        super().__init__(config)
        self.store = store or SnapshotStore(str(self.get_config_value("storage.path", DEFAULT_SNAPSHOT_DIR)))
        self.detector = DiffDetector(str(self.get_config_value("checksums.algorithm", DEFAULT_ALGORITHM)))

    def default_config(self) -> Dict[str, Any]:
        return {
            "storage": {"path": DEFAULT_SNAPSHOT_DIR},
            "checksums": {"algorithm": DEFAULT_ALGORITHM},
        }

    def subscribe(self) -> Dict[str, str]:
        return {
            "translation.completed": "on_translation_completed",
            "translation.failed": "on_translation_failed",
        }

    def boot(self, pipeline) -> None:
        super().boot(pipeline)
        pipeline.register_stage(PipelineStage.DIFF_DETECTION, self.detect_changes, self.priority)

    def detect_changes(self, context: TranslationContext) -> Optional[List[TranslationOutput]]:
        if self.should_skip(context):
            return None
        request = context.request
        domain = request.content_domain
        # fingerprint the caller's text, not a stage-rewritten working copy
        texts = {key: request.texts.get(key, value) for key, value in context.texts.items()}

        previous = self.store.load(request.source_locale, request.target_locale, domain)
        result = self.detector.detect(previous, texts)
        context.set_plugin_data(
            self.name,
            {"result": result, "texts": texts, "domain": domain},
        )
        self._log_statistics(request.target_locale, result)

        outputs: List[TranslationOutput] = []
        for key in result.unchanged:
            value = result.cached_translations[key]
            context.add_translation(request.target_locale, key, value)
            outputs.append(
                TranslationOutput(
                    key=key,
                    value=value,
                    locale=request.target_locale,
                    cached=True,
                    metadata={"source": self.name},
                )
            )
        pending = set(result.pending)
        context.texts = {key: value for key, value in context.texts.items() if key in pending}
        return outputs

    def on_translation_completed(self, event: PipelineEvent) -> None:
        context = event.context
        data = context.get_plugin_data(self.name)
        if not data:
            return
        request = context.request
        records = self.detector.build_snapshot(
            data["texts"], context.get_translations(request.target_locale)
        )
        path = self.store.save(request.source_locale, request.target_locale, data["domain"], records)
        self.logger.info("Snapshot updated: %s (%d keys)", path, len(records))

    def on_translation_failed(self, event: PipelineEvent) -> None:
        if event.context.get_plugin_data(self.name):
            self.logger.warning("Translation failed; previous snapshot left unchanged")

    def result_for(self, context: TranslationContext) -> Optional[DiffResult]:
        data = context.get_plugin_data(self.name)
        return data["result"] if data else None

    def _log_statistics(self, locale: str, result: DiffResult) -> None:
        self.logger.info(
            "Diff detection for %s: %.2f%% unchanged (added=%d changed=%d unchanged=%d removed=%d)",
            locale,
            result.savings_ratio * 100,
            len(result.added),
            len(result.changed),
            len(result.unchanged),
            len(result.removed),
        )
        if result.removed:
            self.logger.info("Keys no longer present for %s: %s", locale, ", ".join(result.removed))
