"""Lifecycle events -> JSON log protocol lines."""

from __future__ import annotations

from typing import Dict

from i18n_flow.core.events import PipelineEvent
from i18n_flow.utils import log_protocol

from .base import ObserverPlugin


class ProgressObserverPlugin(ObserverPlugin):
    name = "progress"
    priority = -200

    def subscribe(self) -> Dict[str, str]:
        return {
            "translation.started": "on_started",
            "stage.*.completed": "on_stage_completed",
            "item.completed": "on_item_completed",
            "translation.completed": "on_completed",
            "translation.failed": "on_failed",
        }

    def on_started(self, event: PipelineEvent) -> None:
        log_protocol.emit_progress(current=0, total=event.context.request.count(), elapsed=0.0)

    def on_stage_completed(self, event: PipelineEvent) -> None:
        log_protocol.emit_stage(str(event.stage), "completed")
        if event.stage is not None and event.stage.value == "diff_detection":
            self._emit_progress(event)

    def on_item_completed(self, event: PipelineEvent) -> None:
        if event.key is not None:
            log_protocol.emit_item(event.key, "completed")
        self._emit_progress(event)

    def on_completed(self, event: PipelineEvent) -> None:
        context = event.context
        translations = context.get_translations(context.request.target_locale)
        cached = self._cached_count(event)
        log_protocol.emit_final(
            total_time=context.duration,
            total_keys=context.request.count(),
            translated_keys=len(translations) - cached,
            cached_keys=cached,
            warnings=len(context.warnings),
            errors=len(context.errors),
            total_input_tokens=context.token_usage["input"],
            total_output_tokens=context.token_usage["output"],
        )

    def on_failed(self, event: PipelineEvent) -> None:
        stage = event.context.current_stage
        log_protocol.emit_stage(str(stage) if stage else "none", "failed")

    def _cached_count(self, event: PipelineEvent) -> int:
        data = event.context.get_plugin_data("diff_tracking")
        if not data:
            return 0
        return len(data["result"].unchanged)

    def _emit_progress(self, event: PipelineEvent) -> None:
        context = event.context
        log_protocol.emit_progress(
            current=len(context.get_translations(context.request.target_locale)),
            total=context.request.count(),
            elapsed=context.duration,
            cached=self._cached_count(event),
        )
