"""Request-scoped state threaded through every pipeline stage."""

from __future__ import annotations

import threading
import time
from typing import Any, Dict, List, Optional

from .errors import PipelineError
from .request import TranslationRequest
from .stages import PipelineStage


class TranslationContext:
    """Mutable record of one pass through the pipeline.

    ``texts`` starts as a copy of the request texts and may shrink as stages
    filter the working set (diff detection drops unchanged keys).
    ``errors`` and ``warnings`` are append-only; use ``add_error`` and
    ``add_warning``.
    """

    def __init__(self, request: TranslationRequest):
        self.request = request
        self.texts: Dict[str, str] = dict(request.texts)
        self.translations: Dict[str, Dict[str, str]] = {}
        self.metadata: Dict[str, Any] = dict(request.metadata)
        self.state: Dict[str, Any] = {}
        self.errors: List[str] = []
        self.warnings: List[str] = []
        self.plugin_data: Dict[str, Any] = {}
        self.current_stage: Optional[PipelineStage] = None
        self.token_usage: Dict[str, int] = {"input": 0, "output": 0, "total": 0}
        self.start_time: float = time.time()
        self.end_time: Optional[float] = None
        self._usage_lock = threading.Lock()

    def enter_stage(self, stage: PipelineStage) -> None:
        stage = PipelineStage.coerce(stage)
        if self.current_stage is not None and stage.index <= self.current_stage.index:
            raise PipelineError(
                f"Stage order violation: {self.current_stage.value} -> {stage.value}"
            )
        self.current_stage = stage

    def get_plugin_data(self, plugin_name: str, default: Any = None) -> Any:
        return self.plugin_data.get(plugin_name, default)

    def set_plugin_data(self, plugin_name: str, data: Any) -> None:
        self.plugin_data[plugin_name] = data

    def add_translation(self, locale: str, key: str, translation: str) -> None:
        self.translations.setdefault(locale, {})[key] = translation

    def get_translations(self, locale: str) -> Dict[str, str]:
        return self.translations.get(locale, {})

    def add_error(self, error: str) -> None:
        self.errors.append(str(error))

    def add_warning(self, warning: str) -> None:
        self.warnings.append(str(warning))

    def has_errors(self) -> bool:
        return bool(self.errors)

    def add_token_usage(self, input_tokens: int, output_tokens: int) -> None:
        # providers may report from worker threads
        with self._usage_lock:
            self.token_usage["input"] += int(input_tokens or 0)
            self.token_usage["output"] += int(output_tokens or 0)
            self.token_usage["total"] = self.token_usage["input"] + self.token_usage["output"]

    def complete(self) -> None:
        self.end_time = time.time()

    @property
    def is_complete(self) -> bool:
        return self.end_time is not None

    @property
    def duration(self) -> float:
        end = self.end_time if self.end_time is not None else time.time()
        return end - self.start_time

    def snapshot(self) -> Dict[str, Any]:
        return {
            "texts": dict(self.texts),
            "translations": {locale: dict(items) for locale, items in self.translations.items()},
            "metadata": dict(self.metadata),
            "state": dict(self.state),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "currentStage": self.current_stage.value if self.current_stage else None,
            "tokenUsage": dict(self.token_usage),
            "duration": self.duration,
        }
