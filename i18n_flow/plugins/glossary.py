"""Glossary terms: translation hints for the provider and protected terms."""

from __future__ import annotations

import csv
import json
import os
import re
from typing import TYPE_CHECKING, Any, Dict, Iterator, Mapping, Optional, Pattern

import yaml

from i18n_flow.core.context import TranslationContext
from i18n_flow.core.pipeline import flatten_outputs
from i18n_flow.core.request import TranslationOutput
from i18n_flow.core.stages import PipelineStage

from .base import PipelineNext, PluginError, StagePlugin

if TYPE_CHECKING:
    from i18n_flow.core.pipeline import TranslationPipeline

ANY_LOCALE = "*"
HINTS_KEY = "glossary_hints"

Glossary = Dict[str, Dict[str, str]]


def normalize_glossary(raw: Mapping[str, Any]) -> Glossary:
    """``term -> str`` becomes ``term -> {"*": str}``; mappings are kept."""
    glossary: Glossary = {}
    for term, value in (raw or {}).items():
        if isinstance(value, str):
            glossary[str(term)] = {ANY_LOCALE: value}
        elif isinstance(value, Mapping):
            glossary[str(term)] = {str(locale): str(text) for locale, text in value.items()}
    return glossary


def load_glossary_file(path: str) -> Glossary:
    """JSON or YAML mapping, or CSV rows of ``source,locale,translation``."""
    ext = os.path.splitext(path)[1].lower()
    if ext not in (".json", ".yaml", ".yml", ".csv"):
        raise PluginError(f"Unsupported glossary file: {path}")
    with open(path, "r", encoding="utf-8", newline="") as f:
        if ext == ".json":
            data = json.load(f)
        elif ext == ".csv":
            data = {}
            rows = csv.reader(f)
            next(rows, None)  # header
            for row in rows:
                if len(row) >= 3 and row[0]:
                    data.setdefault(row[0], {})[row[1]] = row[2]
        else:
            data = yaml.safe_load(f) or {}
    if not isinstance(data, Mapping):
        raise PluginError(f"Glossary file is not a mapping: {path}")
    return normalize_glossary(data)


class GlossaryPlugin(StagePlugin):
    """
    Runs at preparation. For each working text it records which glossary
    terms occur and how they translate into the target locale; providers
    receive these as ``context.metadata["glossary_hints"]`` (key -> term ->
    translation). Terms that must stay untranslated are swapped for
    ``[[TERM_n]]`` markers before translation and restored in every output
    (and in the working texts before validation). Outputs that miss an expected term translation produce a warning.

    Config:
      terms              term -> translation or {locale: translation}
      domains            domain -> terms, merged for the request's domain
      file               JSON, YAML or CSV glossary file
      preserve           extra terms kept verbatim
      case_sensitive     default False
      whole_words        default True
    """

    name = "glossary"
    priority = 80
    stage = PipelineStage.PREPARATION

    def default_config(self) -> Dict[str, Any]:
        return {
            "terms": {},
            "domains": {},
            "file": None,
            "preserve": [],
            "case_sensitive": False,
            "whole_words": True,
        }

    def boot(self, pipeline: "TranslationPipeline") -> None:
        super().boot(pipeline)
        for stage in (PipelineStage.TRANSLATION, PipelineStage.CONSENSUS):
            pipeline.register_stage_wrapper(stage, self._restore_stage, self.priority)
        # validation compares against the working texts, so unmark them first
        pipeline.register_stage(PipelineStage.VALIDATION, self._restore_texts, self.priority)

    # Term management

    def add_term(self, term: str, translations: Any) -> None:
        terms = dict(self.get_config_value("terms") or {})
        terms[term] = translations
        self.configure({"terms": terms})

    def remove_term(self, term: str) -> None:
        terms = dict(self.get_config_value("terms") or {})
        terms.pop(term, None)
        self.configure({"terms": terms})

    def glossary_for(self, context: TranslationContext) -> Glossary:
        glossary: Glossary = {}
        path = self.get_config_value("file")
        if path:
            if os.path.exists(path):
                glossary.update(load_glossary_file(str(path)))
            else:
                self.logger.warning("Glossary file not found: %s", path)
        glossary.update(normalize_glossary(self.get_config_value("terms") or {}))
        domains = self.get_config_value("domains") or {}
        glossary.update(normalize_glossary(domains.get(context.request.content_domain) or {}))
        return glossary

    def _pattern(self, term: str) -> Pattern[str]:
        body = re.escape(term)
        if self.get_config_value("whole_words", True):
            body = rf"(?<!\w){body}(?!\w)"
        flags = 0 if self.get_config_value("case_sensitive", False) else re.IGNORECASE
        return re.compile(body, flags)

    @staticmethod
    def translation_for(entry: Mapping[str, str], locale: str) -> Optional[str]:
        if locale in entry:
            return entry[locale]
        return entry.get(ANY_LOCALE)

    def is_preserved(self, term: str, entry: Mapping[str, str]) -> bool:
        if entry.get(ANY_LOCALE) == term:
            return True
        return term in (self.get_config_value("preserve") or [])

    # Stages

    def handle(self, context: TranslationContext) -> None:
        glossary = self.glossary_for(context)
        if not glossary:
            self.logger.debug("No glossary terms to apply")
            return None
        locale = context.request.target_locale
        hints: Dict[str, Dict[str, str]] = {}
        markers: Dict[str, str] = {}
        applied = 0

        for key, text in list(context.texts.items()):
            for term, entry in glossary.items():
                pattern = self._pattern(term)
                if not pattern.search(text):
                    continue
                applied += 1
                if self.is_preserved(term, entry):
                    marker = markers.setdefault(term, f"[[TERM_{len(markers)}]]")
                    text = pattern.sub(lambda _m, marker=marker: marker, text)
                    continue
                translation = self.translation_for(entry, locale)
                if translation is not None:
                    hints.setdefault(key, {})[term] = translation
            context.texts[key] = text

        if hints:
            context.metadata[HINTS_KEY] = hints
        context.set_plugin_data(self.name, {
            "glossary": glossary,
            "hints": hints,
            "markers": {marker: term for term, marker in markers.items()},
            "applied_terms": applied,
        })
        self.logger.info("Applied %d glossary term(s)", applied)
        return None

    def restore(self, context: TranslationContext, text: str) -> str:
        data = context.get_plugin_data(self.name) or {}
        for marker, term in (data.get("markers") or {}).items():
            text = text.replace(marker, term)
        return text

    def _restore_stage(self, context: TranslationContext, next_call: PipelineNext) -> Any:
        results = next_call(context)
        if self.should_skip(context) or not context.get_plugin_data(self.name):
            return results
        return self._restore_outputs(context, flatten_outputs(results))

    def _restore_outputs(
        self, context: TranslationContext, outputs: Iterator[TranslationOutput]
    ) -> Iterator[TranslationOutput]:
        hints = (context.get_plugin_data(self.name) or {}).get("hints") or {}
        for output in outputs:
            restored = self.restore(context, output.value)
            if restored != output.value:
                output.value = restored
                context.add_translation(output.locale, output.key, restored)
            for term, expected in (hints.get(output.key) or {}).items():
                if expected not in restored:
                    context.add_warning(f"[glossary] {output.key}: expected '{expected}' for '{term}'")
            yield output

    def _restore_texts(self, context: TranslationContext) -> None:
        if self.should_skip(context) or not context.get_plugin_data(self.name):
            return None
        context.texts = {key: self.restore(context, text) for key, text in context.texts.items()}
        return None
