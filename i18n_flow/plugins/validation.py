"""Post-translation checks that surface problems as warnings."""

from __future__ import annotations

import re
from typing import Any, Dict, List

from i18n_flow.core.context import TranslationContext
from i18n_flow.core.stages import PipelineStage

from .base import StagePlugin

_HTML_TAG = re.compile(r"<[^>]+>")
_LARAVEL_VAR = re.compile(r":\w+")
_MUSTACHE_VAR = re.compile(r"\{\{[^}]+\}\}")
_PHP_VAR = re.compile(r"\$\w+")
_PRINTF = re.compile(r"%[sdifFeEgGxXobBcpn]")
_NAMED = re.compile(r"[\{\[][\w\s]+[\}\]]")

Issue = Dict[str, Any]


def check_html(source: str, translation: str) -> List[Issue]:
    issues: List[Issue] = []
    src_tags = _HTML_TAG.findall(source)
    dst_tags = _HTML_TAG.findall(translation)
    if len(src_tags) != len(dst_tags):
        issues.append({
            "type": "html_tag_count",
            "message": f"HTML tag count mismatch ({len(src_tags)} vs {len(dst_tags)})",
        })
    return issues


def check_variables(source: str, translation: str) -> List[Issue]:
    issues: List[Issue] = []
    for label, pattern in (("variables", _LARAVEL_VAR), ("mustache", _MUSTACHE_VAR), ("php_variables", _PHP_VAR)):
        missing = sorted(set(pattern.findall(source)) - set(pattern.findall(translation)))
        if missing:
            issues.append({"type": label, "message": f"Missing {', '.join(missing)}"})
    return issues


def check_placeholders(source: str, translation: str) -> List[Issue]:
    issues: List[Issue] = []
    src_printf = _PRINTF.findall(source)
    dst_printf = _PRINTF.findall(translation)
    if len(src_printf) != len(dst_printf):
        issues.append({
            "type": "printf_placeholders",
            "message": f"Printf placeholder count mismatch ({len(src_printf)} vs {len(dst_printf)})",
        })
    missing = sorted(set(_NAMED.findall(source)) - set(_NAMED.findall(translation)))
    if missing:
        issues.append({"type": "named_placeholders", "message": f"Missing {', '.join(missing)}"})
    return issues


CHECKS = {
    "html": check_html,
    "variables": check_variables,
    "placeholders": check_placeholders,
}


class ValidationPlugin(StagePlugin):
    """Compares each final translation with its source.

    Also reports requested keys without a translation, translations for
    keys that were never requested, and empty translations.
    """

    name = "validation"
    priority = -100
    stage = PipelineStage.VALIDATION

    def default_config(self) -> Dict[str, Any]:
        return {"checks": ["all"]}

    def enabled_checks(self) -> List[str]:
        configured = list(self.get_config_value("checks", ["all"]) or [])
        if "all" in configured:
            return list(CHECKS)
        return [name for name in configured if name in CHECKS]

    def handle(self, context: TranslationContext) -> None:
        request = context.request
        translations = context.get_translations(request.target_locale)
        # working texts carry the same rewrites (masking) as fresh translations
        sources = {**dict(request.texts), **context.texts}
        report: Dict[str, List[Issue]] = {}

        for key in request.texts:
            if key not in translations:
                report.setdefault(key, []).append({"type": "missing", "message": "No translation"})
        for key, value in translations.items():
            if key not in request.texts:
                report.setdefault(key, []).append({"type": "unknown_key", "message": "Key was not requested"})
                continue
            if not str(value).strip():
                report.setdefault(key, []).append({"type": "empty", "message": "Empty translation"})
                continue
            for check in self.enabled_checks():
                issues = CHECKS[check](sources[key], value)
                if issues:
                    report.setdefault(key, []).extend(issues)

        for key, issues in report.items():
            for issue in issues:
                context.add_warning(f"[{issue['type']}] {key}: {issue['message']}")
        context.set_plugin_data(self.name, report)
        if report:
            self.logger.info("Validation flagged %d key(s)", len(report))
        return None
