"""Mask personal data before the provider sees it; restore it afterwards."""

from __future__ import annotations

import dataclasses
import re
from typing import Any, Callable, Dict, Iterator, List, Optional, Pattern, Tuple

from i18n_flow.core.context import TranslationContext
from i18n_flow.core.pipeline import flatten_outputs
from i18n_flow.core.request import TranslationOutput

from .base import MiddlewarePlugin, PipelineNext

_SSN = re.compile(r"\b\d{3}-\d{2}-\d{4}\b")
_CARD = re.compile(r"\b(?:\d[ -]*?){13,19}\b")
_IPV4 = re.compile(
    r"\b(?:(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\.){3}(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\b"
)
_IPV6 = re.compile(r"\b(?:[A-Fa-f0-9]{1,4}:){7}[A-Fa-f0-9]{1,4}\b")
_EMAIL = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
_PHONES = [
    re.compile(r"\(\d{3}\)\s*\d{3}-\d{4}"),
    re.compile(r"\+\d{1,3}[-.\s]?\d{1,4}[-.\s]?\d{1,4}[-.\s]?\d{1,9}"),
    re.compile(r"\b\d{3}[-.\s]\d{3}[-.\s]\d{4}\b"),
]
_URL = re.compile(
    r"https?://(?:www\.)?[-a-zA-Z0-9@:%._+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b[-a-zA-Z0-9()@:%_+.~#?&/=]*"
)


def luhn_valid(number: str) -> bool:
    digits = re.sub(r"\D", "", number)
    if not 13 <= len(digits) <= 19:
        return False
    total = 0
    for idx, char in enumerate(reversed(digits)):
        digit = int(char)
        if idx % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


class PIIMasker:
    """Replaces sensitive values with ``__PII_<TYPE>_<n>__`` tokens.

    One masker covers one pass: the same value always maps to the same
    token, so a value repeated across keys is restored consistently.
    """

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.prefix = str(config.get("mask_token_prefix", "__PII_"))
        self.suffix = str(config.get("mask_token_suffix", "__"))
        self.mask_map: Dict[str, str] = {}
        self._by_value: Dict[str, str] = {}
        self._counter = 0

    def _rules(self) -> List[Tuple[Pattern[str], str, Optional[Callable[[str], bool]]]]:
        cfg = self.config
        rules: List[Tuple[Pattern[str], str, Optional[Callable[[str], bool]]]] = []
        for pattern, label in (cfg.get("mask_custom_patterns") or {}).items():
            rules.append((re.compile(pattern), str(label), None))
        if cfg.get("mask_ssn", True):
            rules.append((_SSN, "SSN", None))
        if cfg.get("mask_credit_cards", True):
            rules.append((_CARD, "CARD", luhn_valid))
        if cfg.get("mask_ips", True):
            rules.append((_IPV4, "IP", None))
            rules.append((_IPV6, "IP", None))
        if cfg.get("mask_emails", True):
            rules.append((_EMAIL, "EMAIL", None))
        if cfg.get("mask_phones", True):
            rules.extend((pattern, "PHONE", None) for pattern in _PHONES)
        if cfg.get("mask_urls", False):
            rules.append((_URL, "URL", None))
        return rules

    def _token_for(self, value: str, label: str) -> str:
        token = self._by_value.get(value)
        if token is None:
            self._counter += 1
            token = f"{self.prefix}{label}_{self._counter}{self.suffix}"
            self._by_value[value] = token
            self.mask_map[token] = value
        return token

    def mask(self, text: str) -> str:
        for pattern, label, validator in self._rules():
            def _replace(match: "re.Match[str]", label: str = label, validator=validator) -> str:
                value = match.group(0)
                if validator is not None and not validator(value):
                    return value
                return self._token_for(value, label)

            text = pattern.sub(_replace, text)
        return text

    def unmask(self, text: str) -> str:
        for token, value in self.mask_map.items():
            if token in text:
                text = text.replace(token, value)
        return text

    def stats(self) -> Dict[str, int]:
        types: Dict[str, int] = {}
        for token in self.mask_map:
            body = token[len(self.prefix):len(token) - len(self.suffix)]
            label = body.rsplit("_", 1)[0]
            types[label] = types.get(label, 0) + 1
        return types


class PIIMaskingPlugin(MiddlewarePlugin):
    name = "pii_masking"
    priority = 200

    def default_config(self) -> Dict[str, Any]:
        return {
            "mask_emails": True,
            "mask_phones": True,
            "mask_credit_cards": True,
            "mask_ssn": True,
            "mask_ips": True,
            "mask_urls": False,
            "mask_custom_patterns": {},
            "mask_token_prefix": "__PII_",
            "mask_token_suffix": "__",
        }

    def handle(self, context: TranslationContext, next_call: PipelineNext) -> Iterator[TranslationOutput]:
        masker = PIIMasker(self.config_for(context.request.tenant_id))
        context.texts = {key: masker.mask(text) for key, text in context.texts.items()}
        context.set_plugin_data(self.name, {"mask_map": masker.mask_map})
        self.logger.info(
            "PII masking applied: %d token(s) over %d text(s)", len(masker.mask_map), len(context.texts)
        )
        return self._restore(context, masker, next_call(context))

    def _restore(
        self, context: TranslationContext, masker: PIIMasker, outputs: Any
    ) -> Iterator[TranslationOutput]:
        for output in flatten_outputs(outputs):
            restored = masker.unmask(output.value)
            if restored != output.value:
                output = dataclasses.replace(output, value=restored)
            yield output
        for translations in context.translations.values():
            for key, value in translations.items():
                translations[key] = masker.unmask(value)
        context.texts = {key: masker.unmask(text) for key, text in context.texts.items()}
