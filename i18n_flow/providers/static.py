"""Replay provider for dry runs and tests."""

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Mapping, Optional

from i18n_flow.core.context import TranslationContext

from .base import BaseProvider, ProviderError


def render_items(translations: Mapping[str, str]) -> str:
    parts: List[str] = []
    for key, value in translations.items():
        parts.append(f"<item><key>{key}</key><trx><![CDATA[{value}]]></trx></item>")
    return "\n".join(parts)


def split_fragments(text: str, size: int) -> List[str]:
    if size <= 0:
        return [text]
    return [text[idx:idx + size] for idx in range(0, len(text), size)]


class StaticProvider(BaseProvider):
    """
    Profile keys:
      response      raw text returned as-is for every call
      translations  key -> translation; only requested keys are rendered
      chunk_size    split the output into fragments of this many chars
    """

    def __init__(self, profile: Dict[str, Any]):
        super().__init__(profile)
        self.calls: List[Dict[str, str]] = []

    def _render(self, texts: Mapping[str, str]) -> str:
        if self.profile.get("response") is not None:
            return str(self.profile["response"])
        translations = self.profile.get("translations")
        if not isinstance(translations, Mapping):
            raise ProviderError(
                "Static provider requires 'response' or 'translations'",
                error_type="invalid_config",
            )
        return render_items({key: translations[key] for key in texts if key in translations})

    def execute(
        self, context: TranslationContext, texts: Optional[Mapping[str, str]] = None
    ) -> Iterator[str]:
        requested = dict(texts if texts is not None else context.texts)
        self.calls.append(requested)
        text = self._render(requested)
        size = int(self.profile.get("chunk_size") or 0)
        yield from split_fragments(text, size)
