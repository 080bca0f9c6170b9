"""Split the working set into provider-sized chunks by estimated token count."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from i18n_flow.core.context import TranslationContext
from i18n_flow.core.stages import PipelineStage

from .base import StagePlugin

# chars -> tokens, per dominant script
DEFAULT_MULTIPLIERS: Dict[str, float] = {
    "cjk": 1.5,
    "arabic": 0.8,
    "cyrillic": 0.7,
    "latin": 0.25,
    "devanagari": 1.0,
    "thai": 1.2,
}
TOKEN_OVERHEAD = 20

_SCRIPT_PATTERNS = {
    "cjk": re.compile(r"[一-鿿぀-ゟ゠-ヿ가-힯]"),
    "arabic": re.compile(r"[؀-ۿݐ-ݿ]"),
    "cyrillic": re.compile(r"[Ѐ-ӿ]"),
    "devanagari": re.compile(r"[ऀ-ॿ]"),
    "thai": re.compile(r"[฀-๿]"),
}


def detect_script(text: str) -> str:
    if not text:
        return "latin"
    counts = {name: len(pattern.findall(text)) for name, pattern in _SCRIPT_PATTERNS.items()}
    top = max(counts, key=lambda name: counts[name])
    if counts[top] < len(text) * 0.3:
        return "latin"
    return top


@dataclass
class TextChunk:
    index: int
    texts: Dict[str, str] = field(default_factory=dict)
    estimated_tokens: int = 0

    def keys(self) -> List[str]:
        return list(self.texts.keys())


class TokenChunkingPlugin(StagePlugin):
    """Groups keys into chunks under ``max_tokens_per_chunk * buffer_percentage``.

    A single text above the limit gets a chunk of its own; texts are never
    split, so every chunk key is a request key.
    """

    name = "token_chunking"
    priority = 100
    stage = PipelineStage.CHUNKING

    def default_config(self) -> Dict[str, Any]:
        return {
            "max_tokens_per_chunk": 2000,
            "estimation_multipliers": dict(DEFAULT_MULTIPLIERS),
            "buffer_percentage": 0.9,
        }

    @property
    def effective_max_tokens(self) -> int:
        max_tokens = int(self.get_config_value("max_tokens_per_chunk", 2000))
        buffer = float(self.get_config_value("buffer_percentage", 0.9))
        return max(1, int(max_tokens * buffer))

    def estimate_tokens(self, text: str) -> int:
        multipliers = self.get_config_value("estimation_multipliers", DEFAULT_MULTIPLIERS) or {}
        multiplier = float(multipliers.get(detect_script(text), DEFAULT_MULTIPLIERS["latin"]))
        return int(len(text) * multiplier) + TOKEN_OVERHEAD

    def create_chunks(self, texts: Mapping[str, str]) -> List[TextChunk]:
        limit = self.effective_max_tokens
        chunks: List[TextChunk] = []
        current = TextChunk(index=0)
        for key, text in texts.items():
            tokens = self.estimate_tokens(text)
            if current.texts and current.estimated_tokens + tokens > limit:
                chunks.append(current)
                current = TextChunk(index=len(chunks))
            current.texts[key] = text
            current.estimated_tokens += tokens
        if current.texts:
            chunks.append(current)
        return chunks

    def handle(self, context: TranslationContext) -> None:
        chunks = self.create_chunks(context.texts)
        context.set_plugin_data(
            self.name,
            {"chunks": chunks, "total_chunks": len(chunks)},
        )
        self.logger.debug(
            "Created %d chunk(s) for %d text(s), limit %d tokens",
            len(chunks),
            len(context.texts),
            self.effective_max_tokens,
        )
        return None
