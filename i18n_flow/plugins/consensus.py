"""Consensus stage: ask several providers and keep the best candidate per key."""

from __future__ import annotations

import re
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from i18n_flow.core.context import TranslationContext
from i18n_flow.core.request import TranslationOutput
from i18n_flow.core.stages import PipelineStage
from i18n_flow.parsers.base import ParserError
from i18n_flow.parsers.streaming import StreamingItemDecoder
from i18n_flow.providers.base import BaseProvider, ProviderError

from .base import PluginError, ProviderPlugin

PRIMARY = "primary"

_NUMBER = re.compile(r"\d+")

Candidates = Dict[str, str]


def decode_reply(provider: BaseProvider, context: TranslationContext, texts: Mapping[str, str]) -> Dict[str, str]:
    """Run one provider call to completion; returns requested key -> text."""
    decoder = StreamingItemDecoder()
    result = provider.execute(context, dict(texts))
    for fragment in [result] if isinstance(result, str) else result:
        decoder.add_chunk(fragment)
    return {item.key: item.translation for item in decoder.verify(list(texts))}


def judge_source(source: str, candidates: Candidates, target_locale: str) -> str:
    lines = [f"Source: {source}", f"Target language: {target_locale}", "Candidates:"]
    for index, value in enumerate(candidates.values(), start=1):
        lines.append(f"{index}. {value}")
    lines.append("Reply with the number of the most accurate and natural candidate.")
    return "\n".join(lines)


def pick_by_number(reply: str, candidates: Candidates) -> Optional[Tuple[str, str]]:
    match = _NUMBER.search(reply or "")
    if not match:
        return None
    index = int(match.group(0)) - 1
    entries = list(candidates.items())
    if 0 <= index < len(entries):
        return entries[index]
    return None


def longest(candidates: Candidates) -> Tuple[str, str]:
    return max(candidates.items(), key=lambda entry: len(entry[1]))


class ConsensusPlugin(ProviderPlugin):
    """
    Collects a candidate translation per key from every configured provider
    (plus the one the translation stage already recorded) and keeps one.

    Selection order: a value shared by at least ``min_agreement`` candidates
    and more than any other value; otherwise the judge provider's choice;
    otherwise the longest candidate. Only keys still in the working set are
    considered, so cached keys are never re-sent.

    The judge receives one item per disputed key whose source lists the
    numbered candidates and answers with the number in ``<trx>``.
    """

    name = "consensus"
    priority = 40

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        providers: Optional[Mapping[str, BaseProvider]] = None,
        judge: Optional[BaseProvider] = None,
    ):
        super().__init__(config)
        self.providers: Dict[str, BaseProvider] = dict(providers or {})
        self.judge = judge

    def default_config(self) -> Dict[str, Any]:
        return {
            "execution_mode": "parallel",
            "max_workers": 4,
            "min_agreement": 2,
            "include_primary": True,
            "fallback_on_failure": True,
        }

    def provides(self) -> List[str]:
        return ["consensus"]

    def when(self) -> List[PipelineStage]:
        return [PipelineStage.CONSENSUS]

    def _state(self, context: TranslationContext) -> Dict[str, Any]:
        state = context.get_plugin_data(self.name)
        if state is None:
            state = {"decisions": {}, "failed_providers": []}
            context.set_plugin_data(self.name, state)
        return state

    def execute(self, context: TranslationContext) -> Iterator[TranslationOutput]:
        return self.select(context)

    def select(self, context: TranslationContext) -> Iterator[TranslationOutput]:
        if not self.providers:
            raise PluginError(f"Plugin '{self.name}' has no providers configured")
        state = self._state(context)
        texts = dict(context.texts)
        if not texts:
            return
        locale = context.request.target_locale

        candidates = self._collect(context, texts)
        decided: Dict[str, Tuple[str, str, str]] = {}
        disputed: Dict[str, Candidates] = {}
        for key in texts:
            options = candidates.get(key) or {}
            if not options:
                context.add_warning(f"No consensus candidates for '{key}'")
                continue
            agreed = self._agreement(options)
            if agreed is not None:
                decided[key] = agreed
            else:
                disputed[key] = options

        decided.update(self._judge(context, disputed))

        current = context.get_translations(locale)
        for key in texts:
            if key not in decided:
                continue
            winner, value, method = decided[key]
            state["decisions"][key] = {
                "method": method,
                "provider": winner,
                "candidates": dict(candidates[key]),
            }
            if current.get(key) == value:
                continue
            context.add_translation(locale, key, value)
            yield TranslationOutput(
                key=key,
                value=value,
                locale=locale,
                metadata={"provider": winner, "consensus": method, "candidates": len(candidates[key])},
            )

    def _collect(self, context: TranslationContext, texts: Dict[str, str]) -> Dict[str, Candidates]:
        candidates: Dict[str, Candidates] = {key: {} for key in texts}
        if self.get_config_value("include_primary", True):
            recorded = context.get_translations(context.request.target_locale)
            for key in texts:
                if key in recorded:
                    candidates[key][PRIMARY] = recorded[key]

        names = list(self.providers)
        if self.get_config_value("execution_mode") == "parallel" and len(names) > 1:
            workers = max(1, min(len(names), int(self.get_config_value("max_workers", 4))))
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = [executor.submit(self._ask, context, name, texts) for name in names]
                replies = [future.result() for future in futures]
        else:
            replies = [self._ask(context, name, texts) for name in names]

        for name, reply in zip(names, replies):
            for key, value in reply.items():
                candidates[key][name] = value
        return candidates

    def _ask(self, context: TranslationContext, name: str, texts: Dict[str, str]) -> Dict[str, str]:
        try:
            return decode_reply(self.providers[name], context, texts)
        except (ProviderError, ParserError) as exc:
            if not self.get_config_value("fallback_on_failure", True):
                raise
            self.logger.warning("Consensus provider %s failed: %s", name, exc)
            self._state(context)["failed_providers"].append(name)
            context.add_warning(f"Consensus provider '{name}' failed: {exc}")
            return {}

    def _agreement(self, options: Candidates) -> Optional[Tuple[str, str, str]]:
        votes = Counter(options.values()).most_common()
        if len(votes) == 1:
            value = votes[0][0]
            return next(name for name, v in options.items() if v == value), value, "unanimous"
        (value, count), (_, runner_up) = votes[0], votes[1]
        if count >= int(self.get_config_value("min_agreement", 2)) and count > runner_up:
            return next(name for name, v in options.items() if v == value), value, "agreement"
        return None

    def _judge(
        self, context: TranslationContext, disputed: Dict[str, Candidates]
    ) -> Dict[str, Tuple[str, str, str]]:
        if not disputed:
            return {}
        decided: Dict[str, Tuple[str, str, str]] = {}
        replies: Dict[str, str] = {}
        if self.judge is not None:
            prompts = {
                key: judge_source(context.texts[key], options, context.request.target_locale)
                for key, options in disputed.items()
            }
            try:
                replies = decode_reply(self.judge, context, prompts)
            except (ProviderError, ParserError) as exc:
                self.logger.warning("Consensus judge failed: %s", exc)
                context.add_warning(f"Consensus judge failed: {exc}")

        for key, options in disputed.items():
            picked = pick_by_number(replies.get(key, ""), options)
            if picked is not None:
                decided[key] = (picked[0], picked[1], "judge")
            else:
                name, value = longest(options)
                decided[key] = (name, value, "fallback")
        return decided
