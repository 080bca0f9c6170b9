import pytest

from i18n_flow.core.context import TranslationContext
from i18n_flow.core.errors import StageExecutionError
from i18n_flow.core.pipeline import TranslationPipeline
from i18n_flow.core.request import TranslationRequest
from i18n_flow.plugins.base import PluginError
from i18n_flow.plugins.consensus import ConsensusPlugin, judge_source, longest, pick_by_number
from i18n_flow.plugins.glossary import GlossaryPlugin, load_glossary_file, normalize_glossary
from i18n_flow.plugins.manager import PluginManager
from i18n_flow.plugins.translation import StreamingTranslationPlugin
from i18n_flow.plugins.validation import ValidationPlugin
from i18n_flow.prompts.builder import GLOSSARY_HEADER, build_messages
from i18n_flow.providers.base import BaseProvider, ProviderError
from i18n_flow.providers.static import StaticProvider


class DownProvider(BaseProvider):
    def execute(self, context, texts=None):
        raise ProviderError("quota exceeded", error_type="http_error", status_code=429)


def _static(translations):
    return StaticProvider({"translations": translations})


def _pipeline(*plugins):
    manager = PluginManager()
    manager.register_many(list(plugins))
    pipeline = TranslationPipeline()
    manager.boot(pipeline)
    return pipeline


def _request(texts, **kwargs):
    return TranslationRequest(texts, "en", "ko", **kwargs)


def _context(texts, domain=None):
    return TranslationContext(_request(texts, metadata={"domain": domain} if domain else {}))


@pytest.mark.unit
def test_selection_helpers():
    candidates = {"primary": "짧음", "alt": "조금 더 긺"}
    assert pick_by_number("I pick 2.", candidates) == ("alt", "조금 더 긺")
    assert pick_by_number("7", candidates) is None
    assert pick_by_number("none", candidates) is None
    assert longest(candidates) == ("alt", "조금 더 긺")
    source = judge_source("Short", candidates, "ko")
    assert "1. 짧음" in source
    assert "2. 조금 더 긺" in source


@pytest.mark.unit
@pytest.mark.parametrize("mode", ["parallel", "sequential"])
def test_consensus_keeps_majority_value(mode):
    consensus = ConsensusPlugin(
        {"execution_mode": mode},
        providers={"alt1": _static({"k1": "하나", "k2": "두울"}), "alt2": _static({"k1": "일", "k2": "두울"})},
    )
    translator = StreamingTranslationPlugin(provider=_static({"k1": "하나", "k2": "둘"}))
    pipeline = _pipeline(translator, consensus)

    outputs = list(pipeline.process(_request({"k1": "one", "k2": "two"})))

    assert [(o.key, o.value) for o in outputs] == [("k1", "하나"), ("k2", "둘"), ("k2", "두울")]
    assert outputs[-1].metadata["consensus"] == "agreement"
    assert outputs[-1].metadata["provider"] == "alt1"
    context = pipeline.context
    assert context.get_translations("ko") == {"k1": "하나", "k2": "두울"}
    decisions = context.get_plugin_data("consensus")["decisions"]
    assert decisions["k1"]["method"] == "agreement"
    assert decisions["k2"]["candidates"] == {"primary": "둘", "alt1": "두울", "alt2": "두울"}


@pytest.mark.unit
def test_consensus_asks_judge_for_ties():
    judge = _static({"k1": "2"})
    consensus = ConsensusPlugin(providers={"alt": _static({"k1": "X"})}, judge=judge)
    translator = StreamingTranslationPlugin(provider=_static({"k1": "Y"}))
    pipeline = _pipeline(translator, consensus)

    outputs = list(pipeline.process(_request({"k1": "one"})))

    assert outputs[-1].value == "X"
    assert outputs[-1].metadata["consensus"] == "judge"
    assert "1. Y\n2. X" in judge.calls[0]["k1"]
    assert pipeline.context.get_translations("ko")["k1"] == "X"


@pytest.mark.unit
def test_consensus_falls_back_to_longest_candidate():
    consensus = ConsensusPlugin(providers={"alt": _static({"k1": "abcd"}), "down": DownProvider({})})
    translator = StreamingTranslationPlugin(provider=_static({"k1": "ab"}))
    pipeline = _pipeline(translator, consensus)

    outputs = list(pipeline.process(_request({"k1": "one"})))

    assert (outputs[-1].value, outputs[-1].metadata["consensus"]) == ("abcd", "fallback")
    state = pipeline.context.get_plugin_data("consensus")
    assert state["failed_providers"] == ["down"]
    assert any("Consensus provider 'down' failed" in w for w in pipeline.context.warnings)


@pytest.mark.unit
def test_consensus_without_primary_and_with_strict_failures():
    alone = ConsensusPlugin({"include_primary": False}, providers={"alt": _static({"k1": "X"})})
    outputs = list(_pipeline(alone).process(_request({"k1": "one"})))
    assert [(o.key, o.value, o.metadata["consensus"]) for o in outputs] == [("k1", "X", "unanimous")]

    strict = ConsensusPlugin({"fallback_on_failure": False}, providers={"down": DownProvider({})})
    with pytest.raises(StageExecutionError) as excinfo:
        list(_pipeline(strict).process(_request({"k1": "one"})))
    assert isinstance(excinfo.value.cause, ProviderError)


@pytest.mark.unit
def test_consensus_requires_providers():
    with pytest.raises(StageExecutionError) as excinfo:
        list(_pipeline(ConsensusPlugin()).process(_request({"k1": "one"})))
    assert isinstance(excinfo.value.cause, PluginError)


@pytest.mark.unit
def test_glossary_protects_terms_and_sends_hints():
    glossary = GlossaryPlugin({"terms": {"Dashboard": {"ko": "대시보드", "ja": "ダッシュボード"}, "Acme": "Acme"}})
    provider = _static({"k1": "[[TERM_0]] 대시보드 열기", "k2": "설정"})
    pipeline = _pipeline(glossary, StreamingTranslationPlugin(provider=provider), ValidationPlugin())
    seen = {}
    pipeline.on("stage.translation.started", lambda e: seen.update(e.context.metadata))

    texts = {"k1": "Open the Acme dashboard", "k2": "Settings"}
    outputs = list(pipeline.process(_request(texts)))

    assert provider.calls == [{"k1": "Open the [[TERM_0]] dashboard", "k2": "Settings"}]
    assert seen["glossary_hints"] == {"k1": {"Dashboard": "대시보드"}}
    assert [o.value for o in outputs] == ["Acme 대시보드 열기", "설정"]
    context = pipeline.context
    assert context.get_translations("ko")["k1"] == "Acme 대시보드 열기"
    assert context.texts == texts
    assert context.warnings == []
    assert context.get_plugin_data("glossary")["applied_terms"] == 2


@pytest.mark.unit
def test_glossary_warns_when_term_translation_is_missing():
    glossary = GlossaryPlugin({"terms": {"Dashboard": "대시보드"}})
    provider = _static({"k1": "대쉬보드", "k2": "대시보드들"})
    pipeline = _pipeline(glossary, StreamingTranslationPlugin(provider=provider))

    list(pipeline.process(_request({"k1": "Dashboard", "k2": "Dashboards"})))

    assert pipeline.context.warnings == ["[glossary] k1: expected '대시보드' for 'Dashboard'"]
    assert pipeline.context.get_plugin_data("glossary")["hints"] == {"k1": {"Dashboard": "대시보드"}}


@pytest.mark.unit
def test_glossary_sources_merge_by_domain(tmp_path):
    csv_path = tmp_path / "terms.csv"
    csv_path.write_text("source,locale,translation\nInvoice,ko,청구서\nInvoice,ja,請求書\n", encoding="utf-8")
    yaml_path = tmp_path / "terms.yaml"
    yaml_path.write_text("Cart: 장바구니\n", encoding="utf-8")

    assert load_glossary_file(str(csv_path)) == {"Invoice": {"ko": "청구서", "ja": "請求書"}}
    assert load_glossary_file(str(yaml_path)) == {"Cart": {"*": "장바구니"}}
    with pytest.raises(PluginError):
        load_glossary_file(str(tmp_path / "terms.txt"))
    assert normalize_glossary({"a": "b", "bad": 3}) == {"a": {"*": "b"}}

    plugin = GlossaryPlugin({"file": str(csv_path), "domains": {"shop": {"Cart": "카트"}}})
    plugin.add_term("Checkout", {"ko": "결제"})
    shop = plugin.glossary_for(_context({"k": "x"}, domain="shop"))
    assert shop == {"Invoice": {"ko": "청구서", "ja": "請求書"}, "Checkout": {"ko": "결제"}, "Cart": {"*": "카트"}}
    plugin.remove_term("Checkout")
    assert "Checkout" not in plugin.glossary_for(_context({"k": "x"}))


@pytest.mark.unit
def test_prompt_lists_glossary_terms_for_requested_keys():
    hints = {"k1": {"Dashboard": "대시보드"}, "k2": {"Invoice": "청구서"}}
    messages = build_messages({}, {"k1": "Open dashboard"}, "en", "ko", {"glossary_hints": hints})
    system = messages[0]["content"]
    assert system.endswith(f"{GLOSSARY_HEADER}\n- Dashboard => 대시보드")
    assert "Invoice" not in system
