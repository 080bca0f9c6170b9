import pytest

from i18n_flow.core.context import TranslationContext
from i18n_flow.core.request import TranslationRequest
from i18n_flow.plugins.validation import (
    ValidationPlugin,
    check_html,
    check_placeholders,
    check_variables,
)


def _context(texts, translations):
    context = TranslationContext(TranslationRequest(texts, "en", "ko"))
    for key, value in translations.items():
        context.add_translation("ko", key, value)
    return context


@pytest.mark.unit
def test_individual_checks():
    assert check_html("<b>Hi</b>", "<b>안녕</b>") == []
    assert check_html("<b>Hi</b>", "안녕")[0]["type"] == "html_tag_count"

    issues = check_variables("Hi :name, {{count}} from $user", "안녕")
    assert {issue["type"] for issue in issues} == {"variables", "mustache", "php_variables"}
    assert check_variables("Hi :name", "안녕 :name") == []

    assert check_placeholders("%d of %s", "%d")[0]["type"] == "printf_placeholders"
    assert check_placeholders("Bye {user}", "안녕")[0]["message"] == "Missing {user}"


@pytest.mark.unit
def test_validation_reports_warnings():
    texts = {
        "greet": "Hello :name, you have %d <b>new</b> messages",
        "bye": "Bye {user}",
        "empty": "x",
        "missing": "y",
    }
    translations = {
        "greet": "안녕 :name, %d <b>새</b> 메시지",
        "bye": "안녕",
        "empty": "  ",
        "ghost": "boo",
    }
    context = _context(texts, translations)
    ValidationPlugin().handle(context)

    assert "[missing] missing: No translation" in context.warnings
    assert "[unknown_key] ghost: Key was not requested" in context.warnings
    assert "[empty] empty: Empty translation" in context.warnings
    assert "[named_placeholders] bye: Missing {user}" in context.warnings
    assert not any(" greet:" in warning for warning in context.warnings)

    report = context.get_plugin_data("validation")
    assert set(report) == {"missing", "ghost", "empty", "bye"}
    assert not context.has_errors()


@pytest.mark.unit
def test_validation_limits_checks_to_config():
    context = _context({"bye": "Bye {user}"}, {"bye": "안녕"})
    plugin = ValidationPlugin({"checks": ["html"]})
    assert plugin.enabled_checks() == ["html"]
    plugin.handle(context)
    assert context.warnings == []
