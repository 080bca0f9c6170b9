import json

import pytest
import yaml

from i18n_flow.prompts.builder import DEFAULT_USER_TEMPLATE, build_messages, format_source_items
from i18n_flow.registry.profile_store import ProfileStore
from i18n_flow.utils import log_protocol as lp


@pytest.mark.unit
def test_profile_store_save_load_and_list(tmp_path):
    store = ProfileStore(str(tmp_path))
    store.ensure_dirs()
    path = store.save_profile("pipeline", "default", {"provider": "mock", "_path": "ignored"})

    data = store.load_profile("pipeline", "default")
    assert data["id"] == "default"
    assert data["name"] == "default"
    assert data["provider"] == "mock"
    assert data["_path"] == path

    refs = store.list_profiles("pipeline")
    assert [ref.profile_id for ref in refs] == ["default"]
    assert store.list_profiles("prompt") == []


@pytest.mark.unit
def test_profile_store_rejects_unsafe_ids(tmp_path):
    store = ProfileStore(str(tmp_path))
    assert store.is_safe_profile_id("a-b_c.1")
    assert not store.is_safe_profile_id("../etc")
    assert not store.is_safe_profile_id("a/b")
    assert not store.is_safe_profile_id("")
    assert store.resolve_profile_path("pipeline", "../secret") is None
    with pytest.raises(ValueError):
        store.save_profile("pipeline", "../x", {})
    with pytest.raises(FileNotFoundError):
        store.load_profile("pipeline", "missing")


@pytest.mark.unit
def test_profile_store_normalizes_legacy_shapes(tmp_path):
    store = ProfileStore(str(tmp_path))
    store.ensure_dirs()
    provider_path = tmp_path / "provider" / "old.yaml"
    provider_path.write_text("provider: static\nresponse: hi\n", encoding="utf-8")
    pipeline_path = tmp_path / "pipeline" / "listed.yaml"
    pipeline_path.write_text(
        yaml.safe_dump(
            {"plugins": ["diff_tracking", {"name": "validation", "config": {"checks": ["html"]}}]}
        ),
        encoding="utf-8",
    )

    provider = store.load_profile("provider", "old")
    assert provider["type"] == "static"
    assert "provider" not in provider
    assert "type: static" in provider_path.read_text(encoding="utf-8")

    pipeline = store.load_profile("pipeline", "listed")
    assert pipeline["plugins"] == {
        "diff_tracking": {"enabled": True},
        "validation": {"config": {"checks": ["html"]}, "enabled": True},
    }


@pytest.mark.unit
def test_profile_store_rejects_non_mapping_yaml(tmp_path):
    store = ProfileStore(str(tmp_path))
    store.ensure_dirs(["prompt"])
    (tmp_path / "prompt" / "bad.yaml").write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError):
        store.load_profile("prompt", "bad")


@pytest.mark.unit
def test_build_messages_defaults():
    texts = {"k1": "Hello", "k2": "Bye"}
    messages = build_messages({}, texts, "en", "ko")
    assert [m["role"] for m in messages] == ["system", "user"]
    assert "from en to ko" in messages[0]["content"]
    assert messages[1]["content"] == format_source_items(texts)
    assert DEFAULT_USER_TEMPLATE == "{{items}}"


@pytest.mark.unit
def test_build_messages_custom_templates():
    profile = {
        "persona": "You localize the {{domain}} app.",
        "style_rules": "Use polite speech.",
        "system_template": "Translate {{count}} item(s) into {{target_locale}}. {{unknown}}",
        "user_template": "Items:\n{{items}}",
    }
    messages = build_messages(profile, {"k1": "Hi"}, "en", "ja", {"domain": "shop"})
    assert messages[0]["content"] == (
        "You localize the shop app.\n\nUse polite speech.\n\nTranslate 1 item(s) into ja. {{unknown}}"
    )
    assert messages[1]["content"] == "Items:\n<item><key>k1</key><source><![CDATA[Hi]]></source></item>"


@pytest.mark.unit
def test_log_protocol_lines(capsys):
    lp.emit_progress(current=1, total=4, elapsed=2.0, cached=1)
    lp.emit_warning("bad placeholder", warn_type="validation", key="k1")
    lp.emit_error("fatal", title="Oops")
    lp.emit_final(total_time=3.21, total_keys=4, translated_keys=3, cached_keys=1)

    lines = [line for line in capsys.readouterr().out.splitlines() if line]
    parsed = [(line.split(":", 1)[0], json.loads(line.split(":", 1)[1])) for line in lines]
    assert [prefix for prefix, _ in parsed] == ["JSON_PROGRESS", "JSON_WARNING", "JSON_ERROR", "JSON_FINAL"]
    progress = parsed[0][1]
    assert progress["percent"] == 25.0
    assert progress["remaining"] == 6.0
    assert parsed[1][1] == {"type": "validation", "message": "bad placeholder", "key": "k1"}
    assert parsed[2][1] == {"title": "Oops", "message": "fatal"}
    assert parsed[3][1]["totalTime"] == 3.2
    assert parsed[3][1]["cachedKeys"] == 1
