# Prompt builder for the tagged item format.

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional
import re


_TEMPLATE_TOKEN_PATTERN = re.compile(r"\{\{([a-zA-Z_][a-zA-Z0-9_]*)\}\}")

DEFAULT_SYSTEM_TEMPLATE = (
    "You are a professional software localizer. Translate every item from "
    "{{source_locale}} to {{target_locale}}. Keep placeholders such as :name, "
    "{name} and %s, and HTML tags, exactly as they appear in the source.\n"
    "Answer only with items in this format, one per source item:\n"
    "<item><key>KEY</key><trx><![CDATA[TRANSLATION]]></trx></item>\n"
    "Optionally add <comment><![CDATA[NOTE]]></comment> before </item>."
)
DEFAULT_USER_TEMPLATE = "{{items}}"
GLOSSARY_HEADER = "Use these glossary translations:"


def _render_template(template: str, mapping: Dict[str, str]) -> str:
    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        return mapping.get(key, match.group(0))

    return _TEMPLATE_TOKEN_PATTERN.sub(_replace, template)


def format_glossary(hints: Mapping[str, Mapping[str, str]], keys: Iterable[str]) -> str:
    terms: Dict[str, str] = {}
    for key in keys:
        terms.update(hints.get(key) or {})
    if not terms:
        return ""
    lines = [GLOSSARY_HEADER] + [f"- {term} => {translation}" for term, translation in terms.items()]
    return "\n".join(lines)


def format_source_items(texts: Mapping[str, str]) -> str:
    return "\n".join(
        f"<item><key>{key}</key><source><![CDATA[{value}]]></source></item>"
        for key, value in texts.items()
    )


def build_messages(
    profile: Dict[str, Any],
    texts: Mapping[str, str],
    source_locale: str,
    target_locale: str,
    metadata: Optional[Mapping[str, Any]] = None,
) -> List[Dict[str, str]]:
    system_template = str(profile.get("system_template") or DEFAULT_SYSTEM_TEMPLATE).strip("\n")
    user_template = str(profile.get("user_template") or DEFAULT_USER_TEMPLATE).strip("\n")
    persona = str(profile.get("persona") or "").strip("\n")
    style_rules = str(profile.get("style_rules") or "").strip("\n")

    metadata = metadata or {}
    mapping = {
        "source_locale": str(source_locale or ""),
        "target_locale": str(target_locale or ""),
        "items": format_source_items(texts),
        "count": str(len(texts)),
        "domain": str(metadata.get("domain") or ""),
    }

    messages: List[Dict[str, str]] = []

    system_parts: List[str] = []
    if persona:
        system_parts.append(_render_template(persona, mapping).strip("\n"))
    if style_rules:
        system_parts.append(_render_template(style_rules, mapping).strip("\n"))
    system_parts.append(_render_template(system_template, mapping).strip("\n"))
    system_parts.append(format_glossary(metadata.get("glossary_hints") or {}, texts))

    content = "\n\n".join([part for part in system_parts if part])
    if content:
        messages.append({"role": "system", "content": content})

    messages.append({"role": "user", "content": _render_template(user_template, mapping).strip("\n")})
    return messages
