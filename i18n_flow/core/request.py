"""Request and output records exchanged with pipeline callers."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

DEFAULT_DOMAIN = "default"


@dataclass(frozen=True)
class TranslationRequest:
    """Immutable input for one pipeline pass.

    ``texts`` maps unique keys to source strings. ``metadata["domain"]``
    selects the content domain used to scope persisted diff snapshots.
    """

    texts: Mapping[str, str]
    source_locale: str
    target_locale: str
    metadata: Mapping[str, Any] = field(default_factory=dict)
    options: Mapping[str, Any] = field(default_factory=dict)
    tenant_id: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.texts, Mapping):
            raise TypeError("TranslationRequest.texts must be a mapping")
        texts = {str(key): str(value) for key, value in self.texts.items()}
        object.__setattr__(self, "texts", MappingProxyType(texts))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata or {})))
        object.__setattr__(self, "options", MappingProxyType(dict(self.options or {})))

    @property
    def content_domain(self) -> str:
        return str(self.metadata.get("domain") or DEFAULT_DOMAIN)

    def count(self) -> int:
        return len(self.texts)

    def is_empty(self) -> bool:
        return not self.texts

    def get_option(self, key: str, default: Any = None) -> Any:
        return self.options.get(key, default)

    def get_metadata(self, key: str, default: Any = None) -> Any:
        return self.metadata.get(key, default)


@dataclass
class TranslationOutput:
    key: str
    value: str
    locale: str
    cached: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "value": self.value,
            "locale": self.locale,
            "cached": self.cached,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranslationOutput":
        return cls(
            key=data["key"],
            value=data["value"],
            locale=data["locale"],
            cached=bool(data.get("cached", False)),
            metadata=dict(data.get("metadata") or {}),
        )
