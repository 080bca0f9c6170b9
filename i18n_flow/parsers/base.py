"""Decoded item records and decoder errors."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional


@dataclass(frozen=True)
class ParsedItem:
    key: str
    translation: str
    comment: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"key": self.key, "translation": self.translation}
        if self.comment is not None:
            data["comment"] = self.comment
        return data


class ParserError(RuntimeError):
    pass


class MalformedResponse(ParserError):
    """Non-empty provider text that yielded no complete item."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class VerificationFailed(ParserError):
    """Decoded items exist but none matches a requested key."""

    def __init__(self, message: str, keys: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.keys: List[str] = list(keys or [])
