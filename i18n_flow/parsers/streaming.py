"""Incremental decoder for partially delivered provider responses."""

from __future__ import annotations

import logging
import re
from typing import Callable, Collection, List, Optional, Set

from .base import MalformedResponse, ParsedItem, VerificationFailed
from .tokenizer import ItemAssembler, tokenize

logger = logging.getLogger(__name__)

ROOT_TAG = "translations"

_ESCAPED_CHAR = re.compile(r"""\\(["'\\])""")
_HAS_ROOT = re.compile(r"^\s*(<\?xml|<translations\b)", re.IGNORECASE)


def prepare(text: str) -> str:
    """Trim noise around the markup, unescape quotes and add a root element."""
    first = text.find("<")
    if first == -1:
        return ""
    last = text.rfind(">")
    if last < first:
        return ""
    body = _ESCAPED_CHAR.sub(r"\1", text[first:last + 1])
    if not _HAS_ROOT.match(body):
        body = f"<{ROOT_TAG}>{body}</{ROOT_TAG}>"
    return body


class StreamingItemDecoder:
    """
    Accumulates provider fragments and delivers each completed item once.

    Every ``add_chunk`` re-scans the whole buffer; the grammar has no
    cross-item state, so the rescan always yields the same items in the
    same order no matter where the fragment boundaries fell. A seen-keys
    set keeps delivery to ``on_item`` at most once per key. ``on_started``
    fires once per key, as soon as the key of an in-progress item is known
    (and always before ``on_item`` for that key).
    """

    def __init__(
        self,
        on_item: Optional[Callable[[ParsedItem], None]] = None,
        on_started: Optional[Callable[[str], None]] = None,
    ):
        self.on_item = on_item
        self.on_started = on_started
        self.reset()

    def reset(self) -> None:
        self._buffer = ""
        self._items: List[ParsedItem] = []
        self._seen: Set[str] = set()
        self._started: Set[str] = set()
        self._pending_key: Optional[str] = None

    def add_chunk(self, chunk: str) -> List[ParsedItem]:
        """Append a fragment; returns items completed by it."""
        if not chunk:
            return []
        self._buffer += chunk
        return self._scan()

    def parse(self, text: str) -> List[ParsedItem]:
        self.reset()
        self._buffer = text or ""
        self._scan()
        return self.items

    def _scan(self) -> List[ParsedItem]:
        tokens, _ = tokenize(prepare(self._buffer))
        assembler = ItemAssembler()
        delivered: List[ParsedItem] = []
        for token in tokens:
            item = assembler.feed(token)
            if item is None or item.key in self._seen:
                continue
            self._seen.add(item.key)
            self._items.append(item)
            delivered.append(item)
            self._notify_started(item.key)
            if self.on_item is not None:
                self.on_item(item)

        pending = assembler.pending_key
        self._pending_key = pending if pending and pending not in self._seen else None
        if self._pending_key:
            self._notify_started(self._pending_key)
        return delivered

    def _notify_started(self, key: str) -> None:
        if key in self._started:
            return
        self._started.add(key)
        if self.on_started is not None:
            self.on_started(key)

    @property
    def items(self) -> List[ParsedItem]:
        return list(self._items)

    @property
    def buffer(self) -> str:
        return self._buffer

    @property
    def pending_key(self) -> Optional[str]:
        return self._pending_key

    @property
    def is_malformed(self) -> bool:
        return bool(self._buffer.strip()) and not self._items

    def verify(self, expected_keys: Collection[str]) -> List[ParsedItem]:
        """Items whose keys were requested.

        Raises MalformedResponse when non-empty input produced nothing, and
        VerificationFailed when no decoded key was requested.
        """
        if self.is_malformed:
            raise MalformedResponse("Response contained no complete item", raw=self._buffer)
        matched = [item for item in self._items if item.key in expected_keys]
        if self._items and not matched:
            raise VerificationFailed(
                "No decoded item matches a requested key",
                keys=[item.key for item in self._items],
            )
        return matched
