"""
Tokenizer and item assembler for the tagged translation format.

Grammar::

    item    := <item> key trx [comment] </item>
    key     := <key> TEXT </key>
    trx     := <trx> <![CDATA[ TEXT ]]> </trx>
    comment := <comment> <![CDATA[ TEXT ]]> </comment>

Both stages are explicit state machines. The tokenizer stops at the first
incomplete tag or CDATA section, so feeding it a growing buffer is safe:
anything it cannot finish yet is simply left for the next scan.
"""

from __future__ import annotations

import html
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from .base import ParsedItem

CDATA_OPEN = "<![CDATA["
CDATA_CLOSE = "]]>"
COMMENT_OPEN = "<!--"
COMMENT_CLOSE = "-->"


class TokenType(str, Enum):
    OPEN = "open"
    CLOSE = "close"
    CDATA = "cdata"
    TEXT = "text"


@dataclass(frozen=True)
class Token:
    type: TokenType
    value: str


class _ScanState(Enum):
    DATA = "data"
    MARKUP = "markup"


def _is_incomplete_prefix(text: str, pos: int, marker: str) -> bool:
    rest = text[pos:]
    return len(rest) < len(marker) and marker.startswith(rest)


def tokenize(text: str) -> Tuple[List[Token], int]:
    """Split ``text`` into tokens; returns them with the number of chars consumed."""
    tokens: List[Token] = []
    state = _ScanState.DATA
    pos = 0
    length = len(text)

    while pos < length:
        if state is _ScanState.DATA:
            lt = text.find("<", pos)
            if lt == -1:
                # trailing text may still grow
                break
            if lt > pos:
                tokens.append(Token(TokenType.TEXT, text[pos:lt]))
            pos = lt
            state = _ScanState.MARKUP
            continue

        # MARKUP: text[pos] == "<"
        if text.startswith(CDATA_OPEN, pos):
            end = text.find(CDATA_CLOSE, pos + len(CDATA_OPEN))
            if end == -1:
                break
            tokens.append(Token(TokenType.CDATA, text[pos + len(CDATA_OPEN):end]))
            pos = end + len(CDATA_CLOSE)
        elif text.startswith(COMMENT_OPEN, pos):
            end = text.find(COMMENT_CLOSE, pos + len(COMMENT_OPEN))
            if end == -1:
                break
            pos = end + len(COMMENT_CLOSE)
        elif _is_incomplete_prefix(text, pos, CDATA_OPEN) or _is_incomplete_prefix(text, pos, COMMENT_OPEN):
            break
        else:
            nxt = text[pos + 1:pos + 2]
            if nxt and not (nxt.isalpha() or nxt in "/?!_"):
                # a bare "<" inside text
                tokens.append(Token(TokenType.TEXT, "<"))
                pos += 1
                state = _ScanState.DATA
                continue
            gt = text.find(">", pos + 1)
            if gt == -1:
                break
            body = text[pos + 1:gt].strip()
            pos = gt + 1
            if not body or body[0] in "?!":
                pass
            elif body.startswith("/"):
                tokens.append(Token(TokenType.CLOSE, body[1:].strip().lower()))
            else:
                self_closing = body.endswith("/")
                name = body.rstrip("/").split()[0].lower() if body.rstrip("/").strip() else ""
                if name:
                    tokens.append(Token(TokenType.OPEN, name))
                    if self_closing:
                        tokens.append(Token(TokenType.CLOSE, name))
        state = _ScanState.DATA

    return tokens, pos


class _ItemState(Enum):
    OUTSIDE = "outside"
    ITEM = "item"
    KEY = "key"
    TRX = "trx"
    COMMENT = "comment"


_FIELD_STATES = {
    "key": _ItemState.KEY,
    "trx": _ItemState.TRX,
    "comment": _ItemState.COMMENT,
}


class ItemAssembler:
    """Turns a token stream into ParsedItem records.

    Unknown tags are ignored. An item that is interrupted by a new
    ``<item>`` or closed without a key and translation is abandoned.
    """

    def __init__(self) -> None:
        self._state = _ItemState.OUTSIDE
        self._buffer: List[str] = []
        self._key: Optional[str] = None
        self._translation: Optional[str] = None
        self._comment: Optional[str] = None

    @property
    def pending_key(self) -> Optional[str]:
        if self._state in (_ItemState.OUTSIDE, _ItemState.KEY):
            return None
        return self._key or None

    def _start_item(self) -> None:
        self._state = _ItemState.ITEM
        self._buffer = []
        self._key = None
        self._translation = None
        self._comment = None

    def _finish_item(self) -> Optional[ParsedItem]:
        item = None
        if self._key and self._translation is not None:
            item = ParsedItem(key=self._key, translation=self._translation, comment=self._comment)
        self._state = _ItemState.OUTSIDE
        self._key = None
        return item

    def feed(self, token: Token) -> Optional[ParsedItem]:
        state = self._state

        if token.type is TokenType.OPEN and token.value == "item":
            self._start_item()
            return None

        if state is _ItemState.OUTSIDE:
            return None

        if state is _ItemState.ITEM:
            if token.type is TokenType.OPEN and token.value in _FIELD_STATES:
                self._state = _FIELD_STATES[token.value]
                self._buffer = []
            elif token.type is TokenType.CLOSE and token.value == "item":
                return self._finish_item()
            return None

        # inside key / trx / comment
        if token.type is TokenType.CDATA:
            self._buffer.append(token.value)
        elif token.type is TokenType.TEXT:
            self._buffer.append(html.unescape(token.value))
        elif token.type is TokenType.CLOSE and token.value == state.value:
            content = "".join(self._buffer).strip()
            if state is _ItemState.KEY:
                self._key = content
            elif state is _ItemState.TRX:
                self._translation = content
            else:
                self._comment = content
            self._state = _ItemState.ITEM
        elif token.type is TokenType.CLOSE and token.value == "item":
            # field never closed
            self._state = _ItemState.OUTSIDE
            self._key = None
        return None

    def assemble(self, tokens: List[Token]) -> List[ParsedItem]:
        items: List[ParsedItem] = []
        for token in tokens:
            item = self.feed(token)
            if item is not None:
                items.append(item)
        return items
