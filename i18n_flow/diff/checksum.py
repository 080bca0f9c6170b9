"""Content fingerprints over whitespace-normalized text."""

from __future__ import annotations

import hashlib
import re

DEFAULT_ALGORITHM = "sha256"

_WHITESPACE_RUN = re.compile(r"\s+")


def normalize(text: str) -> str:
    return _WHITESPACE_RUN.sub(" ", str(text or "").strip())


def checksum(text: str, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Hex digest of the normalized text, so cosmetic spacing never counts as a change."""
    try:
        digest = hashlib.new(algorithm)
    except ValueError as exc:
        raise ValueError(f"Unsupported checksum algorithm: {algorithm}") from exc
    digest.update(normalize(text).encode("utf-8"))
    return digest.hexdigest()
