"""Persisted diff snapshots, one JSON file per (source, target, domain)."""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping

from i18n_flow.core.request import DEFAULT_DOMAIN

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


@dataclass
class ChecksumRecord:
    key: str
    checksum: str
    translation: str

    def to_dict(self) -> Dict[str, str]:
        return {"checksum": self.checksum, "translation": self.translation}

    @classmethod
    def from_dict(cls, key: str, data: Mapping[str, Any]) -> "ChecksumRecord":
        return cls(
            key=str(key),
            checksum=str(data.get("checksum") or ""),
            translation=str(data.get("translation") or ""),
        )


Snapshot = Dict[str, ChecksumRecord]


def _safe_part(value: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", str(value or "").strip())
    return cleaned.strip(".") or "_"


class SnapshotStore:
    """
    File-backed snapshot storage.

    Each (source, target, domain) tuple owns a distinct file, so processes
    translating different locales never write to the same path. Writes go
    to a temp file in the same directory and are swapped in with
    ``os.replace``; readers see either the old or the new snapshot.
    """

    def __init__(self, base_dir: str):
        self.base_dir = base_dir

    def path_for(self, source_locale: str, target_locale: str, domain: str = DEFAULT_DOMAIN) -> str:
        name = "__".join(
            [_safe_part(source_locale), _safe_part(target_locale), _safe_part(domain or DEFAULT_DOMAIN)]
        )
        return os.path.join(self.base_dir, f"{name}.json")

    def load(self, source_locale: str, target_locale: str, domain: str = DEFAULT_DOMAIN) -> Snapshot:
        path = self.path_for(source_locale, target_locale, domain)
        if not os.path.exists(path):
            return {}
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable snapshot %s: %s", path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed snapshot %s", path)
            return {}
        snapshot: Snapshot = {}
        for key, entry in data.items():
            if isinstance(entry, Mapping):
                snapshot[str(key)] = ChecksumRecord.from_dict(key, entry)
        return snapshot

    def save(
        self,
        source_locale: str,
        target_locale: str,
        domain: str,
        records: Mapping[str, ChecksumRecord],
    ) -> str:
        path = self.path_for(source_locale, target_locale, domain)
        os.makedirs(self.base_dir, exist_ok=True)
        payload = {key: record.to_dict() for key, record in records.items()}
        tmp = tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=self.base_dir,
            prefix=".snapshot-",
            suffix=".tmp",
            delete=False,
        )
        try:
            with tmp:
                json.dump(payload, tmp, ensure_ascii=False, indent=2, sort_keys=True)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp.name, path)
        except BaseException:
            if os.path.exists(tmp.name):
                os.unlink(tmp.name)
            raise
        logger.debug("Snapshot saved: %s (%d keys)", path, len(payload))
        return path

    def delete(self, source_locale: str, target_locale: str, domain: str = DEFAULT_DOMAIN) -> bool:
        path = self.path_for(source_locale, target_locale, domain)
        if not os.path.exists(path):
            return False
        os.unlink(path)
        return True

    def list_paths(self) -> List[str]:
        if not os.path.isdir(self.base_dir):
            return []
        return sorted(
            os.path.join(self.base_dir, name)
            for name in os.listdir(self.base_dir)
            if name.endswith(".json")
        )

    def clear(self) -> int:
        paths = self.list_paths()
        for path in paths:
            os.unlink(path)
        return len(paths)
