"""Classify request keys against a persisted snapshot."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from .checksum import DEFAULT_ALGORITHM, checksum
from .store import ChecksumRecord, Snapshot


@dataclass
class DiffResult:
    added: List[str] = field(default_factory=list)
    changed: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    cached_translations: Dict[str, str] = field(default_factory=dict)
    checksums: Dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.added) + len(self.changed) + len(self.unchanged)

    @property
    def pending(self) -> List[str]:
        """Keys that still need translation (changed first, then added)."""
        return self.changed + self.added

    @property
    def savings_ratio(self) -> float:
        if self.total == 0:
            return 0.0
        return len(self.unchanged) / self.total

    def has_changes(self) -> bool:
        return bool(self.added or self.changed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "added": len(self.added),
            "changed": len(self.changed),
            "unchanged": len(self.unchanged),
            "removed": len(self.removed),
            "savings_ratio": round(self.savings_ratio, 4),
        }


class DiffDetector:
    def __init__(self, algorithm: str = DEFAULT_ALGORITHM):
        self.algorithm = algorithm

    def detect(self, previous: Snapshot, texts: Mapping[str, str]) -> DiffResult:
        result = DiffResult()
        for key, text in texts.items():
            digest = checksum(text, self.algorithm)
            result.checksums[key] = digest
            record = previous.get(key)
            if record is None:
                result.added.append(key)
            elif record.checksum == digest and record.translation:
                result.unchanged.append(key)
                result.cached_translations[key] = record.translation
            else:
                # a record without a stored translation cannot be reused
                result.changed.append(key)
        result.removed = [key for key in previous if key not in texts]
        return result

    def build_snapshot(
        self, texts: Mapping[str, str], translations: Mapping[str, str]
    ) -> Dict[str, ChecksumRecord]:
        """Records for every key of ``texts`` that has a final translation."""
        records: Dict[str, ChecksumRecord] = {}
        for key, text in texts.items():
            value = translations.get(key)
            if value is None or value == "":
                continue
            records[key] = ChecksumRecord(
                key=key, checksum=checksum(text, self.algorithm), translation=str(value)
            )
        return records
