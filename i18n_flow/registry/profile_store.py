"""YAML profile store for pipeline, provider and prompt profiles."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional
import logging
import os
import re

import yaml

logger = logging.getLogger(__name__)

PROFILE_KINDS = ["pipeline", "provider", "prompt"]
YAML_SUFFIXES = (".yaml", ".yml")

_SAFE_ID = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$")


@dataclass
class ProfileRef:
    kind: str
    profile_id: str
    path: str
    name: str


def _dump(path: str, data: Dict[str, Any]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)


def _plugins_as_mapping(entries: List[Any]) -> Dict[str, Any]:
    plugins: Dict[str, Any] = {}
    for entry in entries:
        if isinstance(entry, str):
            plugins[entry] = {"enabled": True}
            continue
        if not isinstance(entry, dict) or not entry.get("name"):
            logger.warning("Skipping malformed plugin entry: %r", entry)
            continue
        body = {k: v for k, v in entry.items() if k != "name"}
        body.setdefault("enabled", True)
        plugins[str(entry["name"])] = body
    return plugins


class ProfileStore:
    """
    Profiles live at ``<base_dir>/<kind>/<id>.yaml``.

    Ids are restricted to a safe charset and every resolved path must stay
    inside ``base_dir``. Older profile shapes are rewritten in place on load.
    """

    def __init__(self, base_dir: str):
        self.base_dir = base_dir

    @staticmethod
    def is_safe_profile_id(value: str) -> bool:
        trimmed = str(value or "").strip()
        if not trimmed or ".." in trimmed:
            return False
        return bool(_SAFE_ID.match(trimmed))

    def _kind_dir(self, kind: str) -> str:
        return os.path.join(self.base_dir, kind)

    def _inside_base(self, path: str) -> bool:
        base = os.path.normcase(os.path.abspath(self.base_dir))
        target = os.path.normcase(os.path.abspath(path))
        return target == base or target.startswith(base + os.sep)

    def _profile_id(self, path: str, data: Dict[str, Any]) -> str:
        declared = str(data.get("id") or "").strip()
        if self.is_safe_profile_id(declared):
            return declared
        return os.path.splitext(os.path.basename(path))[0]

    def ensure_dirs(self, kinds: Optional[List[str]] = None) -> None:
        for kind in kinds or PROFILE_KINDS:
            os.makedirs(self._kind_dir(kind), exist_ok=True)

    def _upgrade(self, kind: str, data: Dict[str, Any]) -> bool:
        """Rewrite legacy keys; returns True when ``data`` changed."""
        changed = False
        if kind == "provider" and "provider" in data:
            legacy = data.pop("provider")
            data.setdefault("type", str(legacy or ""))
            changed = True
        if kind == "pipeline" and isinstance(data.get("plugins"), list):
            data["plugins"] = _plugins_as_mapping(data["plugins"])
            changed = True
        return changed

    def _iter_files(self, kind: str) -> Iterator[str]:
        kind_dir = self._kind_dir(kind)
        if not os.path.isdir(kind_dir):
            return
        for name in sorted(os.listdir(kind_dir)):
            stem = os.path.splitext(name)[0]
            if name.endswith(YAML_SUFFIXES) and self.is_safe_profile_id(stem):
                yield os.path.join(kind_dir, name)

    def list_profiles(self, kind: str) -> List[ProfileRef]:
        refs = []
        for path in self._iter_files(kind):
            data = self.load_profile_by_path(path)
            refs.append(ProfileRef(kind, data["id"], path, str(data["name"])))
        return refs

    def load_profile(self, kind: str, ref: str) -> Dict[str, Any]:
        path = self.resolve_profile_path(kind, ref)
        if not path:
            raise FileNotFoundError(f"Profile not found: {kind}:{ref}")
        return self.load_profile_by_path(path)

    def load_profile_by_path(self, path: str) -> Dict[str, Any]:
        stem = os.path.splitext(os.path.basename(path))[0]
        if not self.is_safe_profile_id(stem):
            raise ValueError(f"Invalid profile id: {stem}")
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Profile is not a mapping: {path}")

        kind = os.path.basename(os.path.dirname(path))
        if self._upgrade(kind, data):
            try:
                _dump(path, data)
            except OSError as exc:
                logger.warning("Could not rewrite upgraded profile %s: %s", path, exc)

        data["id"] = self._profile_id(path, data)
        data.setdefault("name", data["id"])
        data.setdefault("_path", path)
        return data

    def save_profile(self, kind: str, profile_id: str, data: Dict[str, Any]) -> str:
        if not self.is_safe_profile_id(profile_id):
            raise ValueError(f"Invalid profile id: {profile_id}")
        self.ensure_dirs([kind])
        path = os.path.join(self._kind_dir(kind), f"{profile_id}.yaml")
        body = {k: v for k, v in data.items() if not str(k).startswith("_")}
        body["id"] = profile_id
        _dump(path, body)
        return path

    def resolve_profile_path(self, kind: str, ref: str) -> Optional[str]:
        if not ref:
            return None
        if os.path.isabs(ref):
            return ref if os.path.exists(ref) and self._inside_base(ref) else None

        stem = ref
        if ref.endswith(YAML_SUFFIXES):
            stem = os.path.splitext(ref)[0]
        if not self.is_safe_profile_id(stem):
            return None

        for filename in (ref, f"{stem}.yaml", f"{stem}.yml"):
            candidate = os.path.join(self._kind_dir(kind), filename)
            if os.path.isfile(candidate):
                return candidate
        # profiles may declare an id different from their filename
        for path in self._iter_files(kind):
            if self.load_profile_by_path(path)["id"] == stem:
                return path
        return None
