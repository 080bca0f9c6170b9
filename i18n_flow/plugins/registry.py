"""Plugin descriptor registry: metadata, shared data and statistics."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from .base import BasePlugin


@dataclass
class PluginDescriptor:
    name: str
    version: str
    priority: int
    dependencies: List[str] = field(default_factory=list)
    plugin_class: str = ""
    registered_at: float = field(default_factory=time.time)

    @classmethod
    def from_plugin(cls, plugin: "BasePlugin") -> "PluginDescriptor":
        klass = type(plugin)
        return cls(
            name=plugin.name,
            version=plugin.version,
            priority=int(plugin.priority),
            dependencies=list(plugin.dependencies),
            plugin_class=f"{klass.__module__}.{klass.__qualname__}",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "priority": self.priority,
            "dependencies": list(self.dependencies),
            "class": self.plugin_class,
            "registered_at": self.registered_at,
        }


class PluginRegistry:
    """Descriptor store owned by a PluginManager instance."""

    def __init__(self) -> None:
        self._metadata: Dict[str, PluginDescriptor] = {}
        self._data: Dict[str, Any] = {}

    def register(self, plugin: "BasePlugin") -> PluginDescriptor:
        descriptor = PluginDescriptor.from_plugin(plugin)
        self._metadata[descriptor.name] = descriptor
        return descriptor

    def unregister(self, name: str) -> None:
        self._metadata.pop(name, None)

    def get_metadata(self, name: str) -> Optional[PluginDescriptor]:
        return self._metadata.get(name)

    def all_metadata(self) -> Dict[str, PluginDescriptor]:
        return dict(self._metadata)

    def __contains__(self, name: object) -> bool:
        return name in self._metadata

    def __len__(self) -> int:
        return len(self._metadata)

    # Shared data

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def has(self, key: str) -> bool:
        return key in self._data

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    # Derived views

    def dependency_graph(self) -> Dict[str, List[str]]:
        return {name: list(meta.dependencies) for name, meta in self._metadata.items()}

    def are_dependencies_satisfied(self, name: str) -> bool:
        meta = self._metadata.get(name)
        if meta is None:
            return False
        return all(dep in self._metadata for dep in meta.dependencies)

    def by_priority(self) -> List[str]:
        ordered = sorted(self._metadata.values(), key=lambda meta: meta.priority, reverse=True)
        return [meta.name for meta in ordered]

    def statistics(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {
            "total_plugins": len(self._metadata),
            "average_dependencies": 0.0,
            "max_dependencies": 0,
            "plugins_by_priority": {},
        }
        if not self._metadata:
            return stats
        counts = [len(meta.dependencies) for meta in self._metadata.values()]
        stats["average_dependencies"] = sum(counts) / len(counts)
        stats["max_dependencies"] = max(counts)
        by_priority: Dict[int, int] = {}
        for meta in self._metadata.values():
            by_priority[meta.priority] = by_priority.get(meta.priority, 0) + 1
        stats["plugins_by_priority"] = by_priority
        return stats

    def export(self) -> Dict[str, Any]:
        return {
            "metadata": {name: meta.to_dict() for name, meta in self._metadata.items()},
            "data": dict(self._data),
            "statistics": self.statistics(),
        }

    def clear(self) -> None:
        self._metadata = {}
        self._data = {}
