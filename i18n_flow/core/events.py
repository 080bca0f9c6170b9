"""
Typed lifecycle events for the translation pipeline.

Listeners subscribe by event name. Names are either exact
(``stage.translation.completed``) or ``fnmatch`` patterns
(``stage.*.completed``). Dispatch is synchronous: every listener runs, in
subscription order, before control returns to the emitting stage.
"""

from __future__ import annotations

import fnmatch
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, List, Optional, Protocol

from .stages import PipelineStage

if TYPE_CHECKING:
    from .context import TranslationContext


class EventKind(str, Enum):
    TRANSLATION_STARTED = "translation.started"
    TRANSLATION_COMPLETED = "translation.completed"
    TRANSLATION_FAILED = "translation.failed"
    STAGE_STARTED = "stage.started"
    STAGE_COMPLETED = "stage.completed"
    ITEM_STARTED = "item.started"
    ITEM_COMPLETED = "item.completed"


@dataclass(frozen=True)
class PipelineEvent:
    kind: EventKind
    context: "TranslationContext"
    stage: Optional[PipelineStage] = None
    key: Optional[str] = None
    error: Optional[BaseException] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def name(self) -> str:
        if self.kind is EventKind.STAGE_STARTED:
            return f"stage.{self._stage_name()}.started"
        if self.kind is EventKind.STAGE_COMPLETED:
            return f"stage.{self._stage_name()}.completed"
        return self.kind.value

    def _stage_name(self) -> str:
        if self.stage is None:
            raise ValueError(f"{self.kind.value} event requires a stage")
        return self.stage.value

    @classmethod
    def stage_started(cls, context: "TranslationContext", stage: PipelineStage) -> "PipelineEvent":
        return cls(EventKind.STAGE_STARTED, context, stage=stage)

    @classmethod
    def stage_completed(cls, context: "TranslationContext", stage: PipelineStage) -> "PipelineEvent":
        return cls(EventKind.STAGE_COMPLETED, context, stage=stage)


class EventListener(Protocol):
    def __call__(self, event: PipelineEvent) -> None: ...


@dataclass(eq=False)
class Subscription:
    pattern: str
    listener: Callable[[PipelineEvent], None]

    def matches(self, event: PipelineEvent) -> bool:
        return fnmatch.fnmatchcase(event.name, self.pattern)


class EventDispatcher:
    def __init__(self) -> None:
        self._subscriptions: List[Subscription] = []

    def on(self, pattern: str, listener: Callable[[PipelineEvent], None]) -> Subscription:
        subscription = Subscription(pattern=str(pattern), listener=listener)
        self._subscriptions.append(subscription)
        return subscription

    def off(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def emit(self, event: PipelineEvent) -> None:
        for subscription in list(self._subscriptions):
            if subscription.matches(event):
                subscription.listener(event)

    def listeners_for(self, name: str) -> List[Callable[[PipelineEvent], None]]:
        return [s.listener for s in self._subscriptions if fnmatch.fnmatchcase(name, s.pattern)]

    def clear(self) -> None:
        self._subscriptions = []

    def __len__(self) -> int:
        return len(self._subscriptions)
