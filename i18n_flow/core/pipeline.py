"""Translation pipeline: staged, plugin-extensible, lazily consumed."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterator, List, Optional, Union

from .context import TranslationContext
from .errors import PipelineError, StageExecutionError
from .events import EventDispatcher, EventKind, PipelineEvent, Subscription
from .request import TranslationOutput, TranslationRequest
from .stages import PipelineStage

if TYPE_CHECKING:
    from i18n_flow.plugins.base import BasePlugin

logger = logging.getLogger(__name__)

StageHandler = Callable[[TranslationContext], Any]
StageNext = Callable[[TranslationContext], List[Any]]
StageWrapper = Callable[[TranslationContext, StageNext], Any]
PipelineNext = Callable[[TranslationContext], Iterable[TranslationOutput]]
GlobalWrapper = Callable[[TranslationContext, PipelineNext], Any]
Terminator = Callable[[TranslationContext, Dict[str, Any]], None]
StageRef = Union[PipelineStage, str]


@dataclass
class _Registered:
    handler: Callable[..., Any]
    priority: int = 0


def _insert_by_priority(items: List[_Registered], entry: _Registered) -> None:
    items.append(entry)
    # list.sort is stable: equal priorities keep registration order
    items.sort(key=lambda item: item.priority, reverse=True)


def _wrap(wrapper: Callable[..., Any], next_call: Callable[..., Any]) -> Callable[[TranslationContext], Any]:
    def _call(context: TranslationContext) -> Any:
        return wrapper(context, next_call)

    return _call


def flatten_outputs(result: Any) -> Iterator[TranslationOutput]:
    """Yield every TranslationOutput inside ``result``.

    Handlers may return None, a single output, a list, or a (nested)
    generator. Anything else is ignored.
    """
    if result is None:
        return
    if isinstance(result, TranslationOutput):
        yield result
        return
    if isinstance(result, (str, bytes, Mapping)) or not isinstance(result, Iterable):
        logger.debug("Ignoring non-output handler result: %s", type(result).__name__)
        return
    for item in result:
        yield from flatten_outputs(item)


class TranslationPipeline:
    """
    Drives a TranslationContext through the fixed stage order.

    Stage flow:
      pre_process -> diff_detection -> preparation -> chunking -> translation
      -> consensus -> validation -> post_process -> output

    Handlers attach to stages; stage wrappers surround one stage's handler
    calls; global wrappers surround the whole stage executor. ``process``
    returns a generator, so nothing runs until the caller pulls.
    """

    def __init__(self) -> None:
        self._stages: Dict[PipelineStage, List[_Registered]] = {
            stage: [] for stage in PipelineStage.ordered()
        }
        self._stage_wrappers: Dict[PipelineStage, List[_Registered]] = {
            stage: [] for stage in PipelineStage.ordered()
        }
        self._global_wrappers: List[_Registered] = []
        self._terminators: List[_Registered] = []
        self._services: Dict[str, Callable[[TranslationContext], Any]] = {}
        self._plugins: List["BasePlugin"] = []
        self.events = EventDispatcher()
        self._context: Optional[TranslationContext] = None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_plugin(self, plugin: "BasePlugin") -> None:
        plugin.boot(self)
        self._plugins.append(plugin)
        logger.debug("Plugin attached: %s", plugin.name)

    def register_stage(self, stage: StageRef, handler: StageHandler, priority: int = 0) -> None:
        stage = PipelineStage.coerce(stage)
        _insert_by_priority(self._stages[stage], _Registered(handler, int(priority)))

    def register_stage_wrapper(self, stage: StageRef, wrapper: StageWrapper, priority: int = 0) -> None:
        stage = PipelineStage.coerce(stage)
        _insert_by_priority(self._stage_wrappers[stage], _Registered(wrapper, int(priority)))

    def register_global_wrapper(self, wrapper: GlobalWrapper, priority: int = 0) -> None:
        _insert_by_priority(self._global_wrappers, _Registered(wrapper, int(priority)))

    register_middleware = register_global_wrapper

    def register_terminator(self, terminator: Terminator, priority: int = 0) -> None:
        _insert_by_priority(self._terminators, _Registered(terminator, int(priority)))

    def register_service(self, name: str, service: Callable[[TranslationContext], Any]) -> None:
        self._services[name] = service

    def on(self, event: str, listener: Callable[[PipelineEvent], None]) -> Subscription:
        return self.events.on(event, listener)

    def emit(self, event: PipelineEvent) -> None:
        self.events.emit(event)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def process(self, request: TranslationRequest) -> Iterator[TranslationOutput]:
        context = TranslationContext(request)
        self._context = context
        try:
            self.emit(PipelineEvent(EventKind.TRANSLATION_STARTED, context))
            yield from self._execute_global_wrappers(context)
            context.complete()
            self.emit(PipelineEvent(EventKind.TRANSLATION_COMPLETED, context))
        except Exception as exc:
            context.add_error(str(exc))
            logger.error("Translation failed: %s", exc)
            self.emit(PipelineEvent(EventKind.TRANSLATION_FAILED, context, error=exc))
            raise
        finally:
            self._execute_terminators(context)

    def _execute_global_wrappers(self, context: TranslationContext) -> Iterator[TranslationOutput]:
        chain: Callable[[TranslationContext], Any] = self._execute_stages
        for registered in reversed(self._global_wrappers):
            chain = _wrap(registered.handler, chain)
        yield from flatten_outputs(chain(context))

    def _execute_stages(self, context: TranslationContext) -> Iterator[TranslationOutput]:
        for stage in PipelineStage.ordered():
            context.enter_stage(stage)
            self.emit(PipelineEvent.stage_started(context, stage))
            try:
                results = self._run_stage(stage, context)
                for output in flatten_outputs(results):
                    yield output
            except StageExecutionError:
                raise
            except Exception as exc:
                raise StageExecutionError(stage, exc) from exc
            self.emit(PipelineEvent.stage_completed(context, stage))

    def _run_stage(self, stage: PipelineStage, context: TranslationContext) -> Any:
        handlers = list(self._stages[stage])

        def _execute(ctx: TranslationContext) -> List[Any]:
            results: List[Any] = []
            for registered in handlers:
                result = registered.handler(ctx)
                if result is not None:
                    results.append(result)
            return results

        chain: Callable[[TranslationContext], Any] = _execute
        for registered in reversed(self._stage_wrappers[stage]):
            chain = _wrap(registered.handler, chain)
        return chain(context)

    def _execute_terminators(self, context: TranslationContext) -> None:
        response = context.snapshot()
        for registered in self._terminators:
            registered.handler(context, response)

    def execute_service(self, name: str, context: TranslationContext) -> Any:
        if name not in self._services:
            raise PipelineError(f"Service '{name}' not found")
        return self._services[name](context)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def context(self) -> Optional[TranslationContext]:
        return self._context

    @property
    def plugins(self) -> List["BasePlugin"]:
        return list(self._plugins)

    def has_service(self, name: str) -> bool:
        return name in self._services

    def get_services(self) -> List[str]:
        return list(self._services.keys())

    def get_stages(self) -> List[PipelineStage]:
        return PipelineStage.ordered()

    def get_stage_handlers(self, stage: StageRef) -> List[StageHandler]:
        return [item.handler for item in self._stages[PipelineStage.coerce(stage)]]

    def clear(self) -> None:
        for stage in PipelineStage.ordered():
            self._stages[stage] = []
            self._stage_wrappers[stage] = []
        self._global_wrappers = []
        self._terminators = []
        self._services = {}
        self._plugins = []
        self.events.clear()
