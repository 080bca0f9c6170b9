import pytest

from i18n_flow.core.context import TranslationContext
from i18n_flow.core.events import EventDispatcher, EventKind, PipelineEvent
from i18n_flow.core.request import TranslationRequest
from i18n_flow.core.stages import PipelineStage


def _context():
    return TranslationContext(TranslationRequest({"k": "v"}, "en", "ko"))


@pytest.mark.unit
def test_event_names():
    context = _context()
    assert PipelineEvent(EventKind.TRANSLATION_STARTED, context).name == "translation.started"
    event = PipelineEvent.stage_completed(context, PipelineStage.TRANSLATION)
    assert event.name == "stage.translation.completed"
    with pytest.raises(ValueError):
        _ = PipelineEvent(EventKind.STAGE_STARTED, context).name


@pytest.mark.unit
def test_dispatcher_wildcard_and_exact_patterns():
    context = _context()
    dispatcher = EventDispatcher()
    seen = []
    dispatcher.on("stage.*.completed", lambda e: seen.append(("wild", e.name)))
    dispatcher.on("stage.validation.completed", lambda e: seen.append(("exact", e.name)))

    dispatcher.emit(PipelineEvent.stage_started(context, PipelineStage.VALIDATION))
    dispatcher.emit(PipelineEvent.stage_completed(context, PipelineStage.CHUNKING))
    dispatcher.emit(PipelineEvent.stage_completed(context, PipelineStage.VALIDATION))

    assert seen == [
        ("wild", "stage.chunking.completed"),
        ("wild", "stage.validation.completed"),
        ("exact", "stage.validation.completed"),
    ]
    assert len(dispatcher.listeners_for("stage.validation.completed")) == 2


@pytest.mark.unit
def test_dispatcher_off_and_clear():
    context = _context()
    dispatcher = EventDispatcher()
    seen = []
    sub = dispatcher.on("item.*", lambda e: seen.append(e.key))
    dispatcher.emit(PipelineEvent(EventKind.ITEM_COMPLETED, context, key="a"))
    dispatcher.off(sub)
    dispatcher.emit(PipelineEvent(EventKind.ITEM_COMPLETED, context, key="b"))
    assert seen == ["a"]

    dispatcher.on("*", lambda e: None)
    assert len(dispatcher) == 1
    dispatcher.clear()
    assert len(dispatcher) == 0
