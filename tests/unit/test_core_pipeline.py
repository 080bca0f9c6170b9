import pytest

from i18n_flow.core.errors import PipelineError, StageExecutionError
from i18n_flow.core.pipeline import TranslationPipeline, flatten_outputs
from i18n_flow.core.request import TranslationOutput, TranslationRequest
from i18n_flow.core.stages import PipelineStage


def _request():
    return TranslationRequest({"k1": "Hello", "k2": "World"}, "en", "ko")


def _out(key, value="v"):
    return TranslationOutput(key=key, value=value, locale="ko")


@pytest.mark.unit
def test_flatten_outputs_handles_nested_shapes():
    def gen():
        yield _out("c")
        yield [None, _out("d")]

    result = [None, _out("a"), [_out("b"), "noise", {"k": "v"}, 3], gen()]
    assert [o.key for o in flatten_outputs(result)] == ["a", "b", "c", "d"]
    assert list(flatten_outputs(None)) == []
    assert [o.key for o in flatten_outputs(_out("x"))] == ["x"]


@pytest.mark.unit
def test_process_is_lazy():
    pipeline = TranslationPipeline()
    calls = []

    def handler(context):
        calls.append(context.current_stage)
        return _out("k1")

    pipeline.register_stage(PipelineStage.TRANSLATION, handler)
    gen = pipeline.process(_request())
    assert calls == []
    assert [o.key for o in gen] == ["k1"]
    assert calls == [PipelineStage.TRANSLATION]


@pytest.mark.unit
def test_outputs_follow_stage_order_and_priority():
    pipeline = TranslationPipeline()
    pipeline.register_stage("validation", lambda ctx: _out("validation"))
    pipeline.register_stage(PipelineStage.TRANSLATION, lambda ctx: _out("low"), priority=1)
    pipeline.register_stage(PipelineStage.TRANSLATION, lambda ctx: _out("high"), priority=10)
    pipeline.register_stage(PipelineStage.TRANSLATION, lambda ctx: _out("low-second"), priority=1)
    pipeline.register_stage(PipelineStage.DIFF_DETECTION, lambda ctx: [_out("cached")])

    keys = [o.key for o in pipeline.process(_request())]
    assert keys == ["cached", "high", "low", "low-second", "validation"]
    assert len(pipeline.get_stage_handlers("translation")) == 3


@pytest.mark.unit
def test_stage_events_fire_in_order():
    pipeline = TranslationPipeline()
    started = []
    names = []
    pipeline.on("stage.*.started", lambda e: started.append(e.stage.value))
    pipeline.on("translation.*", lambda e: names.append(e.name))
    list(pipeline.process(_request()))
    assert started == [stage.value for stage in PipelineStage.ordered()]
    assert names == ["translation.started", "translation.completed"]
    assert pipeline.context.is_complete


@pytest.mark.unit
def test_global_wrappers_highest_priority_outermost():
    pipeline = TranslationPipeline()
    trace = []

    def make(label):
        def wrapper(context, next_call):
            trace.append(f"enter {label}")
            outputs = list(next_call(context))
            trace.append(f"exit {label}")
            return outputs

        return wrapper

    pipeline.register_global_wrapper(make("low"), priority=1)
    pipeline.register_middleware(make("high"), priority=100)
    pipeline.register_stage(PipelineStage.TRANSLATION, lambda ctx: trace.append("stage") or _out("k1"))

    assert [o.key for o in pipeline.process(_request())] == ["k1"]
    assert trace == ["enter high", "enter low", "stage", "exit low", "exit high"]


@pytest.mark.unit
def test_stage_wrapper_only_surrounds_its_stage():
    pipeline = TranslationPipeline()
    wrapped = []

    def wrapper(context, next_call):
        wrapped.append(context.current_stage.value)
        results = next_call(context)
        return results + [_out("extra")]

    pipeline.register_stage_wrapper("chunking", wrapper)
    pipeline.register_stage(PipelineStage.CHUNKING, lambda ctx: _out("chunk"))
    pipeline.register_stage(PipelineStage.TRANSLATION, lambda ctx: _out("k1"))

    assert [o.key for o in pipeline.process(_request())] == ["chunk", "extra", "k1"]
    assert wrapped == ["chunking"]


@pytest.mark.unit
def test_handler_failure_is_wrapped_and_terminators_run():
    pipeline = TranslationPipeline()
    snapshots = []
    failures = []

    def broken(context):
        raise ValueError("boom")

    pipeline.register_stage(PipelineStage.CHUNKING, broken)
    pipeline.register_stage(PipelineStage.OUTPUT, lambda ctx: _out("never"))
    pipeline.register_terminator(lambda ctx, snap: snapshots.append(snap))
    pipeline.on("translation.failed", lambda e: failures.append(e.error))

    with pytest.raises(StageExecutionError) as excinfo:
        list(pipeline.process(_request()))

    assert excinfo.value.stage is PipelineStage.CHUNKING
    assert isinstance(excinfo.value.cause, ValueError)
    assert len(snapshots) == 1
    assert snapshots[0]["currentStage"] == "chunking"
    assert "boom" in snapshots[0]["errors"][0]
    assert failures == [excinfo.value]
    assert not pipeline.context.is_complete


@pytest.mark.unit
def test_failure_inside_lazy_handler_output_is_wrapped():
    pipeline = TranslationPipeline()

    def handler(context):
        yield _out("k1")
        raise KeyError("late")

    pipeline.register_stage(PipelineStage.TRANSLATION, handler)
    gen = pipeline.process(_request())
    assert next(gen).key == "k1"
    with pytest.raises(StageExecutionError) as excinfo:
        next(gen)
    assert excinfo.value.stage is PipelineStage.TRANSLATION


@pytest.mark.unit
def test_existing_stage_error_is_not_wrapped_twice():
    pipeline = TranslationPipeline()
    original = StageExecutionError(PipelineStage.PREPARATION, RuntimeError("inner"))

    def handler(context):
        raise original

    pipeline.register_stage(PipelineStage.TRANSLATION, handler)
    with pytest.raises(StageExecutionError) as excinfo:
        list(pipeline.process(_request()))
    assert excinfo.value is original


@pytest.mark.unit
def test_terminators_run_when_consumer_stops_early():
    pipeline = TranslationPipeline()
    terminated = []
    pipeline.register_stage(PipelineStage.TRANSLATION, lambda ctx: [_out("k1"), _out("k2")])
    pipeline.register_terminator(lambda ctx, snap: terminated.append("low"), priority=1)
    pipeline.register_terminator(lambda ctx, snap: terminated.append("high"), priority=5)

    gen = pipeline.process(_request())
    assert next(gen).key == "k1"
    gen.close()
    assert terminated == ["high", "low"]


@pytest.mark.unit
def test_services_registry():
    pipeline = TranslationPipeline()
    pipeline.register_service("echo", lambda ctx: ctx.request.count())
    list(pipeline.process(_request()))
    assert pipeline.has_service("echo")
    assert pipeline.get_services() == ["echo"]
    assert pipeline.execute_service("echo", pipeline.context) == 2
    with pytest.raises(PipelineError, match="not found"):
        pipeline.execute_service("missing", pipeline.context)


@pytest.mark.unit
def test_clear_drops_registrations():
    pipeline = TranslationPipeline()
    pipeline.register_stage(PipelineStage.TRANSLATION, lambda ctx: _out("k1"))
    pipeline.register_service("svc", lambda ctx: None)
    pipeline.on("*", lambda e: None)
    pipeline.clear()
    assert list(pipeline.process(_request())) == []
    assert not pipeline.has_service("svc")
    assert len(pipeline.events) == 0
