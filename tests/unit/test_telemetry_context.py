import asyncio

import pytest

from llm_router.telemetry import InMemoryReporter, TelemetryContext, TelemetryReporter

pytestmark = pytest.mark.unit


def test_disabled_context_is_a_shared_no_op():
    reporter = InMemoryReporter()
    ctx = TelemetryContext(reporter, enabled=False)

    with ctx("scope") as inner:
        inner.count("calls")
        inner.metric("size", 3)

    assert ctx is TelemetryContext(enabled=True)
    assert reporter.timings == {} and reporter.metrics == {}


def test_scopes_nest_and_record_parent():
    reporter = InMemoryReporter()
    ctx = TelemetryContext(reporter, enabled=True)

    with ctx("outer"), ctx("inner", model="m"):
        ctx.count("calls", 2)

    assert set(reporter.timings) == {"outer", "outer.inner"}
    (_, metadata), = reporter.timings["outer.inner"]
    assert metadata["parent_scope"] == "outer"
    assert metadata["model"] == "m"
    assert reporter.total("outer.inner.calls") == 2
    assert "outer.inner" in reporter.get_report()


def test_empty_scope_name_is_rejected():
    ctx = TelemetryContext(InMemoryReporter(), enabled=True)
    with pytest.raises(ValueError, match="non-empty"), ctx(""):
        pass


def test_failing_reporter_is_logged_not_raised(caplog):
    class Broken:
        def record_timing(self, scope, duration, **metadata):
            raise RuntimeError("sink down")

        def record_metric(self, scope, value, **metadata):
            raise RuntimeError("sink down")

    assert isinstance(Broken(), TelemetryReporter)
    ctx = TelemetryContext(Broken(), enabled=True)

    with ctx("scope"):
        ctx.count("n")

    assert caplog.text.count("Telemetry reporter 'Broken' failed") == 2


@pytest.mark.asyncio
async def test_concurrent_tasks_keep_separate_scope_paths():
    reporter = InMemoryReporter()
    ctx = TelemetryContext(reporter, enabled=True)

    async def work(name: str) -> None:
        with ctx(name):
            await asyncio.sleep(0)
            ctx.count("step")

    await asyncio.gather(work("a"), work("b"))

    assert reporter.total("a.step") == 1
    assert reporter.total("b.step") == 1



def test_counts_can_be_grouped_by_model():
    reporter = InMemoryReporter()
    ctx = TelemetryContext(reporter, enabled=True)

    ctx.count("llm.retry", model="gemini/a")
    ctx.count("llm.retry", model="gemini/a")
    ctx.count("llm.retry", model="mock/b")
    ctx.count("llm.retry")

    assert reporter.by_model("llm.retry") == {"gemini/a": 2, "mock/b": 1}
    assert reporter.total("llm.retry") == 4


def test_environment_switch(monkeypatch):
    reporter = InMemoryReporter()
    assert not reporter.metrics
    assert TelemetryContext(reporter) is TelemetryContext()

    monkeypatch.setenv("LLM_ROUTER_TELEMETRY", "1")
    TelemetryContext(reporter).count("n")
    assert reporter.total("n") == 1
