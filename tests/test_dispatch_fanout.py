import asyncio
import threading
import time

import pytest

from evdispatch.core.context import Context
from evdispatch.core.contracts import Event, FuncHandler
from evdispatch.core.errors import ContextCancelled, DeadlineExceeded, EventNotRegistered
from evdispatch.synth.mock_handlers import FailingHandler, RecordingHandler, SlowHandler


@pytest.mark.asyncio
async def test_dispatch_unregistered_name(dispatcher, ctx):
    errs = await dispatcher.dispatch(ctx, Event("ghost", None))
    assert len(errs) == 1
    assert isinstance(errs[0], EventNotRegistered)
    assert errs[0].name == "ghost"


@pytest.mark.asyncio
async def test_dispatch_all_succeed(dispatcher, ctx):
    hs = [RecordingHandler(f"h{i}") for i in range(3)]
    for h in hs:
        dispatcher.register("event1", h)

    ev = Event("event1", {"n": 1})
    errs = await dispatcher.dispatch(ctx, ev)

    assert errs == []
    for h in hs:
        assert h.calls == 1
        assert h.events[0] is ev
        assert h.contexts[0] is ctx


@pytest.mark.asyncio
async def test_dispatch_collects_every_failure_and_runs_all(dispatcher, ctx):
    ok = [RecordingHandler(f"ok{i}") for i in range(3)]
    boom1, boom2 = RuntimeError("fail to run handler 4"), ValueError("bad payload")
    bad = [FailingHandler(boom1, label="f1"), FailingHandler(boom2, label="f2")]
    for h in ok + bad:
        dispatcher.register("event2", h)

    errs = await dispatcher.dispatch(ctx, Event("event2", {}))

    assert len(errs) == 2
    # collected verbatim, not wrapped
    assert {id(e) for e in errs} == {id(boom1), id(boom2)}
    assert all(h.calls == 1 for h in ok + bad)


@pytest.mark.asyncio
async def test_raised_exception_counts_as_failure(dispatcher, ctx):
    boom = KeyError("missing")
    raiser = FailingHandler(boom, label="raiser", raise_=True)
    after = RecordingHandler("after")
    dispatcher.register("e", raiser)
    dispatcher.register("e", after)

    errs = await dispatcher.dispatch(ctx, Event("e"))

    assert errs == [boom]
    assert after.calls == 1


@pytest.mark.asyncio
async def test_handler_cancelling_itself_is_a_collected_failure(dispatcher, ctx):
    async def gives_up(c, ev):
        fut = asyncio.get_running_loop().create_future()
        fut.cancel()
        await fut

    slow = SlowHandler(delay=0.3)
    dispatcher.register("e", FuncHandler(gives_up))
    dispatcher.register("e", slow)

    errs = await dispatcher.dispatch(ctx, Event("e"))

    # the barrier holds: the sibling ran to completion
    assert len(errs) == 1 and isinstance(errs[0], asyncio.CancelledError)
    assert slow.started == 1 and slow.finished == 1


@pytest.mark.asyncio
async def test_sync_handler_raising_cancelled_is_a_collected_failure(dispatcher, ctx):
    def gives_up(c, ev):
        raise asyncio.CancelledError()

    after = RecordingHandler("after")
    dispatcher.register("e", FuncHandler(gives_up))
    dispatcher.register("e", after)

    errs = await dispatcher.dispatch(ctx, Event("e"))

    assert len(errs) == 1 and isinstance(errs[0], asyncio.CancelledError)
    assert after.calls == 1


@pytest.mark.asyncio
async def test_cancelling_the_dispatching_task_propagates(dispatcher, ctx):
    slow = SlowHandler(delay=5.0)
    dispatcher.register("e", slow)

    task = asyncio.create_task(dispatcher.dispatch(ctx, Event("e")))
    await asyncio.sleep(0.05)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert slow.started == 1 and slow.finished == 0


@pytest.mark.asyncio
async def test_async_and_sync_handlers_mix(dispatcher, ctx):
    seen = []

    async def on_async(c, ev):
        await asyncio.sleep(0)
        seen.append(("async", ev.payload))

    def on_sync(c, ev):
        seen.append(("sync", ev.payload))

    dispatcher.register("mix", FuncHandler(on_async))
    dispatcher.register("mix", FuncHandler(on_sync))

    errs = await dispatcher.dispatch(ctx, Event("mix", 7))

    assert errs == []
    assert sorted(seen) == [("async", 7), ("sync", 7)]


@pytest.mark.asyncio
async def test_async_handlers_run_concurrently(dispatcher, ctx):
    slow = [SlowHandler(delay=0.2, label=f"s{i}") for i in range(5)]
    for h in slow:
        dispatcher.register("slow", h)

    t0 = time.perf_counter()
    errs = await dispatcher.dispatch(ctx, Event("slow"))
    elapsed = time.perf_counter() - t0

    assert errs == []
    # sequential would take ~1.0s
    assert elapsed < 0.7
    # barrier: every handler finished before dispatch returned
    assert all(h.finished == 1 for h in slow)


@pytest.mark.asyncio
async def test_sync_handlers_run_in_parallel_threads(dispatcher, ctx):
    # only passes when all three handlers are inside handle() at once
    barrier = threading.Barrier(3, timeout=2.0)

    def meet(c, ev):
        barrier.wait()

    for i in range(3):
        dispatcher.register("par", FuncHandler(meet, label=f"meet{i}"))

    errs = await dispatcher.dispatch(ctx, Event("par"))
    assert errs == []


@pytest.mark.asyncio
async def test_failure_does_not_cut_slow_sibling_short(dispatcher, ctx):
    slow = SlowHandler(delay=0.15)
    dispatcher.register("e", FailingHandler(label="fast-fail"))
    dispatcher.register("e", slow)

    errs = await dispatcher.dispatch(ctx, Event("e"))

    assert len(errs) == 1
    assert slow.finished == 1


@pytest.mark.asyncio
async def test_cancelled_context_is_forwarded_not_enforced(dispatcher):
    ctx = Context.background().with_cancel()
    ctx.cancel()
    plain = RecordingHandler("plain")
    slow = SlowHandler(delay=1.0)
    dispatcher.register("e", plain)
    dispatcher.register("e", slow)

    errs = await dispatcher.dispatch(ctx, Event("e"))

    # the dispatcher still delivers; only the context-aware handler gives up
    assert plain.calls == 1
    assert len(errs) == 1 and isinstance(errs[0], ContextCancelled)


@pytest.mark.asyncio
async def test_deadline_observed_by_handler(dispatcher):
    ctx = Context.background().with_timeout(0.05)
    dispatcher.register("e", SlowHandler(delay=2.0))

    t0 = time.perf_counter()
    errs = await dispatcher.dispatch(ctx, Event("e"))

    assert time.perf_counter() - t0 < 1.0
    assert len(errs) == 1 and isinstance(errs[0], DeadlineExceeded)


@pytest.mark.asyncio
async def test_registry_changes_during_dispatch_affect_next_dispatch_only(dispatcher, ctx):
    late = RecordingHandler("late")

    def add_late(c, ev):
        if not dispatcher.has("e", late):
            dispatcher.register("e", late)

    dispatcher.register("e", FuncHandler(add_late))

    assert await dispatcher.dispatch(ctx, Event("e")) == []
    assert late.calls == 0

    assert await dispatcher.dispatch(ctx, Event("e")) == []
    assert late.calls == 1


@pytest.mark.asyncio
async def test_dispatch_after_clear_is_unregistered(dispatcher, ctx):
    h = RecordingHandler()
    dispatcher.register("e", h)
    dispatcher.clear()

    errs = await dispatcher.dispatch(ctx, Event("e"))

    assert len(errs) == 1 and isinstance(errs[0], EventNotRegistered)
    assert h.calls == 0


@pytest.mark.asyncio
async def test_any_event_like_object_dispatches(dispatcher, ctx):
    class Raw:
        name = "raw"
        payload = b"\x00"

    h = RecordingHandler()
    dispatcher.register("raw", h)
    assert await dispatcher.dispatch(ctx, Raw()) == []
    assert h.events[0].payload == b"\x00"


@pytest.mark.asyncio
async def test_order_created_scenario(dispatcher, ctx):
    a, b = RecordingHandler("A"), RecordingHandler("B")
    dispatcher.register("order.created", a)
    dispatcher.register("order.created", b)

    errs = await dispatcher.dispatch(ctx, Event("order.created", {"id": 42}))

    assert errs == []
    for h in (a, b):
        assert h.calls == 1
        assert h.events[0].payload == {"id": 42}
