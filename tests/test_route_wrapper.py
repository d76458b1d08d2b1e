"""
Route Wrapper Tests

Test Coverage:
- Call semantics of wrapped sync and async handlers
- Context activation and release around the handler
- Route selection and idempotent wrapping
"""

import asyncio
import inspect
from unittest.mock import MagicMock

import pytest
from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.trace import NonRecordingSpan, SpanContext

from request_tracing.api import TRACE_STATE_KEY, RequestTraceState
from request_tracing.route_wrapper import RouteWrapper, context_from_scope, is_wrapped, wrap_handler
from request_tracing.routes import build_route_matcher

SPAN = NonRecordingSpan(SpanContext(trace_id=0x10, span_id=0x20, is_remote=False))
SPAN_CONTEXT = trace.set_span_in_context(SPAN, Context())


def always_span_context(*args, **kwargs):
    return SPAN_CONTEXT


def no_context(*args, **kwargs):
    return None


def current_span_id():
    return trace.get_current_span().get_span_context().span_id


class TestWrapSyncHandler:

    def test_forwards_arguments_and_result(self):
        def handler(a, b, *, c):
            return (a, b, c, current_span_id())

        wrapped = wrap_handler(handler, always_span_context)

        assert wrapped(1, 2, c=3) == (1, 2, 3, 0x20)
        assert wrapped.__name__ == "handler"
        assert not inspect.iscoroutinefunction(wrapped)
        assert is_wrapped(wrapped)

    def test_context_released_after_call(self):
        wrapped = wrap_handler(lambda: current_span_id(), always_span_context)

        assert wrapped() == 0x20
        assert current_span_id() == 0

    def test_exception_propagates_and_context_released(self):
        def handler():
            raise ValueError("bad input")

        wrapped = wrap_handler(handler, always_span_context)

        with pytest.raises(ValueError, match="bad input"):
            wrapped()
        assert current_span_id() == 0

    def test_preserves_receiver_of_bound_method(self):
        class Service:
            def handle(self, value):
                return self, value

        service = Service()
        wrapped = wrap_handler(service.handle, always_span_context)

        receiver, value = wrapped("x")

        assert receiver is service
        assert value == "x"

    def test_preserves_receiver_when_installed_as_method(self):
        class Service:
            def handle(self, value):
                return self, value

        Service.handle = wrap_handler(Service.handle, always_span_context)
        service = Service()

        receiver, value = service.handle("y")

        assert receiver is service
        assert value == "y"

    def test_no_context_calls_handler_directly(self):
        wrapped = wrap_handler(lambda: current_span_id(), no_context)

        assert wrapped() == 0

    def test_resolver_receives_handler_arguments(self):
        resolver = MagicMock(return_value=None)
        wrapped = wrap_handler(lambda *args, **kwargs: "ok", resolver)

        wrapped(1, key="value")

        resolver.assert_called_once_with(1, key="value")


class TestWrapAsyncHandler:

    def test_stays_a_coroutine_function(self):
        async def handler():
            return "ok"

        wrapped = wrap_handler(handler, always_span_context)

        assert inspect.iscoroutinefunction(wrapped)
        assert asyncio.run(wrapped()) == "ok"

    def test_context_held_across_awaits(self):
        async def handler(delay):
            before = current_span_id()
            await asyncio.sleep(delay)
            return before, current_span_id()

        async def run():
            wrapped = wrap_handler(handler, always_span_context)
            result = await wrapped(0.01)
            return result, current_span_id()

        (before, after), outside = asyncio.run(run())

        assert before == 0x20
        assert after == 0x20
        assert outside == 0

    def test_rejection_propagates(self):
        async def handler():
            await asyncio.sleep(0)
            raise LookupError("not found")

        wrapped = wrap_handler(handler, always_span_context)

        with pytest.raises(LookupError, match="not found"):
            asyncio.run(wrapped())

    def test_forced_async_for_awaitable_returning_callable(self):
        class AsgiApp:
            def __init__(self):
                self.seen = None

            def __call__(self, scope, receive, send):
                return self.run(scope)

            async def run(self, scope):
                self.seen = current_span_id()
                return scope["path"]

        app = AsgiApp()
        wrapped = wrap_handler(app, always_span_context, is_async=True)

        assert asyncio.run(wrapped({"path": "/x"}, None, None)) == "/x"
        assert app.seen == 0x20

    def test_concurrent_handlers_do_not_leak_context(self):
        other_span = NonRecordingSpan(SpanContext(trace_id=0x30, span_id=0x40, is_remote=False))
        contexts = {
            "a": SPAN_CONTEXT,
            "b": trace.set_span_in_context(other_span, Context()),
        }

        async def handler(name):
            await asyncio.sleep(0.01)
            return current_span_id()

        wrapped = wrap_handler(handler, lambda name: contexts[name])

        async def run():
            return await asyncio.gather(wrapped("a"), wrapped("b"), wrapped("a"))

        assert asyncio.run(run()) == [0x20, 0x40, 0x20]


class TestContextFromScope:

    def test_traced_state(self):
        state = RequestTraceState(context=SPAN_CONTEXT, tracer=MagicMock(), lifecycle=MagicMock())

        assert context_from_scope({"state": {TRACE_STATE_KEY: state}}) is SPAN_CONTEXT

    def test_untraced_state(self):
        state = RequestTraceState(context=Context(), tracer=MagicMock())

        assert context_from_scope({"state": {TRACE_STATE_KEY: state}}) is None

    def test_missing_state(self):
        assert context_from_scope({}) is None


class TestRouteWrapper:

    def _route(self, path="/x"):
        async def app(scope, receive, send):
            return None

        route = MagicMock()
        route.path = path
        route.app = app
        return route

    def test_wraps_selected_route(self):
        route = self._route()
        original = route.app

        wrapped = RouteWrapper(build_route_matcher(["/x"])).maybe_wrap(route, "/x", "GET")

        assert wrapped is True
        assert route.app is not original
        assert route.app.__wrapped__ is original

    def test_leaves_other_routes(self):
        route = self._route("/y")
        original = route.app

        wrapped = RouteWrapper(build_route_matcher(["/x"])).maybe_wrap(route, "/y", "GET")

        assert wrapped is False
        assert route.app is original

    def test_wraps_only_once(self):
        route = self._route()
        wrapper = RouteWrapper(build_route_matcher(True))

        wrapper.maybe_wrap(route, "/x", "GET")
        first = route.app
        wrapper.maybe_wrap(route, "/x", "GET")

        assert route.app is first

    def test_disabled(self):
        route = self._route()
        original = route.app

        assert RouteWrapper(build_route_matcher(False)).maybe_wrap(route, "/x", "GET") is False
        assert route.app is original
