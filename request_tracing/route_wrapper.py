#!/usr/bin/env python3
"""
Handler wrapping under the request span context

When route wrapping is enabled, the route's handler runs with the request
context attached to the current task, so trace.get_current_span() inside the
handler (and inside libraries it calls) returns the request span.
"""

import functools
import inspect
import logging
from typing import Any, Callable, Optional

from opentelemetry import context as otel_context
from opentelemetry.context import Context

from .api import TRACE_STATE_KEY
from .routes import RouteMatcher

logger = logging.getLogger(__name__)

ContextResolver = Callable[..., Optional[Context]]

_WRAPPED_MARKER = "__request_tracing_wrapped__"


def wrap_handler(
    handler: Callable,
    resolve_context: ContextResolver,
    is_async: Optional[bool] = None,
) -> Callable:
    """
    Wrap a handler so it runs inside an attached context

    The wrapper forwards every positional and keyword argument unchanged and
    returns (or raises) exactly what the handler does. Coroutine functions
    stay coroutine functions, and the context is detached only after the
    awaited result resolves.

    Args:
        handler: Callable to wrap
        resolve_context: Called with the handler's arguments; returns the
            context to attach, or None to call the handler as is
        is_async: Force the async form (for awaitable-returning callables
            that are not coroutine functions, e.g. ASGI app classes)
    """
    if is_async is None:
        is_async = inspect.iscoroutinefunction(handler)

    if is_async:
        @functools.wraps(handler)
        async def async_wrapper(*args, **kwargs):
            ctx = resolve_context(*args, **kwargs)
            if ctx is None:
                return await handler(*args, **kwargs)
            token = otel_context.attach(ctx)
            try:
                return await handler(*args, **kwargs)
            finally:
                otel_context.detach(token)

        wrapper = async_wrapper
    else:
        @functools.wraps(handler)
        def sync_wrapper(*args, **kwargs):
            ctx = resolve_context(*args, **kwargs)
            if ctx is None:
                return handler(*args, **kwargs)
            token = otel_context.attach(ctx)
            try:
                return handler(*args, **kwargs)
            finally:
                otel_context.detach(token)

        wrapper = sync_wrapper

    setattr(wrapper, _WRAPPED_MARKER, True)
    return wrapper


def is_wrapped(handler: Any) -> bool:
    return getattr(handler, _WRAPPED_MARKER, False)


def context_from_scope(scope: dict, receive: Any = None, send: Any = None) -> Optional[Context]:
    """Context of the traced request owning this ASGI scope, if any"""
    state = scope.get("state", {}).get(TRACE_STATE_KEY)
    if state is None or not state.traced:
        return None
    return state.context


class RouteWrapper:
    """Wraps route ASGI apps selected by the wrap_routes option"""

    def __init__(self, should_wrap: RouteMatcher):
        self.should_wrap = should_wrap

    def maybe_wrap(self, route: Any, pattern: Optional[str], method: str) -> bool:
        """
        Wrap the route's ASGI app in place if it is selected

        Args:
            route: Route resolved by the router for the current request
            pattern: Full route template (including any mount prefix)
            method: Request method

        Returns:
            True when the route is (now or already) wrapped
        """
        inner = getattr(route, "app", None)
        if inner is None:
            return False
        if is_wrapped(inner):
            return True

        if pattern is None or not self.should_wrap(pattern, method):
            return False

        route.app = wrap_handler(inner, context_from_scope, is_async=True)
        logger.debug(f"Wrapped route {pattern!r} for context activation")
        return True
