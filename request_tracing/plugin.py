#!/usr/bin/env python3
"""
Request tracing plugin for Starlette/FastAPI applications

The plugin owns the hooks driven by RequestTracingMiddleware:

    on_request  -> route filter, context resolution, span start, API attach
    on_error    -> capture the handler's exception
    on_response -> reply attributes, status, span end
    on_abort    -> end a span whose request never completed

Usage:
    app = FastAPI()
    instrument_app(app, service_name="orders-api", ignore_routes=["/health"])
"""

import functools
import inspect
import logging
from typing import Any, Optional

from opentelemetry import trace
from opentelemetry.context import Context
from starlette.applications import Starlette
from starlette.exceptions import HTTPException
from starlette.requests import Request

from .api import API_STATE_ATTR, TRACE_STATE_KEY, OpenTelemetryApi, RequestTraceState
from .config import TracingConfig
from .exceptions import ConfigurationError
from .formatters import TracedReply
from .middleware import RequestTracingMiddleware
from .propagation import ContextPropagator
from .route_wrapper import RouteWrapper
from .routes import match_route
from .span_lifecycle import SpanLifecycle, format_span_name

logger = logging.getLogger(__name__)

_PLUGIN_STATE_ATTR = "request_tracing_plugin"
_ERROR_CAPTURE_MARKER = "__request_tracing_captures_errors__"


def _is_error_handler_key(key: Any) -> bool:
    # Status-code keys and HTTPException handlers produce deliberate replies.
    # Exception (and 500) handlers run outside the middleware, which already
    # sees those exceptions leave call_next.
    return (
        isinstance(key, type)
        and issubclass(key, Exception)
        and key is not Exception
        and not issubclass(key, HTTPException)
    )


class OpenTelemetryPlugin:
    """Creates, scopes and finalizes one server span per request"""

    def __init__(self, config: TracingConfig, tracer_provider: Optional[trace.TracerProvider] = None):
        if not isinstance(config, TracingConfig):
            raise ConfigurationError(f"Expected TracingConfig, got {type(config).__name__}")

        self.config = config
        # One tracer per service identity, shared by every request
        self.tracer = trace.get_tracer(config.service_name, tracer_provider=tracer_provider)
        self.propagator = ContextPropagator()
        self.should_ignore = config.ignore_matcher()
        self.route_wrapper = RouteWrapper(config.wrap_matcher())
        self.app: Optional[Starlette] = None

    def register(self, app: Any) -> Starlette:
        """
        Install the tracing middleware on a Starlette (or FastAPI) application

        Raises:
            ConfigurationError: app is not a Starlette application, already
                carries this plugin, or has already started serving
        """
        if not isinstance(app, Starlette):
            raise ConfigurationError(
                f"Request tracing needs a Starlette/FastAPI application, got {type(app).__name__}"
            )
        if getattr(app.state, _PLUGIN_STATE_ATTR, None) is not None:
            raise ConfigurationError("Request tracing is already registered on this application")

        try:
            app.add_middleware(RequestTracingMiddleware, plugin=self)
        except RuntimeError as e:
            raise ConfigurationError(f"Cannot register request tracing: {e}") from e

        self._capture_handled_errors(app)
        setattr(app.state, _PLUGIN_STATE_ATTR, self)
        self.app = app
        logger.info(
            f"Request tracing registered for service {self.config.service_name!r} "
            f"(expose_api={self.config.expose_api}, propagate_to_reply={self.config.propagate_to_reply})"
        )
        return app

    def _capture_handled_errors(self, app: Starlette) -> None:
        """
        Feed exceptions settled by the app's own exception handlers to on_error

        Starlette reads exception_handlers once, when it builds the middleware
        stack on the first request, so the handlers are wrapped at that point.
        Handlers added after registration are covered too.
        """
        build_middleware_stack = app.build_middleware_stack

        @functools.wraps(build_middleware_stack)
        def build_with_error_capture():
            for key, handler in list(app.exception_handlers.items()):
                if _is_error_handler_key(key) and not getattr(handler, _ERROR_CAPTURE_MARKER, False):
                    app.exception_handlers[key] = self._capturing_handler(handler)
            return build_middleware_stack()

        app.build_middleware_stack = build_with_error_capture

    def _capturing_handler(self, handler):
        if inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(getattr(handler, "__call__", None)):
            @functools.wraps(handler)
            async def capture(conn, exc):
                self.on_error(conn, exc)
                return await handler(conn, exc)
        else:
            @functools.wraps(handler)
            def capture(conn, exc):
                self.on_error(conn, exc)
                return handler(conn, exc)

        setattr(capture, _ERROR_CAPTURE_MARKER, True)
        return capture

    # Hooks

    def on_request(self, request: Request) -> RequestTraceState:
        method = request.method

        if self.should_ignore(request.url.path, method):
            state = RequestTraceState(context=Context(), tracer=self.tracer)
            self._attach(request, state)
            logger.debug(f"Skipping tracing for {method} {request.url.path}")
            return state

        parent = self.propagator.resolve_inbound_context(request.headers)
        found = match_route(self.app, request.scope)
        pattern = found.pattern if found else None

        lifecycle = SpanLifecycle(self.tracer, self.config.format_span_attributes)
        span = lifecycle.start(parent, format_span_name(method, pattern), request)

        state = RequestTraceState(
            context=trace.set_span_in_context(span, parent),
            tracer=self.tracer,
            lifecycle=lifecycle,
        )
        self._attach(request, state)

        if found is not None:
            self.route_wrapper.maybe_wrap(found.route, pattern, method)
        return state

    def on_error(self, request: Request, error: BaseException) -> None:
        state = self.get_state(request)
        if state is not None and state.traced:
            state.error = error

    def on_response(self, request: Request, reply: TracedReply) -> None:
        state = self.get_state(request)
        if state is None or not state.traced:
            return
        state.lifecycle.finish(reply, state.error)

    def on_abort(self, request: Request, reason: str = "request did not complete") -> None:
        state = self.get_state(request)
        if state is None or not state.traced:
            return
        state.lifecycle.abort(reason)

    def inject_reply_headers(self, request: Request, headers: Any) -> None:
        state = self.get_state(request)
        if state is None or not state.traced:
            return
        self.propagator.inject(state.context, headers)

    # Per-request state

    @staticmethod
    def get_state(request: Request) -> Optional[RequestTraceState]:
        return request.scope.get("state", {}).get(TRACE_STATE_KEY)

    def _attach(self, request: Request, state: RequestTraceState) -> None:
        request.scope.setdefault("state", {})[TRACE_STATE_KEY] = state
        if self.config.expose_api:
            setattr(request.state, API_STATE_ATTR, OpenTelemetryApi(state, self.propagator))


def instrument_app(
    app: Any,
    config: Optional[TracingConfig] = None,
    tracer_provider: Optional[trace.TracerProvider] = None,
    **options,
) -> OpenTelemetryPlugin:
    """
    Register request tracing on an application

    Args:
        app: Starlette or FastAPI application
        config: Ready-made TracingConfig; when omitted, options are passed
            to TracingConfig.from_env (environment and .env file)
        tracer_provider: Provider to take the tracer from (global by default)
        **options: TracingConfig fields

    Returns:
        The registered plugin
    """
    if config is None:
        config = TracingConfig.from_env(**options)
    elif options:
        raise ConfigurationError("Pass either a TracingConfig or keyword options, not both")

    plugin = OpenTelemetryPlugin(config, tracer_provider=tracer_provider)
    plugin.register(app)
    return plugin
