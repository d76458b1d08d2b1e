#!/usr/bin/env python3
"""
Per-request tracing state and the API exposed to route handlers

Handlers reach the API through request.state.opentelemetry, or with the
get_opentelemetry FastAPI dependency:

    @app.get("/items/{item_id}")
    async def read_item(item_id: str, otel: OpenTelemetryApi = Depends(get_opentelemetry)):
        if otel.active_span is not None:
            otel.active_span.set_attribute("item.id", item_id)
        headers = {}
        otel.inject(headers)
        ...
"""

from dataclasses import dataclass
from typing import Optional

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.propagators.textmap import (
    CarrierT,
    Getter,
    Setter,
    default_getter,
    default_setter,
)
from starlette.requests import Request

from .exceptions import TracingApiUnavailableError
from .propagation import ContextPropagator
from .span_lifecycle import SpanLifecycle

API_STATE_ATTR = "opentelemetry"
# Key of the RequestTraceState inside the ASGI scope's "state" mapping
TRACE_STATE_KEY = "request_tracing.state"


@dataclass
class RequestTraceState:
    """Tracing state owned by exactly one request"""
    context: Context
    tracer: trace.Tracer
    lifecycle: Optional[SpanLifecycle] = None
    error: Optional[BaseException] = None

    @property
    def traced(self) -> bool:
        return self.lifecycle is not None


class OpenTelemetryApi:
    """Tracing accessors bound to one request's context"""

    def __init__(self, state: RequestTraceState, propagator: ContextPropagator):
        self._state = state
        self._propagator = propagator

    @property
    def context(self) -> Context:
        return self._state.context

    @property
    def tracer(self) -> trace.Tracer:
        return self._state.tracer

    @property
    def active_span(self) -> Optional[trace.Span]:
        # Looked up on every access; never cached
        span = trace.get_current_span(self._state.context)
        if span is trace.INVALID_SPAN:
            return None
        return span

    def extract(self, carrier: CarrierT, getter: Getter = default_getter) -> Context:
        return self._propagator.extract(self._state.context, carrier, getter)

    def inject(self, carrier: CarrierT, setter: Setter = default_setter) -> None:
        self._propagator.inject(self._state.context, carrier, setter)


def get_opentelemetry(request: Request) -> OpenTelemetryApi:
    """
    Return the tracing API attached to this request

    Raises:
        TracingApiUnavailableError: expose_api is off or the plugin is not
            registered on this application
    """
    api = getattr(request.state, API_STATE_ATTR, None)
    if api is None:
        raise TracingApiUnavailableError(
            "Request tracing API is not available; register the plugin with expose_api=True"
        )
    return api
