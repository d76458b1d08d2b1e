#!/usr/bin/env python3
"""
Span lifecycle for a single request

One SpanLifecycle is created per traced request. It starts the span, applies
attributes in a fixed order (request, then error if any, then reply), sets the
status and ends the span exactly once.
"""

import logging
from enum import Enum
from typing import Optional

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.trace import SpanKind, Status, StatusCode
from starlette.requests import Request

from .exceptions import SpanLifecycleError
from .formatters import SpanAttributeFormatters, TracedReply

logger = logging.getLogger(__name__)


class SpanPhase(str, Enum):
    INIT = "init"
    ACTIVE = "active"
    OK = "ok"
    ERRORED = "errored"
    ENDED = "ended"


def format_span_name(method: str, route_pattern: Optional[str]) -> str:
    """'GET /items/{item_id}' when the router matched, plain 'GET' otherwise"""
    return f"{method} {route_pattern}" if route_pattern else method


class SpanLifecycle:
    """Start/attribute/status/end orchestration for one request span"""

    def __init__(self, tracer: trace.Tracer, formatters: SpanAttributeFormatters):
        self.tracer = tracer
        self.formatters = formatters
        self.span: Optional[trace.Span] = None
        self.phase = SpanPhase.INIT

    @property
    def ended(self) -> bool:
        return self.phase is SpanPhase.ENDED

    def start(self, ctx: Context, name: str, request: Request) -> trace.Span:
        if self.phase is not SpanPhase.INIT:
            raise SpanLifecycleError(f"Span already started (phase={self.phase.value})")

        span = self.tracer.start_span(name, context=ctx, kind=SpanKind.SERVER)
        self.span = span
        self.phase = SpanPhase.ACTIVE
        try:
            span.set_attributes(self.formatters.for_request(request))
        except BaseException as e:
            # The caller never receives this span
            span.set_status(Status(StatusCode.ERROR, f"request attributes failed: {type(e).__name__}"))
            self._end()
            raise
        logger.debug(f"Started span {name!r}")
        return span

    def finish(self, reply: TracedReply, error: Optional[BaseException] = None) -> None:
        """
        Apply completion attributes, set the status and end the span

        Args:
            reply: Outgoing reply (status code 500 for unhandled errors)
            error: Exception captured by the on-error hook, if any

        Raises:
            SpanLifecycleError: if the span is not active (never started or
                already ended)
        """
        if self.phase is not SpanPhase.ACTIVE:
            raise SpanLifecycleError(f"Cannot finish span in phase {self.phase.value!r}")

        span = self.span
        if error is not None:
            self.phase = SpanPhase.ERRORED
            span.set_attributes(self.formatters.for_error(error))
            span.set_attributes(self.formatters.for_reply(reply))
            span.set_status(Status(StatusCode.ERROR))
        else:
            self.phase = SpanPhase.OK
            span.set_attributes(self.formatters.for_reply(reply))
            span.set_status(Status(StatusCode.OK))

        self._end()

    def abort(self, reason: str) -> None:
        """End a span whose request never reached the post-handler hook"""
        if self.phase is SpanPhase.INIT or self.ended:
            return

        self.span.set_attribute("request.aborted", True)
        self.span.set_status(Status(StatusCode.ERROR, reason))
        logger.warning(f"Ending span for aborted request: {reason}")
        self._end()

    def _end(self) -> None:
        self.phase = SpanPhase.ENDED
        self.span.end()
