#!/usr/bin/env python3
"""
Context propagation between HTTP headers and the request context

Wraps the globally configured text-map propagator. Inbound resolution reuses
an ambient span when another instrumentation already started one in the
current task, so the request span nests under it instead of under the
remote parent found in the headers.
"""

from typing import Any, Optional

from opentelemetry import context as otel_context
from opentelemetry import propagate, trace
from opentelemetry.context import Context
from opentelemetry.propagators.textmap import (
    CarrierT,
    Getter,
    Setter,
    default_getter,
    default_setter,
)


def has_active_span(ctx: Context) -> bool:
    return trace.get_current_span(ctx).get_span_context().is_valid


class ContextPropagator:
    """Extract/inject against header carriers"""

    def resolve_inbound_context(self, headers: Any) -> Context:
        """
        Resolve the parent context for a new request span

        Args:
            headers: Raw request headers (any mapping with get/keys)

        Returns:
            The ambient context when it already carries a span, otherwise the
            context extracted from the headers on top of an empty root
        """
        ambient = otel_context.get_current()
        if has_active_span(ambient):
            return ambient
        return propagate.extract(headers, context=Context())

    def extract(
        self,
        ctx: Optional[Context],
        carrier: CarrierT,
        getter: Getter = default_getter,
    ) -> Context:
        return propagate.extract(carrier, context=ctx, getter=getter)

    def inject(
        self,
        ctx: Optional[Context],
        carrier: CarrierT,
        setter: Setter = default_setter,
    ) -> None:
        propagate.inject(carrier, context=ctx, setter=setter)
