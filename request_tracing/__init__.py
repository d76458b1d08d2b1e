"""OpenTelemetry request tracing for Starlette and FastAPI applications."""
from .api import OpenTelemetryApi, RequestTraceState, get_opentelemetry
from .config import TracingConfig
from .exceptions import (
    ConfigurationError,
    RequestTracingError,
    SpanLifecycleError,
    TracingApiUnavailableError,
)
from .formatters import SpanAttributeFormatters, TracedReply
from .middleware import RequestTracingMiddleware
from .plugin import OpenTelemetryPlugin, instrument_app
from .route_wrapper import wrap_handler

__all__ = [
    'OpenTelemetryApi',
    'RequestTraceState',
    'get_opentelemetry',
    'TracingConfig',
    'ConfigurationError',
    'RequestTracingError',
    'SpanLifecycleError',
    'TracingApiUnavailableError',
    'SpanAttributeFormatters',
    'TracedReply',
    'RequestTracingMiddleware',
    'OpenTelemetryPlugin',
    'instrument_app',
    'wrap_handler',
]
