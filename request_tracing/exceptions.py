"""Errors raised by the request tracing plugin."""


class RequestTracingError(Exception):
    """Base class for every error raised by this package"""


class ConfigurationError(RequestTracingError):
    """Invalid host application or invalid plugin configuration"""


class SpanLifecycleError(RequestTracingError):
    """A request span was finished more than once"""


class TracingApiUnavailableError(RequestTracingError):
    """The per-request tracing API was requested but is not exposed"""
