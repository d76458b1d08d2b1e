#!/usr/bin/env python3
"""
Request tracing configuration

TracingConfig is frozen: it is built once, validated, and then shared
read-only by every request the plugin handles.
"""

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

from dotenv import load_dotenv

from .exceptions import ConfigurationError
from .formatters import SpanAttributeFormatters
from .routes import RouteMatcher, build_route_matcher

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {value!r}")


def _parse_paths(value: str) -> Tuple[str, ...]:
    return tuple(path.strip() for path in value.split(",") if path.strip())


@dataclass(frozen=True)
class TracingConfig:
    """
    Plugin options

    Attributes:
        service_name: Tracer identity (instrumentation scope name)
        expose_api: Attach the per-request OpenTelemetryApi to request.state
        wrap_routes: Activate the span context around handler invocation;
            True for every route, or a collection of route patterns
        ignore_routes: Paths (or a (path, method) predicate) to skip entirely
        format_span_attributes: Per-phase attribute formatters
        propagate_to_reply: Inject the request context into response headers
    """
    service_name: str
    expose_api: bool = True
    wrap_routes: Union[bool, Tuple[str, ...], RouteMatcher] = False
    ignore_routes: Union[Tuple[str, ...], RouteMatcher] = ()
    format_span_attributes: SpanAttributeFormatters = field(default_factory=SpanAttributeFormatters)
    propagate_to_reply: bool = False

    def __post_init__(self):
        if not isinstance(self.service_name, str) or not self.service_name:
            raise ConfigurationError("service_name is required")
        if not isinstance(self.format_span_attributes, SpanAttributeFormatters):
            raise ConfigurationError(
                "format_span_attributes must be a SpanAttributeFormatters instance"
            )
        # Freeze list inputs so the config stays hashable and read-only
        if isinstance(self.wrap_routes, list):
            object.__setattr__(self, "wrap_routes", tuple(self.wrap_routes))
        if isinstance(self.ignore_routes, list):
            object.__setattr__(self, "ignore_routes", tuple(self.ignore_routes))
        # Fail at construction rather than on the first request
        build_route_matcher(self.wrap_routes)
        build_route_matcher(self.ignore_routes)

    def ignore_matcher(self) -> RouteMatcher:
        return build_route_matcher(self.ignore_routes)

    def wrap_matcher(self) -> RouteMatcher:
        return build_route_matcher(self.wrap_routes)

    @classmethod
    def from_env(cls, service_name: Optional[str] = None, **overrides) -> "TracingConfig":
        """
        Build a config from environment variables (and a .env file if present)

        Explicit keyword arguments take precedence over the environment.
        """
        load_dotenv()

        values = {
            "service_name": service_name or os.getenv("OTEL_SERVICE_NAME", ""),
        }

        expose_api = os.getenv("REQUEST_TRACING_EXPOSE_API")
        if expose_api is not None:
            values["expose_api"] = _parse_bool("REQUEST_TRACING_EXPOSE_API", expose_api)

        wrap_routes = os.getenv("REQUEST_TRACING_WRAP_ROUTES")
        if wrap_routes is not None:
            lowered = wrap_routes.strip().lower()
            if lowered in _TRUE_VALUES or lowered in _FALSE_VALUES:
                values["wrap_routes"] = _parse_bool("REQUEST_TRACING_WRAP_ROUTES", wrap_routes)
            else:
                values["wrap_routes"] = _parse_paths(wrap_routes)

        ignore_routes = os.getenv("REQUEST_TRACING_IGNORE_ROUTES")
        if ignore_routes is not None:
            values["ignore_routes"] = _parse_paths(ignore_routes)

        propagate_to_reply = os.getenv("REQUEST_TRACING_PROPAGATE_TO_REPLY")
        if propagate_to_reply is not None:
            values["propagate_to_reply"] = _parse_bool(
                "REQUEST_TRACING_PROPAGATE_TO_REPLY", propagate_to_reply
            )

        values.update(overrides)
        return cls(**values)
