#!/usr/bin/env python3
"""
OpenTelemetry bootstrap for services using request tracing
Sets up the global tracer provider, W3C propagation and trace-correlated logging
"""

import os
import logging
from typing import Dict, Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from opentelemetry import trace, propagate
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.resources import Resource, SERVICE_NAME, SERVICE_VERSION
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.propagators.composite import CompositePropagator
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator
from opentelemetry.baggage.propagation import W3CBaggagePropagator

logger = logging.getLogger(__name__)

# Exporter configuration from environment
SERVICE_CONFIG = {
    "otlp_endpoint": os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317"),
    "environment": os.getenv("OTEL_ENVIRONMENT", "development"),
    "console_export": os.getenv("OTEL_CONSOLE_EXPORT", "false").lower() == "true",
    "batch_timeout": 2000,
    "batch_size": 16,
    "queue_size": 128,
}

LOG_FORMAT = (
    '%(asctime)s [%(service_name)s] [%(levelname)s] '
    '[trace_id=%(trace_id)s span_id=%(span_id)s] %(name)s: %(message)s'
)


def setup_propagators() -> CompositePropagator:
    """Install W3C Trace Context (primary) and W3C Baggage propagation"""
    propagator = CompositePropagator([
        TraceContextTextMapPropagator(),
        W3CBaggagePropagator(),
    ])
    propagate.set_global_textmap(propagator)
    return propagator


def create_resource(service_name: str, service_version: str, environment: str) -> Resource:
    attributes = {
        SERVICE_NAME: service_name,
        SERVICE_VERSION: service_version,
        "deployment.environment": environment,
        "service.instance.id": f"{service_name}-{os.getenv('HOSTNAME', os.getpid())}",
    }
    return Resource.create(attributes)


class CorrelatedFormatter(logging.Formatter):
    """Stamps each record with the trace and span ids of the current span"""

    def __init__(self, fmt: str = LOG_FORMAT, service_name: Optional[str] = None, **kwargs):
        super().__init__(fmt=fmt, **kwargs)
        self.service_name = service_name

    def format(self, record):
        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            record.trace_id = format(span_context.trace_id, '032x')
            record.span_id = format(span_context.span_id, '016x')
        else:
            record.trace_id = '0' * 32
            record.span_id = '0' * 16
        record.service_name = self.service_name or os.getenv('OTEL_SERVICE_NAME', 'unknown')
        return super().format(record)


def configure_logging(service_name: Optional[str] = None, level: int = logging.INFO) -> logging.Handler:
    """Attach a trace-correlated console handler to the root logger"""
    handler = logging.StreamHandler()
    handler.setFormatter(CorrelatedFormatter(service_name=service_name))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(handler)
    return handler


def _create_span_exporter():
    if SERVICE_CONFIG["console_export"]:
        return ConsoleSpanExporter()

    return OTLPSpanExporter(
        endpoint=SERVICE_CONFIG["otlp_endpoint"],
        insecure=True,
        headers={
            "authorization": f"Bearer {os.getenv('OTEL_AUTH_TOKEN')}",
        } if os.getenv('OTEL_AUTH_TOKEN') else None
    )


def initialize_opentelemetry(
    service_name: str,
    service_version: Optional[str] = None,
    environment: Optional[str] = None,
    log_level: int = logging.INFO,
) -> trace.Tracer:
    """
    Initialize the global tracer provider, propagators and correlated logging

    Args:
        service_name: Name of the service
        service_version: Version of the service
        environment: Deployment environment

    Returns:
        Tracer for the service
    """
    current_service_version = service_version or "1.0.0"
    current_environment = environment or SERVICE_CONFIG["environment"]

    os.environ['OTEL_SERVICE_NAME'] = service_name

    setup_propagators()

    resource = create_resource(service_name, current_service_version, current_environment)
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(
        _create_span_exporter(),
        max_queue_size=SERVICE_CONFIG["queue_size"],
        max_export_batch_size=SERVICE_CONFIG["batch_size"],
        export_timeout_millis=10000,
        schedule_delay_millis=SERVICE_CONFIG["batch_timeout"]
    ))
    trace.set_tracer_provider(provider)

    configure_logging(service_name, log_level)

    exporter_target = "console" if SERVICE_CONFIG["console_export"] else SERVICE_CONFIG["otlp_endpoint"]
    logger.info(
        f"OpenTelemetry initialized for {service_name} "
        f"(environment={current_environment}, exporter={exporter_target})"
    )
    return trace.get_tracer(service_name, current_service_version)


def get_current_trace_context() -> Dict[str, str]:
    """Trace and span ids of the current span, empty strings when there is none"""
    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        return {
            "trace_id": format(span_context.trace_id, '032x'),
            "span_id": format(span_context.span_id, '016x'),
        }
    return {"trace_id": "", "span_id": ""}


def shutdown_opentelemetry():
    """Flush pending spans and shut the tracer provider down"""
    provider = trace.get_tracer_provider()
    if hasattr(provider, 'force_flush'):
        provider.force_flush(timeout_millis=5000)
    if hasattr(provider, 'shutdown'):
        provider.shutdown()
    logger.info("OpenTelemetry shutdown complete")


__all__ = [
    'initialize_opentelemetry',
    'setup_propagators',
    'create_resource',
    'CorrelatedFormatter',
    'configure_logging',
    'get_current_trace_context',
    'shutdown_opentelemetry',
    'SERVICE_CONFIG',
]
