"""
Pytest Configuration and Fixtures

Provides shared fixtures for the request tracing tests:
- Mock tracer/span collaborators for exact call assertions
- In-memory SDK tracer provider for end-to-end span assertions
- FastAPI application factory with the plugin registered
"""

from typing import Callable, Optional
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from request_tracing import OpenTelemetryPlugin, TracingConfig


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "integration: marks tests that run requests through an app")


# ============================================================================
# Tracing Collaborator Fixtures
# ============================================================================

@pytest.fixture
def mock_span():
    """Mock span recording every call in order."""
    return MagicMock(name="span")


@pytest.fixture
def mock_tracer(mock_span):
    """Mock tracer whose start_span returns mock_span."""
    tracer = MagicMock(name="tracer")
    tracer.start_span.return_value = mock_span
    return tracer


@pytest.fixture
def mock_tracer_provider(mock_tracer):
    """Mock provider handing out mock_tracer."""
    provider = MagicMock(name="tracer_provider")
    provider.get_tracer.return_value = mock_tracer
    return provider


@pytest.fixture
def span_exporter():
    """In-memory exporter collecting finished spans."""
    return InMemorySpanExporter()


@pytest.fixture
def sdk_tracer_provider(span_exporter):
    """SDK provider exporting synchronously to span_exporter."""
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    yield provider
    provider.shutdown()


# ============================================================================
# Application Fixtures
# ============================================================================

async def default_route_handler(request: Request):
    return {"foo": "bar"}


@pytest.fixture
def make_client(mock_tracer_provider):
    """
    Build a TestClient for an app exposing GET /test with the plugin registered.

    Server exceptions are turned into 500 responses, as in production.
    """
    def _make(
        handler: Callable = default_route_handler,
        tracer_provider=None,
        path: str = "/test",
        **options,
    ):
        options.setdefault("service_name", "test")
        app = FastAPI()
        app.add_api_route(path, handler, methods=["GET"])

        plugin = OpenTelemetryPlugin(
            TracingConfig(**options),
            tracer_provider=tracer_provider or mock_tracer_provider,
        )
        plugin.register(app)
        client = TestClient(app, raise_server_exceptions=False)
        client.plugin = plugin
        return client

    return _make


@pytest.fixture
def request_headers():
    return {"user-agent": "testclient", "host": "localhost:80"}
