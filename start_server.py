#!/usr/bin/env python3
"""
Demo API server with per-request tracing
Run: python start_server.py --port 8000
"""

import os
import argparse
import logging

from dotenv import load_dotenv
load_dotenv()

from fastapi import Depends, FastAPI, HTTPException
import uvicorn

from opentelemetry import trace

from otel_config import initialize_opentelemetry, get_current_trace_context
from request_tracing import OpenTelemetryApi, get_opentelemetry, instrument_app

SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "request-tracing-demo")

logger = logging.getLogger(__name__)

ITEMS = {
    "1": {"id": "1", "name": "widget"},
    "2": {"id": "2", "name": "gadget"},
}


def create_app() -> FastAPI:
    app = FastAPI(title="Request Tracing Demo")

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/items/{item_id}")
    async def read_item(item_id: str, otel: OpenTelemetryApi = Depends(get_opentelemetry)):
        span = otel.active_span
        if span is not None:
            span.set_attribute("item.id", item_id)

        # Handlers run under the request span, so logs carry its trace id
        logger.info(f"Looking up item {item_id}")

        item = ITEMS.get(item_id)
        if item is None:
            raise HTTPException(status_code=404, detail="Item not found")
        return item

    @app.get("/items/{item_id}/outbound-headers")
    async def outbound_headers(item_id: str, otel: OpenTelemetryApi = Depends(get_opentelemetry)):
        # Headers a downstream call made by this handler would carry
        headers = {}
        otel.inject(headers)
        return {"item_id": item_id, "headers": headers}

    @app.get("/trace")
    async def current_trace():
        with trace.get_tracer(__name__).start_as_current_span("lookup-trace"):
            return get_current_trace_context()

    instrument_app(
        app,
        service_name=SERVICE_NAME,
        wrap_routes=True,
        ignore_routes=["/health"],
        propagate_to_reply=True,
    )
    return app


def main():
    parser = argparse.ArgumentParser(description="Request tracing demo server")
    parser.add_argument("--host", default=os.getenv("SERVER_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("SERVER_PORT", "8000")))
    args = parser.parse_args()

    initialize_opentelemetry(SERVICE_NAME)
    uvicorn.run(create_app(), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
