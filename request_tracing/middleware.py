#!/usr/bin/env python3
"""Request Tracing Middleware driving the plugin's lifecycle hooks"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from .formatters import TracedReply


class RequestTracingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, plugin):
        super().__init__(app)
        self.plugin = plugin

    async def dispatch(self, request: Request, call_next):
        state = self.plugin.on_request(request)
        if not state.traced:
            return await call_next(request)

        try:
            try:
                response = await call_next(request)
            except Exception as e:
                # The host still owns the error response; only record it here
                self.plugin.on_error(request, e)
                self.plugin.on_response(request, TracedReply(status_code=500))
                raise

            if self.plugin.config.propagate_to_reply:
                self.plugin.inject_reply_headers(request, response.headers)

            self.plugin.on_response(request, TracedReply(response.status_code, response.headers))
            return response
        finally:
            # No-op once the span has ended; covers cancellation and hook faults
            self.plugin.on_abort(request)
