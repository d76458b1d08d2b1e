#!/usr/bin/env python3
"""
Span attribute formatters

Each request phase (request, error, reply) maps its object to a flat
attribute dict. A formatter supplied in SpanAttributeFormatters replaces the
built-in default for its phase; the two are never merged.
"""

import traceback
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

from starlette.requests import Request

Attributes = Dict[str, Any]


@dataclass(frozen=True)
class TracedReply:
    """What the post-handler hook knows about the outgoing reply"""
    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)


def request_url(request: Request) -> str:
    """Raw request target: path plus query string, without scheme or host"""
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


def format_request_attributes(request: Request) -> Attributes:
    return {
        "req.method": request.method,
        "req.url": request_url(request),
    }


def format_reply_attributes(reply: TracedReply) -> Attributes:
    return {"reply.statusCode": reply.status_code}


def format_error_attributes(error: BaseException) -> Attributes:
    stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
    return {
        "error.name": type(error).__name__,
        "error.message": str(error),
        "error.stack": stack,
    }


@dataclass(frozen=True)
class SpanAttributeFormatters:
    """
    Optional per-phase attribute formatters

    Args:
        request: Called with the starlette Request when the span starts
        reply: Called with a TracedReply when the request completes
        error: Called with the exception raised by the handler
    """
    request: Optional[Callable[[Request], Attributes]] = None
    reply: Optional[Callable[[TracedReply], Attributes]] = None
    error: Optional[Callable[[BaseException], Attributes]] = None

    def for_request(self, request: Request) -> Attributes:
        formatter = self.request or format_request_attributes
        return formatter(request)

    def for_reply(self, reply: TracedReply) -> Attributes:
        formatter = self.reply or format_reply_attributes
        return formatter(reply)

    def for_error(self, error: BaseException) -> Attributes:
        formatter = self.error or format_error_attributes
        return formatter(error)


DEFAULT_FORMATTERS = SpanAttributeFormatters()
