#!/usr/bin/env python3
"""
Route matching helpers

build_route_matcher turns the list-or-predicate form accepted by
ignore_routes and wrap_routes into a single matches(path, method) closure.
match_route resolves the route (and its path template) for a request before
the router itself runs, so the span can be named after it.
"""

from typing import Any, Callable, Iterable, NamedTuple, Optional, Union

from starlette.routing import Match, Mount

from .exceptions import ConfigurationError

RouteMatcher = Callable[[str, str], bool]
RouteSpec = Union[bool, None, Iterable[str], RouteMatcher]


def _never(path: str, method: str) -> bool:
    return False


def _always(path: str, method: str) -> bool:
    return True


def build_route_matcher(spec: RouteSpec) -> RouteMatcher:
    """
    Resolve a route specification once into a predicate

    Args:
        spec: True (every route), False/None (no route), a collection of
            paths (method-agnostic) or a callable taking (path, method)

    Returns:
        Callable answering whether (path, method) is selected
    """
    if spec is None or spec is False:
        return _never
    if spec is True:
        return _always
    if callable(spec):
        return spec
    if isinstance(spec, (str, bytes)):
        raise ConfigurationError(f"Expected a collection of paths, got a single string: {spec!r}")

    try:
        paths = frozenset(spec)
    except TypeError as e:
        raise ConfigurationError(f"Unsupported route specification: {spec!r}") from e

    def matches(path: str, method: str) -> bool:
        return path in paths

    return matches


class RouteMatch(NamedTuple):
    route: Any
    pattern: Optional[str]


def _walk_routes(routes, scope: dict) -> Optional[RouteMatch]:
    partial = None

    for route in routes:
        match, child_scope = route.matches(scope)
        if match == Match.NONE:
            continue

        found = RouteMatch(route, getattr(route, "path", None))
        if isinstance(route, Mount):
            # Mounted routers resolve the remainder of the path themselves
            nested = _walk_routes(route.routes, {**scope, **child_scope})
            if nested is not None:
                found = RouteMatch(nested.route, route.path + (nested.pattern or ""))

        if match == Match.FULL:
            return found
        if partial is None:
            partial = found

    return partial


def match_route(app: Any, scope: dict) -> Optional[RouteMatch]:
    """
    Find the route the router will dispatch this scope to

    A full match wins; otherwise the first partial match (path matched but
    method did not) is used. Returns None when nothing matches.
    """
    routes = getattr(app, "routes", None)
    if not routes:
        return None
    return _walk_routes(routes, scope)


def find_route_pattern(app: Any, scope: dict) -> Optional[str]:
    found = match_route(app, scope)
    return found.pattern if found else None
