"""
Route Matching Tests

Test Coverage:
- List-or-predicate route matchers
- Route pattern resolution against a FastAPI router
"""

import pytest
from fastapi import FastAPI

from request_tracing.exceptions import ConfigurationError
from request_tracing.routes import build_route_matcher, find_route_pattern, match_route


def http_scope(path, method="GET"):
    return {"type": "http", "path": path, "method": method, "root_path": ""}


@pytest.fixture
def app():
    app = FastAPI()

    @app.get("/test")
    async def read_test():
        return {}

    @app.get("/items/{item_id}")
    async def read_item(item_id: str):
        return {}

    @app.post("/items")
    async def create_item():
        return {}

    return app


class TestBuildRouteMatcher:

    @pytest.mark.parametrize("spec", [None, False, [], ()])
    def test_matches_nothing(self, spec):
        matches = build_route_matcher(spec)

        assert matches("/test", "GET") is False

    def test_true_matches_everything(self):
        matches = build_route_matcher(True)

        assert matches("/anything", "DELETE") is True

    def test_path_list_is_method_agnostic(self):
        matches = build_route_matcher(["/health", "/metrics"])

        assert matches("/health", "GET")
        assert matches("/health", "POST")
        assert not matches("/healthz", "GET")

    def test_predicate_is_used_as_is(self):
        def predicate(path, method):
            return path.startswith("/internal") and method == "GET"

        matches = build_route_matcher(predicate)

        assert matches is predicate
        assert matches("/internal/stats", "GET")
        assert not matches("/internal/stats", "POST")

    def test_single_string_is_rejected(self):
        with pytest.raises(ConfigurationError):
            build_route_matcher("/health")

    def test_non_iterable_is_rejected(self):
        with pytest.raises(ConfigurationError):
            build_route_matcher(42)


class TestFindRoutePattern:

    def test_full_match(self, app):
        assert find_route_pattern(app, http_scope("/test")) == "/test"

    def test_path_template(self, app):
        assert find_route_pattern(app, http_scope("/items/42")) == "/items/{item_id}"

    def test_method_mismatch_falls_back_to_partial(self, app):
        assert find_route_pattern(app, http_scope("/items", method="GET")) == "/items"

    def test_no_match(self, app):
        assert find_route_pattern(app, http_scope("/invalid")) is None

    def test_match_route_returns_route_object(self, app):
        found = match_route(app, http_scope("/items/1"))

        assert found.route.path == "/items/{item_id}"
        assert found.route.endpoint.__name__ == "read_item"

    def test_app_without_routes(self):
        assert find_route_pattern(object(), http_scope("/test")) is None
