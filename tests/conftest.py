"""Shared test doubles for the checkout backend services."""

from __future__ import annotations

from typing import Any

import pytest

from storefront.backend_client import BackendAPIError


class FakeBackend:
    """Stands in for ``BackendClient``; responses are registered per path.

    A registered response may be a dict, an exception instance, a callable
    taking the request body, or a list of those consumed in order (the last
    one repeats).
    """

    def __init__(self) -> None:
        self.routes: dict[str, Any] = {}
        self.calls: list[tuple[str, str, Any]] = []

    def on(self, path: str, *responses: Any) -> "FakeBackend":
        self.routes[path] = list(responses)
        return self

    def count(self, path: str) -> int:
        return sum(1 for _, p, _ in self.calls if p == path)

    def body(self, path: str, index: int = -1) -> Any:
        return [b for _, p, b in self.calls if p == path][index]

    def _dispatch(self, method: str, path: str, body: Any) -> dict:
        self.calls.append((method, path, body))
        queue = self.routes.get(path)
        if not queue:
            raise BackendAPIError(404, f"no fake for {path}")
        result = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(result, Exception):
            raise result
        if callable(result):
            return result(body)
        return result

    async def post_json(self, path: str, body: dict, *, retry: bool = True) -> dict:
        return self._dispatch("POST", path, body)

    async def get_json(self, path: str, **kwargs: Any) -> dict:
        return self._dispatch("GET", path, kwargs.get("params"))


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture(autouse=True)
def _env_setup(monkeypatch, tmp_path):
    """Use a temp DB and fresh settings for every test."""
    monkeypatch.setenv("DB_PATH", str(tmp_path / "test.db"))
    monkeypatch.setenv("SECRET_KEY", "test_secret")
    from storefront.config import get_settings
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
