"""Shared fixtures: an in-memory stand-in for the GitHub download endpoints."""

import io
from pathlib import Path

import pytest
import requests

from update_formula import Console

DANNY_FORMULA = (Path(__file__).resolve().parent.parent / "Formula" / "danny.rb").read_text()


class FakeResponse:
    def __init__(self, status_code=200, body=b"", headers=None):
        self.status_code = status_code
        self.body = body
        self.headers = headers or {}
        self.closed = False

    @property
    def text(self):
        return self.body.decode("utf-8")

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.body), chunk_size):
            yield self.body[i:i + chunk_size]

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")

    def close(self):
        self.closed = True


class FakeSession:
    """Serves canned responses by URL; unknown URLs answer 404."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.requests = []

    def get(self, url, **kwargs):
        self.requests.append((url, kwargs))
        route = self.routes.get(url)
        if isinstance(route, Exception):
            raise route
        if route is None:
            return FakeResponse(404)
        return route


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def console():
    return Console(out=io.StringIO(), stdin=io.StringIO(""), color=False)


@pytest.fixture
def tap(tmp_path, monkeypatch):
    """A tap checkout holding Formula/danny.rb, used as working directory."""
    formula_dir = tmp_path / "Formula"
    formula_dir.mkdir()
    (formula_dir / "danny.rb").write_text(DANNY_FORMULA)
    monkeypatch.chdir(tmp_path)
    return tmp_path
