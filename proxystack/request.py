"""The request passed through the proxy pipe."""

from __future__ import annotations

import dataclasses
import io
from dataclasses import dataclass, field
from typing import IO, Any, Optional


@dataclass
class Request:
    """Data to send to a backend."""

    method: str = ""
    url: Optional[Any] = None
    query: dict[str, list[str]] = field(default_factory=dict)
    path: str = ""
    body: Optional[IO[bytes]] = None
    params: dict[str, str] = field(default_factory=dict)
    headers: dict[str, list[str]] = field(default_factory=dict)

    def generate_path(self, url_pattern: str) -> None:
        """Set the path from a pattern, replacing {{.Key}} with the params."""
        path = url_pattern
        for key, value in (self.params or {}).items():
            path = path.replace("{{." + key + "}}", value)
        self.path = path

    def clone(self) -> "Request":
        """Return a shallow copy sharing params, headers and body."""
        return dataclasses.replace(self)


def clone_request_headers(headers: Optional[dict[str, list[str]]]) -> dict[str, list[str]]:
    """Return a copy of the headers with copied value lists."""
    return {k: list(vs) for k, vs in (headers or {}).items()}


def clone_request_params(params: Optional[dict[str, str]]) -> dict[str, str]:
    """Return a copy of the params."""
    return dict(params or {})


def clone_request(request: Request) -> Request:
    """Return a deep copy of the request; the body is buffered so both can read it."""
    clone = request.clone()
    clone.headers = clone_request_headers(request.headers)
    clone.params = clone_request_params(request.params)
    if request.body is None:
        return clone
    content = request.body.read()
    request.body.close()
    request.body = io.BytesIO(content)
    clone.body = io.BytesIO(content)
    return clone