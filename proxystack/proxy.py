"""Core proxy types: responses, errors and basic middlewares."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import IO, Any, Awaitable, Callable, Optional

from .request import Request

NAMESPACE = "proxystack/proxy"


@dataclass
class Metadata:
    """Headers and status code of a response."""

    headers: dict[str, list[str]] = field(default_factory=dict)
    status_code: int = 0


@dataclass
class Response:
    """The entity returned by a proxy."""

    data: Optional[dict[str, Any]] = None
    is_complete: bool = False
    metadata: Metadata = field(default_factory=Metadata)
    io: Optional[Any] = None


Proxy = Callable[[Request], Awaitable[Optional[Response]]]


class ProxyConfigError(Exception):
    """A proxy pipe was assembled with an invalid configuration."""


class NoBackendsError(ProxyConfigError):
    def __init__(self) -> None:
        super().__init__("all endpoints must have at least one backend")


class TooManyBackendsError(ProxyConfigError):
    def __init__(self) -> None:
        super().__init__("too many backends for this proxy")


class TooManyProxiesError(ProxyConfigError):
    def __init__(self) -> None:
        super().__init__("too many proxies for this proxy middleware")


class NotEnoughProxiesError(ProxyConfigError):
    def __init__(self) -> None:
        super().__init__("not enough proxies for this endpoint")


class ReadCloserWrapper:
    """A reader that closes its stream once a done event is set."""

    def __init__(self, done: asyncio.Event, stream: IO[bytes]) -> None:
        self._done = done
        self._stream = stream
        self._watcher: Optional[asyncio.Task] = None

    def _watch(self) -> None:
        self._watcher = asyncio.get_running_loop().create_task(self._close_on_done())

    async def _close_on_done(self) -> None:
        await self._done.wait()
        self._stream.close()

    def read(self, size: int = -1) -> bytes:
        return self._stream.read(size)

    def close(self) -> None:
        if self._watcher is not None:
            self._watcher.cancel()
        self._stream.close()


def new_read_closer_wrapper(done: asyncio.Event, stream: IO[bytes]) -> ReadCloserWrapper:
    """Wrap stream so it is closed when done is set; needs a running loop."""
    wrapper = ReadCloserWrapper(done, stream)
    wrapper._watch()
    return wrapper


def empty_middleware(*args: Proxy) -> Proxy:
    """Return the single proxy given."""
    if len(args) > 1:
        raise TooManyProxiesError()
    if not args:
        raise NotEnoughProxiesError()
    return args[0]


async def noop_proxy(request: Request) -> Optional[Response]:
    """Yield to the event loop once and return no response."""
    await asyncio.sleep(0)
    return None