"""Shadow backends: requests mirrored to backends whose responses are ignored."""

from __future__ import annotations

import asyncio
import re
from typing import Any, Optional

from .proxy import (
    NAMESPACE,
    NoBackendsError,
    NotEnoughProxiesError,
    Proxy,
    Response,
    TooManyProxiesError,
)
from .request import Request, clone_request

SHADOW_KEY = "shadow"
SHADOW_TIMEOUT_KEY = "shadow_timeout"
DEFAULT_TIMEOUT = 2.0

_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+\.?\d*|\.\d+)(ns|us|µs|μs|ms|s|m|h)")

_background: set = set()


def parse_duration(text: str) -> float:
    """Parse a duration such as "1h30m" or "250ms" into seconds."""
    original = text
    sign = 1.0
    if text and text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]
    if text == "0":
        return 0.0
    if not text:
        raise ValueError(f'time: invalid duration "{original}"')
    total = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if match is None:
            raise ValueError(f'time: invalid duration "{original}"')
        total += float(match.group(1)) * _UNITS[match.group(2)]
        pos = match.end()
    return sign * total


def is_shadow_backend(backend: Any) -> tuple:
    """Return (timeout, is_shadow) for a backend configuration."""
    duration = getattr(backend, "timeout", 0) or 0
    namespace = (getattr(backend, "extra_config", None) or {}).get(NAMESPACE)
    if not isinstance(namespace, dict):
        return duration, False
    if namespace.get(SHADOW_KEY) is not True:
        return duration, False
    timeout = namespace.get(SHADOW_TIMEOUT_KEY)
    if not isinstance(timeout, str):
        return duration, True
    try:
        duration = parse_duration(timeout)
    except ValueError:
        pass
    return duration, True


class ShadowFactory:
    """A proxy factory that splits shadow backends from the regular ones."""

    def __init__(self, factory: Any) -> None:
        self._factory = factory

    def new(self, endpoint: Any) -> Proxy:
        """Build the proxy for the endpoint, mirroring to its shadow backends."""
        backends = list(endpoint.backend or [])
        if not backends:
            raise NoBackendsError()

        shadow = []
        regular = []
        max_timeout = 0.0
        for backend in backends:
            timeout, is_shadow = is_shadow_backend(backend)
            if is_shadow:
                max_timeout = max(max_timeout, timeout)
                shadow.append(backend)
            else:
                regular.append(backend)

        endpoint.backend = regular
        primary = self._factory.new(endpoint)

        if shadow:
            endpoint.backend = shadow
            mirrored = self._factory.new(endpoint)
            primary = shadow_middleware_with_timeout(max_timeout, primary, mirrored)
        return primary


def new_shadow_factory(factory: Any) -> ShadowFactory:
    return ShadowFactory(factory)


def shadow_middleware(*args: Proxy) -> Proxy:
    """Combine a primary proxy and an optional shadow one."""
    return shadow_middleware_with_timeout(DEFAULT_TIMEOUT, *args)


def shadow_middleware_with_timeout(timeout: float, *args: Proxy) -> Proxy:
    """Combine a primary proxy and an optional shadow one limited by timeout."""
    if not args:
        raise NotEnoughProxiesError()
    if len(args) == 1:
        return args[0]
    if len(args) == 2:
        return new_shadow_proxy_with_timeout(timeout, args[0], args[1])
    raise TooManyProxiesError()


def new_shadow_proxy(primary: Proxy, shadow: Proxy) -> Proxy:
    return new_shadow_proxy_with_timeout(DEFAULT_TIMEOUT, primary, shadow)


async def _run_shadow(shadow: Proxy, request: Request, timeout: float) -> None:
    try:
        await asyncio.wait_for(shadow(request), timeout)
    except Exception:
        pass


def new_shadow_proxy_with_timeout(timeout: float, primary: Proxy, shadow: Proxy) -> Proxy:
    """Send each request to both proxies, returning only the primary's outcome.

    The shadow call runs in the background on a copy of the request and is
    cancelled once timeout seconds have passed.
    """

    async def proxy(request: Request) -> Optional[Response]:
        copy = clone_request(request)
        task = asyncio.get_running_loop().create_task(_run_shadow(shadow, copy, timeout))
        _background.add(task)
        task.add_done_callback(_background.discard)
        return await primary(request)

    return proxy