"""Middleware logging the calls to the next proxy."""

from __future__ import annotations

import time
from typing import Any, Callable, Optional

from .proxy import Proxy, Response, TooManyProxiesError, empty_middleware
from .request import Request


def _format_elapsed(seconds: float) -> str:
    if seconds >= 1:
        return f"{seconds:.3f}s"
    if seconds >= 1e-3:
        return f"{seconds * 1e3:.3f}ms"
    return f"{seconds * 1e6:.3f}µs"


def new_logging_middleware(logger: Any, name: str) -> Callable[..., Proxy]:
    """Build a middleware logging each call, its duration and its failures."""
    prefix = f"[{name.upper()}]"

    def middleware(*proxies: Proxy) -> Proxy:
        if len(proxies) > 1:
            raise TooManyProxiesError()
        next_proxy = empty_middleware(*proxies)

        async def proxy(request: Request) -> Optional[Response]:
            begin = time.monotonic()
            logger.info(f"{prefix} Calling backend")
            logger.debug(f"{prefix} Request {request!r}")
            try:
                result = await next_proxy(request)
            except Exception as err:
                logger.info(f"{prefix} Call to backend took {_format_elapsed(time.monotonic() - begin)}")
                logger.warning(f"{prefix} Call to backend failed: {err}")
                raise
            logger.info(f"{prefix} Call to backend took {_format_elapsed(time.monotonic() - begin)}")
            if result is None:
                logger.warning(f"{prefix} Call to backend returned a null response")
            return result

        return proxy

    return middleware