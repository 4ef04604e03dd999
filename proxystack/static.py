"""Middleware adding static values to the processed responses."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from .proxy import NAMESPACE, Proxy, Response, TooManyProxiesError, empty_middleware
from .request import Request

STATIC_KEY = "static"


class Strategy(str, Enum):
    """When the static data is added to a response."""

    ALWAYS = "always"
    SUCCESS = "success"
    ERRORED = "errored"
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"


@dataclass
class StaticConfig:
    """The static data and the strategy deciding when to add it."""

    data: dict[str, Any] = field(default_factory=dict)
    strategy: str = Strategy.ALWAYS.value

    def match(self, response: Optional[Response], error: Optional[BaseException]) -> bool:
        """Tell whether the static data applies to this outcome."""
        try:
            strategy = Strategy(self.strategy)
        except ValueError:
            strategy = Strategy.ALWAYS
        if strategy is Strategy.SUCCESS:
            return error is None
        if strategy is Strategy.ERRORED:
            return error is not None
        if strategy is Strategy.COMPLETE:
            return error is None and response is not None and response.is_complete
        if strategy is Strategy.INCOMPLETE:
            return response is None or not response.is_complete
        return True


def get_static_middleware_cfg(extra: Optional[dict]) -> Optional[StaticConfig]:
    """Read the static configuration; None when it is absent or malformed."""
    namespace = (extra or {}).get(NAMESPACE)
    if not isinstance(namespace, dict):
        return None
    static = namespace.get(STATIC_KEY)
    if not isinstance(static, dict):
        return None
    data = static.get("data")
    if not isinstance(data, dict):
        return None
    strategy = static.get("strategy")
    if not isinstance(strategy, str):
        strategy = Strategy.ALWAYS.value
    return StaticConfig(data=data, strategy=strategy)


def _with_static_data(result: Optional[Response], data: dict[str, Any]) -> Response:
    if result is None:
        result = Response(data={})
    elif result.data is None:
        result.data = {}
    result.data.update(data)
    return result


def new_static_middleware(logger: Any, endpoint: Any) -> Callable[..., Proxy]:
    """Build a middleware adding the configured static data to responses.

    When the next proxy raises, a partial response may travel in the
    exception's ``response`` attribute; the static data is added there.
    """
    cfg = get_static_middleware_cfg(getattr(endpoint, "extra_config", None))
    if cfg is None:
        return empty_middleware

    try:
        encoded = json.dumps(cfg.data, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError):
        encoded = ""
    logger.debug(
        f"[ENDPOINT: {getattr(endpoint, 'endpoint', '')}][Static] Adding a static response "
        f"using '{cfg.strategy}' strategy. Data: {encoded}"
    )

    def middleware(*proxies: Proxy) -> Proxy:
        if len(proxies) > 1:
            raise TooManyProxiesError()
        next_proxy = empty_middleware(*proxies)

        async def proxy(request: Optional[Request]) -> Optional[Response]:
            try:
                result = await next_proxy(request)
            except Exception as err:
                partial = getattr(err, "response", None)
                if cfg.match(partial, err):
                    err.response = _with_static_data(partial, cfg.data)
                raise
            if not cfg.match(result, None):
                return result
            return _with_static_data(result, cfg.data)

        return proxy

    return middleware