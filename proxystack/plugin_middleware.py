"""Middlewares running the registered modifier plugins around a proxy."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .modifier import NAMESPACE, get_request_modifier, get_response_modifier
from .proxy import Metadata, Proxy, Response, TooManyProxiesError, empty_middleware
from .request import Request

Modifier = Callable[[Any], Any]


@dataclass
class RequestWrapper:
    """The request as handed to the modifier plugins."""

    method: str = ""
    url: Any = None
    query: dict = field(default_factory=dict)
    path: str = ""
    body: Any = None
    params: dict = field(default_factory=dict)
    headers: dict = field(default_factory=dict)


@dataclass
class ResponseWrapper:
    """The response as handed to the modifier plugins."""

    data: Optional[dict] = None
    is_complete: bool = False
    headers: dict = field(default_factory=dict)
    status_code: int = 0
    io: Any = None


def new_plugin_middleware(logger: Any, endpoint: Any) -> Callable[..., Proxy]:
    """Wrap an endpoint pipe with the modifier plugins it configures."""
    cfg = (getattr(endpoint, "extra_config", None) or {}).get(NAMESPACE)
    if not isinstance(cfg, dict):
        return empty_middleware
    return _new_plugin_middleware(logger, "ENDPOINT", getattr(endpoint, "endpoint", ""), cfg)


def new_backend_plugin_middleware(logger: Any, backend: Any) -> Callable[..., Proxy]:
    """Wrap a backend pipe with the modifier plugins it configures."""
    cfg = (getattr(backend, "extra_config", None) or {}).get(NAMESPACE)
    if not isinstance(cfg, dict):
        return empty_middleware
    return _new_plugin_middleware(logger, "BACKEND", getattr(backend, "url_pattern", ""), cfg)


def _new_plugin_middleware(logger: Any, tag: str, pattern: str, cfg: dict) -> Callable[..., Proxy]:
    names = cfg.get("name")
    if not isinstance(names, list):
        return empty_middleware

    request_modifiers: list[Modifier] = []
    response_modifiers: list[Modifier] = []
    for name in names:
        if not isinstance(name, str):
            continue
        factory = get_request_modifier(name)
        if factory is not None:
            request_modifiers.append(factory(cfg))
            continue
        factory = get_response_modifier(name)
        if factory is not None:
            response_modifiers.append(factory(cfg))

    if not request_modifiers and not response_modifiers:
        return empty_middleware

    logger.debug(
        f"[{tag}: {pattern}][Modifier Plugins] Adding {len(request_modifiers)} request "
        f"and {len(response_modifiers)} response modifiers"
    )

    def middleware(*proxies: Proxy) -> Proxy:
        if len(proxies) > 1:
            raise TooManyProxiesError()
        next_proxy = empty_middleware(*proxies)

        async def proxy(request: Request) -> Optional[Response]:
            if request_modifiers:
                request = _execute_request_modifiers(request_modifiers, request)
            response = await next_proxy(request)
            if not response_modifiers or response is None:
                return response
            return _execute_response_modifiers(response_modifiers, response)

        return proxy

    return middleware


def _execute_request_modifiers(modifiers: list[Modifier], request: Request) -> Request:
    wrapper = RequestWrapper(
        method=request.method,
        url=request.url,
        query=request.query,
        path=request.path,
        body=request.body,
        params=request.params,
        headers=request.headers,
    )
    for modifier in modifiers:
        result = modifier(wrapper)
        if isinstance(result, RequestWrapper):
            wrapper = result

    request.method = wrapper.method
    request.url = wrapper.url
    request.query = wrapper.query
    request.path = wrapper.path
    request.body = wrapper.body
    request.params = wrapper.params
    request.headers = wrapper.headers
    return request


def _execute_response_modifiers(modifiers: list[Modifier], response: Response) -> Response:
    wrapper = ResponseWrapper(
        data=response.data,
        is_complete=response.is_complete,
        headers=response.metadata.headers,
        status_code=response.metadata.status_code,
        io=response.io,
    )
    for modifier in modifiers:
        result = modifier(wrapper)
        if isinstance(result, ResponseWrapper):
            wrapper = result

    response.data = wrapper.data
    response.is_complete = wrapper.is_complete
    response.io = wrapper.io
    response.metadata = Metadata(headers=wrapper.headers, status_code=wrapper.status_code)
    return response