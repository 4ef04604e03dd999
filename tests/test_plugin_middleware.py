import posixpath
from dataclasses import dataclass, field, replace

import pytest

from proxystack.modifier import NAMESPACE, load, register_modifier
from proxystack.plugin_middleware import (
    RequestWrapper,
    ResponseWrapper,
    new_backend_plugin_middleware,
    new_plugin_middleware,
)
from proxystack.proxy import Metadata, Response, TooManyProxiesError, empty_middleware
from proxystack.request import Request


class _Logger:
    def __init__(self):
        self.records = []

    def debug(self, *args):
        self.records.append(" ".join(str(a) for a in args))

    info = warning = error = debug


@dataclass
class _Endpoint:
    endpoint: str = ""
    extra_config: dict = field(default_factory=dict)


@dataclass
class _Backend:
    url_pattern: str = ""
    extra_config: dict = field(default_factory=dict)


class _StatusError(Exception):
    def __init__(self, message, status_code):
        super().__init__(message)
        self.status_code = status_code


class _LoggerExample:
    name = "pm-modifier-example"

    def register_modifiers(self, register):
        register(self.name + "-request", self._request_factory, True, False)
        register(self.name + "-response", self._response_factory, False, True)

    def _request_factory(self, _cfg):
        def modify(req):
            if not isinstance(req, RequestWrapper):
                raise TypeError("unknown request type")
            return replace(req, path=posixpath.normpath(req.path + "/fooo"))

        return modify

    def _response_factory(self, _cfg):
        def modify(resp):
            if not isinstance(resp, ResponseWrapper):
                raise TypeError("unknown request type")
            return resp

        return modify


class _ErrorExample:
    name = "pm-error-example"

    def register_modifiers(self, register):
        register(self.name + "-request", self._request_factory, True, False)
        register(self.name + "-response", self._response_factory, False, True)

    def _request_factory(self, _cfg):
        def modify(_req):
            raise _StatusError("request rejected just because", 418)

        return modify

    def _response_factory(self, _cfg):
        def modify(_resp):
            raise _StatusError("response replaced because reasons", 418)

        return modify


@pytest.fixture(autouse=True)
def _plugins():
    load([_LoggerExample(), _ErrorExample()], register_modifier, _Logger())


def _cfg(*names):
    return {NAMESPACE: {"name": list(names)}}


@pytest.mark.asyncio
async def test_plugin_middleware_request_and_response():
    async def validator(request):
        if request.path != "/bar/fooo/fooo":
            raise ValueError(f"unexpected path {request.path}")
        return Response(data={"foo": "bar"}, is_complete=True, metadata=Metadata(headers={}))

    backend = new_backend_plugin_middleware(
        _Logger(), _Backend(extra_config=_cfg("pm-modifier-example-request"))
    )(validator)
    logger = _Logger()
    proxy = new_plugin_middleware(
        logger,
        _Endpoint(
            endpoint="/e",
            extra_config=_cfg("pm-modifier-example-request", "pm-modifier-example-response"),
        ),
    )(backend)

    resp = await proxy(Request(path="/bar"))
    assert resp.data["foo"] == "bar"
    assert resp.is_complete is True
    assert logger.records == [
        "[ENDPOINT: /e][Modifier Plugins] Adding 1 request and 1 response modifiers"
    ]


@pytest.mark.asyncio
async def test_plugin_middleware_error_request():
    called = []

    async def validator(request):
        called.append(request)
        return None

    backend = new_backend_plugin_middleware(_Logger(), _Backend())(validator)
    proxy = new_plugin_middleware(
        _Logger(), _Endpoint(extra_config=_cfg("pm-error-example-request"))
    )(backend)

    with pytest.raises(_StatusError) as exc:
        await proxy(Request(path="/bar"))
    assert exc.value.status_code == 418
    assert str(exc.value) == "request rejected just because"
    assert called == []


@pytest.mark.asyncio
async def test_plugin_middleware_error_response():
    hit = []

    async def validator(request):
        hit.append(True)
        return Response(data={"foo": "bar"}, is_complete=True, metadata=Metadata(headers={}))

    backend = new_backend_plugin_middleware(_Logger(), _Backend())(validator)
    proxy = new_plugin_middleware(
        _Logger(), _Endpoint(extra_config=_cfg("pm-error-example-response"))
    )(backend)

    with pytest.raises(_StatusError) as exc:
        await proxy(Request(path="/bar"))
    assert exc.value.status_code == 418
    assert str(exc.value) == "response replaced because reasons"
    assert hit == [True]


def test_no_config_gives_empty_middleware():
    assert new_plugin_middleware(_Logger(), _Endpoint()) is empty_middleware
    assert new_backend_plugin_middleware(_Logger(), _Backend()) is empty_middleware


def test_unknown_names_give_empty_middleware():
    mw = new_plugin_middleware(_Logger(), _Endpoint(extra_config=_cfg("nope", 42)))
    assert mw is empty_middleware


def test_names_not_a_list_give_empty_middleware():
    mw = new_plugin_middleware(_Logger(), _Endpoint(extra_config={NAMESPACE: {"name": "x"}}))
    assert mw is empty_middleware


def test_too_many_proxies():
    mw = new_plugin_middleware(_Logger(), _Endpoint(extra_config=_cfg("pm-modifier-example-request")))

    async def p(_request):
        return None

    with pytest.raises(TooManyProxiesError):
        mw(p, p)


@pytest.mark.asyncio
async def test_response_wrapper_fields_are_written_back():
    def factory(_cfg):
        def modify(resp):
            return ResponseWrapper(
                data={"new": 1}, is_complete=False, headers={"X-A": ["b"]}, status_code=201
            )

        return modify

    register_modifier("pm-rewrite-response", factory, False, True)

    async def backend(_request):
        return Response(data={"old": 1}, is_complete=True, metadata=Metadata(status_code=200))

    proxy = new_plugin_middleware(
        _Logger(), _Endpoint(extra_config=_cfg("pm-rewrite-response"))
    )(backend)
    resp = await proxy(Request())
    assert resp.data == {"new": 1}
    assert resp.is_complete is False
    assert resp.metadata.headers == {"X-A": ["b"]}
    assert resp.metadata.status_code == 201


@pytest.mark.asyncio
async def test_non_wrapper_results_are_ignored():
    register_modifier("pm-ignored-request", lambda cfg: (lambda req: "garbage"), True, False)
    seen = []

    async def backend(request):
        seen.append(request.path)
        return Response(data={"path": request.path}, is_complete=True)

    proxy = new_plugin_middleware(
        _Logger(),
        _Endpoint(extra_config=_cfg("pm-ignored-request", "pm-modifier-example-request")),
    )(backend)
    resp = await proxy(Request(path="/x"))
    assert resp.data == {"path": "/x/fooo"}
    assert resp.is_complete is True
    assert seen == ["/x/fooo"]