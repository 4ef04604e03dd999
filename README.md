# proxystack

Building blocks for the proxy layer of an API gateway, built on `asyncio`.

A *proxy* is an async callable that takes a `Request` and returns a
`Response` (or `None`). A *middleware* takes one or more proxies and returns
a new proxy. You stack middlewares to build the pipeline for each endpoint.

## Installation

```
pip install proxystack
```

The package has no runtime dependencies. To run the test suite, install the
`test` extra and run pytest:

```
pip install "proxystack[test]"
pytest
```

## Modules

- `proxystack.register`: thread-safe registers. `Untyped` maps names to
  values (`register`, `get`, `clone`, and `in`). `get` raises `KeyError` for
  unknown names. `Namespaced` keeps one `Untyped` per namespace (`register`,
  `get`, `add_namespace`).
- `proxystack.request`: the `Request` dataclass. `generate_path` replaces
  `{{.Name}}` placeholders with values from `params`. `clone` makes a shallow
  copy. `clone_request` makes a deep copy and buffers the body so that the
  original and the copy can both read it. `clone_request_headers` and
  `clone_request_params` copy those two fields.
- `proxystack.proxy`:
  - `Response` and `Metadata`.
  - `empty_middleware`, which returns the single proxy it is given.
  - `noop_proxy`, which returns `None`.
  - `new_read_closer_wrapper`, which wraps a stream and closes it once an
    `asyncio.Event` is set.
  - The configuration errors `NoBackendsError`, `TooManyBackendsError`,
    `TooManyProxiesError` and `NotEnoughProxiesError`. All of them derive
    from `ProxyConfigError`.
- `proxystack.merging`: `new_merge_data_middleware(logger, endpoint)` merges
  the responses of all of an endpoint's backends. The backends run in
  parallel unless sequential mode is set. In sequential mode they run one
  after another. A backend's `url_pattern` may then refer to values from
  earlier responses with `{{.Resp0_key}}` or `{{.Resp0_a.b}}`, and those
  values are put into `request.params`.
  - When some backends fail, the middleware raises `MergeError`. Its
    `errors` attribute lists every failure and its `response` attribute holds
    the partial result, marked incomplete.
  - In sequential mode, a failure of the first backend is raised as is.
  - A backend that returns `None` counts as a `NullResultError`.
  - The time limit is 85% of `endpoint.timeout`, in seconds. When it runs
    out, the failure is a `TimeoutError("context deadline exceeded")`.
  - Combiners are kept in a `CombinerRegister`. Use
    `register_response_combiner` to add one and `reset_response_combiners`
    to restore the default. The default combiner is `combine_data`.
    `IncrementalMergeAccumulator` is the piece that combines responses as
    they arrive.
- `proxystack.static`: `new_static_middleware(logger, endpoint)` adds
  configured data to responses. `Strategy` decides when:
  - `always` (the default) adds it to every response.
  - `success` adds it when the next proxy raised nothing.
  - `errored` adds it when the next proxy raised.
  - `complete` adds it when the response is complete.
  - `incomplete` adds it when the response is missing or incomplete.

  When the next proxy raises, the data is added to the exception's
  `response` attribute. `get_static_middleware_cfg` reads the configuration
  into a `StaticConfig`, or returns `None`.
- `proxystack.shadow`:
  - `new_shadow_proxy` and `new_shadow_proxy_with_timeout` send a copy of
    each request to a second proxy in the background. That proxy's response
    and errors are ignored.
  - `shadow_middleware` and `shadow_middleware_with_timeout` take one or two
    proxies.
  - `ShadowFactory` (built with `new_shadow_factory`) wraps a factory that
    has a `new(endpoint)` method. It splits off the backends marked as
    shadow, and `is_shadow_backend` is what tells them apart.
  - `parse_duration` reads durations such as `"10s"` or `"1h30m"` into
    seconds.
- `proxystack.logged`: `new_logging_middleware(logger, name)` logs each call.
  It logs the start at info level, the request at debug level and the
  duration at info level. A failure or a `None` response is also logged at
  warning level. Every message is prefixed with `[NAME]`.
- `proxystack.http_response`: turns an `HTTPResponse` (status code, headers,
  body stream) into a `Response`.
  - `default_http_response_parser_factory(HTTPResponseParserConfig(decoder,
    entity_formatter))` decodes the body, gunzipping it when
    `Content-Encoding` is `gzip`.
  - `noop_http_response_parser` passes the body through as `response.io`,
    together with the status code and headers.
- `proxystack.modifier`: a register of request and response modifier
  factories, with `register_modifier`, `get_request_modifier` and
  `get_response_modifier`. `load(plugins)` takes plugin objects that have a
  `register_modifiers(register_func)` method, and optionally a
  `register_logger(logger)` method. It returns the number of plugins loaded,
  or raises `LoaderError` if any plugin fails.
- `proxystack.plugin_middleware`: `new_plugin_middleware(logger, endpoint)`
  and `new_backend_plugin_middleware(logger, backend)`. They run the
  configured modifiers: request modifiers receive a `RequestWrapper`, and
  response modifiers receive a `ResponseWrapper`.

## Configuration objects

Endpoints, backends and loggers are duck-typed. The middlewares read these
attributes from endpoints and backends:

- `endpoint`
- `backend`, a list
- `url_pattern`
- `timeout`, in seconds
- `extra_config`, a dict

Any logger with `debug`, `info` and `warning` methods works, including
`logging.Logger`.

Options go under `extra_config[proxystack.proxy.NAMESPACE]`:

- `"sequential": True` runs the backends in sequence.
- `"combiner": "<name>"` selects a registered combiner.
- `"static": {"data": {...}, "strategy": "success"}` adds static data.
- `"shadow": True` marks a backend as shadow, and `"shadow_timeout": "10s"`
  sets its time limit.

Modifier plugins are listed under
`extra_config[proxystack.modifier.NAMESPACE]` as `{"name": ["plugin-name", ...]}`.

## Example

```python
import asyncio
import logging
from types import SimpleNamespace

from proxystack.merging import new_merge_data_middleware
from proxystack.proxy import Response
from proxystack.request import Request


async def users(request):
    return Response(data={"user": "alice"}, is_complete=True)


async def orders(request):
    return Response(data={"orders": [1, 2]}, is_complete=True)


endpoint = SimpleNamespace(
    endpoint="/profile",
    backend=[SimpleNamespace(url_pattern="/users"), SimpleNamespace(url_pattern="/orders")],
    timeout=1.0,
    extra_config={},
)


async def main():
    proxy = new_merge_data_middleware(logging.getLogger("gateway"), endpoint)(users, orders)
    response = await proxy(Request(method="GET"))
    print(response.data, response.is_complete)


asyncio.run(main())
```

## What is not included

This package only provides the pipeline. It has no HTTP client to reach
backends, no HTTP server or router to expose endpoints, and no loader for
configuration files. It does not load plugins from files either: `load`
registers plugin objects that you have already imported.