"""Merging of responses from several backends, in parallel or in sequence."""

from __future__ import annotations

import asyncio
import math
import re
import struct
from dataclasses import fields
from typing import Any, Callable, Optional

from .proxy import (
    NAMESPACE,
    NoBackendsError,
    NotEnoughProxiesError,
    Proxy,
    Response,
    empty_middleware,
)
from .register import Untyped
from .request import Request, clone_request

ResponseCombiner = Callable[[int, list], Optional[Response]]

MERGE_KEY = "combiner"
IS_SEQUENTIAL_KEY = "sequential"
DEFAULT_COMBINER_NAME = "default"

_MERGE_KEY_RE = re.compile(r"\{\{\.Resp(\d+)_([\w\-.]+)\}\}")


class NullResultError(Exception):
    def __init__(self) -> None:
        super().__init__("invalid response")


class MergeError(Exception):
    """Errors collected while merging; may carry a partial response."""

    def __init__(self, errors: list, response: Optional[Response] = None) -> None:
        self.errors = list(errors)
        self.response = response
        super().__init__("\n".join(str(e) for e in self.errors))


def _deadline_exceeded() -> TimeoutError:
    return TimeoutError("context deadline exceeded")


class IncrementalMergeAccumulator:
    """Combines responses as they arrive and tracks failures."""

    def __init__(self, total: int, combiner: ResponseCombiner) -> None:
        self.pending = total
        self.combiner = combiner
        self.data: Optional[Response] = None
        self.errors: list = []

    def merge(self, response: Optional[Response], error: Optional[BaseException]) -> None:
        self.pending -= 1
        if error is not None:
            self.errors.append(error)
            if self.data is not None:
                self.data.is_complete = False
            return
        if response is None:
            self.errors.append(NullResultError())
            return
        if self.data is None:
            self.data = response
            return
        self.data = self.combiner(2, [self.data, response])

    def result(self) -> Optional[Response]:
        """Return the merged response; raise MergeError if anything failed."""
        if self.data is None:
            if self.errors:
                raise MergeError(self.errors)
            return None
        if self.pending != 0 or self.errors:
            self.data.is_complete = False
        if self.errors:
            raise MergeError(self.errors, self.data)
        return self.data


def combine_data(total: int, parts: list) -> Response:
    """Merge the data of the parts into the first valid one."""
    is_complete = len(parts) == total
    result: Optional[Response] = None
    for part in parts:
        if part is None or part.data is None:
            is_complete = False
            continue
        is_complete = is_complete and part.is_complete
        if result is None:
            result = part
            continue
        result.data.update(part.data)
    if result is None:
        return Response(data={}, is_complete=is_complete)
    result.is_complete = is_complete
    return result


class CombinerRegister:
    """A register of response combiners with a fallback."""

    def __init__(self, data: dict, fallback: ResponseCombiner) -> None:
        self.data = Untyped()
        for name, combiner in data.items():
            self.data.register(name, combiner)
        self.fallback = fallback

    def get_response_combiner(self, name: str) -> tuple:
        """Return (combiner, found); the fallback is given when none fits."""
        try:
            value = self.data.get(name)
        except KeyError:
            return self.fallback, False
        if callable(value):
            return value, True
        return self.fallback, True

    def set_response_combiner(self, name: str, combiner: ResponseCombiner) -> None:
        self.data.register(name, combiner)


def _init_response_combiners() -> CombinerRegister:
    return CombinerRegister({DEFAULT_COMBINER_NAME: combine_data}, combine_data)


_response_combiners = _init_response_combiners()


def new_register() -> CombinerRegister:
    """Return the shared combiner register."""
    return _response_combiners


def reset_response_combiners() -> None:
    """Restore the shared register to hold only the default combiner."""
    global _response_combiners
    _response_combiners = _init_response_combiners()


def register_response_combiner(name: str, combiner: ResponseCombiner) -> None:
    _response_combiners.set_response_combiner(name, combiner)


def _namespace_cfg(extra: Optional[dict]) -> dict:
    value = (extra or {}).get(NAMESPACE)
    return value if isinstance(value, dict) else {}


def get_response_combiner_name(extra: Optional[dict]) -> str:
    name = _namespace_cfg(extra).get(MERGE_KEY)
    if isinstance(name, str) and _response_combiners.get_response_combiner(name)[1]:
        return name
    return DEFAULT_COMBINER_NAME


def get_response_combiner(extra: Optional[dict]) -> ResponseCombiner:
    return _response_combiners.get_response_combiner(get_response_combiner_name(extra))[0]


def _should_run_sequential(endpoint: Any) -> bool:
    return _namespace_cfg(getattr(endpoint, "extra_config", None)).get(IS_SEQUENTIAL_KEY) is True


def _format_float32(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    try:
        f32 = struct.unpack("f", struct.pack("f", value))[0]
    except OverflowError:
        f32 = math.inf if value > 0 else -math.inf
    if math.isinf(f32):
        return "+Inf" if f32 > 0 else "-Inf"
    for precision in range(1, 10):
        text = f"{f32:.{precision - 1}E}"
        if struct.unpack("f", struct.pack("f", float(text)))[0] == f32:
            return text
    return f"{f32:.8E}"


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "<nil>"
    return str(value)


def _param_value(value: Any) -> str:
    if isinstance(value, list):
        return ",".join(_format_value(v) for v in value)
    if isinstance(value, float):
        return _format_float32(value)
    return _format_value(value)


def _inject_params(pattern: str, parts: list, index: int, request: Request) -> None:
    for match in _MERGE_KEY_RE.finditer(pattern):
        num, path = int(match.group(1)), match.group(2)
        if num >= index or parts[num] is None:
            continue
        data = parts[num].data or {}
        keys = path.split(".")
        for key in keys[:-1]:
            nested = data.get(key)
            if not isinstance(nested, dict):
                break
            data = nested
        if keys[-1] not in data:
            continue
        request.params[f"Resp{match.group(1)}_{path}"] = _param_value(data[keys[-1]])


def _restore(request: Request, snapshot: Request) -> None:
    for f in fields(Request):
        setattr(request, f.name, getattr(snapshot, f.name))


def _parallel_merge(timeout: Optional[float], combiner: ResponseCombiner, proxies: tuple) -> Proxy:
    async def merged(request: Request) -> Optional[Response]:
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        queue: asyncio.Queue = asyncio.Queue()

        async def part(proxy: Proxy) -> None:
            try:
                resp = await proxy(request)
            except Exception as err:
                queue.put_nowait((None, err))
                return
            if resp is None:
                queue.put_nowait((None, NullResultError()))
            else:
                queue.put_nowait((resp, None))

        tasks = [loop.create_task(part(p)) for p in proxies]
        acc = IncrementalMergeAccumulator(len(proxies), combiner)
        try:
            for _ in proxies:
                remaining = None if deadline is None else deadline - loop.time()
                try:
                    if remaining is not None and remaining <= 0:
                        resp, err = queue.get_nowait()
                    else:
                        resp, err = await asyncio.wait_for(queue.get(), remaining)
                except (asyncio.TimeoutError, asyncio.QueueEmpty):
                    resp, err = None, _deadline_exceeded()
                acc.merge(resp, err)
        finally:
            for task in tasks:
                task.cancel()
        return acc.result()

    return merged


def _sequential_merge(
    patterns: list, timeout: Optional[float], combiner: ResponseCombiner, proxies: tuple
) -> Proxy:
    async def merged(request: Request) -> Optional[Response]:
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        parts: list = [None] * len(proxies)
        acc = IncrementalMergeAccumulator(len(proxies), combiner)
        for i, proxy in enumerate(proxies):
            if i > 0:
                _inject_params(patterns[i], parts, i, request)
            snapshot = clone_request(request)
            remaining = None if deadline is None else deadline - loop.time()
            try:
                try:
                    resp = await asyncio.wait_for(proxy(request), remaining)
                except asyncio.TimeoutError:
                    raise _deadline_exceeded() from None
                if resp is None:
                    raise NullResultError()
            except Exception as err:
                _restore(request, snapshot)
                if i == 0:
                    raise
                acc.merge(None, err)
                break
            _restore(request, snapshot)
            acc.merge(resp, None)
            if not resp.is_complete:
                break
            parts[i] = resp
        return acc.result()

    return merged


def new_merge_data_middleware(logger: Any, endpoint: Any) -> Callable[..., Proxy]:
    """Build a middleware merging the responses of all the endpoint backends."""
    backends = list(endpoint.backend or [])
    total = len(backends)
    if total == 0:
        raise NoBackendsError()
    if total == 1:
        return empty_middleware
    endpoint_timeout = getattr(endpoint, "timeout", 0) or 0
    service_timeout = 0.85 * endpoint_timeout if endpoint_timeout > 0 else None
    extra = getattr(endpoint, "extra_config", None)
    combiner = get_response_combiner(extra)
    sequential = _should_run_sequential(endpoint)

    logger.debug(
        f"[ENDPOINT: {endpoint.endpoint}][Merge] Backends: {total}, "
        f"sequential: {str(sequential).lower()}, combiner: {get_response_combiner_name(extra)}"
    )

    def middleware(*proxies: Proxy) -> Proxy:
        if len(proxies) != total:
            raise NotEnoughProxiesError()
        if not sequential:
            return _parallel_merge(service_timeout, combiner, proxies)
        patterns = [b.url_pattern for b in backends]
        return _sequential_merge(patterns, service_timeout, combiner, proxies)

    return middleware