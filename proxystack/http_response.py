"""Parsing of backend HTTP responses into proxy responses."""

from __future__ import annotations

import asyncio
import dataclasses
import gzip
import io
from dataclasses import dataclass, field
from typing import IO, Any, Awaitable, Callable, Optional

from .proxy import Metadata, Response, new_read_closer_wrapper

Decoder = Callable[[IO[bytes]], Optional[dict]]
EntityFormatter = Callable[[Response], Response]
HTTPResponseParser = Callable[["HTTPResponse"], Awaitable[Response]]


def _canonical_header_key(key: str) -> str:
    return "-".join(part[:1].upper() + part[1:].lower() for part in key.split("-"))


@dataclass
class HTTPResponse:
    """A response received from a backend."""

    status_code: int = 200
    headers: dict[str, list[str]] = field(default_factory=dict)
    body: IO[bytes] = field(default_factory=io.BytesIO)

    def __post_init__(self) -> None:
        canonical: dict[str, list[str]] = {}
        for key, values in self.headers.items():
            canonical.setdefault(_canonical_header_key(key), []).extend(values)
        self.headers = canonical


def _header_value(response: HTTPResponse, name: str) -> str:
    values = response.headers.get(_canonical_header_key(name)) or [""]
    return values[0]


@dataclass
class HTTPResponseParserConfig:
    """The decoder and entity formatter used by a response parser."""

    decoder: Decoder
    entity_formatter: EntityFormatter


def _nop_decoder(stream: IO[bytes]) -> dict:
    """Discard the body and decode nothing."""
    stream.read()
    return {}


def _identity(response: Response) -> Response:
    """Return the response unchanged, as a shallow copy."""
    return dataclasses.replace(response)


DEFAULT_HTTP_RESPONSE_PARSER_CONFIG = HTTPResponseParserConfig(_nop_decoder, _identity)


def default_http_response_parser_factory(cfg: HTTPResponseParserConfig) -> HTTPResponseParser:
    """Build a parser decoding the (possibly gzipped) body into the response data."""

    async def parse(response: HTTPResponse) -> Response:
        try:
            if _header_value(response, "Content-Encoding") == "gzip":
                with gzip.GzipFile(fileobj=response.body, mode="rb") as reader:
                    data = cfg.decoder(reader)
            else:
                data = cfg.decoder(response.body)
        finally:
            response.body.close()
        return cfg.entity_formatter(Response(data=data, is_complete=True))

    return parse


async def noop_http_response_parser(response: HTTPResponse) -> Response:
    """Pass the body through untouched; it is closed once the calling task ends."""
    done = asyncio.Event()
    task: Any = asyncio.current_task()
    if task is not None:
        task.add_done_callback(lambda _task: done.set())
    return Response(
        data={},
        is_complete=True,
        io=new_read_closer_wrapper(done, response.body),
        metadata=Metadata(headers=response.headers, status_code=response.status_code),
    )