import asyncio
import gzip
import io
import json

import pytest

from proxystack.http_response import (
    DEFAULT_HTTP_RESPONSE_PARSER_CONFIG,
    HTTPResponse,
    HTTPResponseParserConfig,
    default_http_response_parser_factory,
    noop_http_response_parser,
)
from proxystack.proxy import Response

CONTENT = "some nice, interesting and long content"


def _json_decoder(stream):
    return json.load(stream)


@pytest.mark.asyncio
async def test_nop_http_response_parser():
    body = io.BytesIO(CONTENT.encode())
    response = HTTPResponse(status_code=200, headers={"header1": ["value1"]}, body=body)
    result = await noop_http_response_parser(response)
    assert result.is_complete
    assert result.data == {}
    assert result.metadata.status_code == 200
    assert result.metadata.headers["Header1"][0] == "value1"
    assert result.io.read() == CONTENT.encode()
    assert body.closed is False
    result.io.close()
    assert body.closed is True


@pytest.mark.asyncio
async def test_nop_parser_closes_body_when_task_ends():
    body = io.BytesIO(CONTENT.encode())
    result = await asyncio.create_task(noop_http_response_parser(HTTPResponse(body=body)))
    await asyncio.sleep(0.01)
    assert body.closed is True
    assert result.metadata.status_code == 200


@pytest.mark.asyncio
async def test_default_parser_gzipped():
    payload = gzip.compress(json.dumps({"msg": CONTENT}).encode(), compresslevel=1)
    response = HTTPResponse(
        headers={
            "Vary": ["Accept-Encoding"],
            "Content-Encoding": ["gzip"],
            "Content-Type": ["application/json; charset=utf-8"],
        },
        body=io.BytesIO(payload),
    )
    parser = default_http_response_parser_factory(
        HTTPResponseParserConfig(_json_decoder, DEFAULT_HTTP_RESPONSE_PARSER_CONFIG.entity_formatter)
    )
    result = await parser(response)
    assert result.is_complete
    assert result.data == {"msg": CONTENT}


@pytest.mark.asyncio
async def test_default_parser_plain():
    body = io.BytesIO(json.dumps({"msg": CONTENT}).encode())
    response = HTTPResponse(headers={"Content-Type": ["application/json; charset=utf-8"]}, body=body)
    parser = default_http_response_parser_factory(
        HTTPResponseParserConfig(_json_decoder, DEFAULT_HTTP_RESPONSE_PARSER_CONFIG.entity_formatter)
    )
    result = await parser(response)
    assert result.is_complete
    assert result.data == {"msg": CONTENT}
    assert body.closed is True


@pytest.mark.asyncio
async def test_default_parser_decoder_error():
    def failing(_stream):
        raise ValueError("booom")

    body = io.BytesIO(b'{"supu": 42}')
    parser = default_http_response_parser_factory(HTTPResponseParserConfig(failing, lambda r: r))
    with pytest.raises(ValueError, match="booom"):
        await parser(HTTPResponse(body=body))
    assert body.closed is True


@pytest.mark.asyncio
async def test_default_parser_applies_formatter():
    def formatter(response):
        response.data = {"wrapped": response.data}
        return response

    parser = default_http_response_parser_factory(HTTPResponseParserConfig(_json_decoder, formatter))
    result = await parser(HTTPResponse(body=io.BytesIO(b'{"a": 1}')))
    assert result.data == {"wrapped": {"a": 1}}


def test_default_config_nop_decoder():
    assert DEFAULT_HTTP_RESPONSE_PARSER_CONFIG.decoder(io.BytesIO(b"some body")) == {}


def test_default_config_nop_entity_formatter():
    expected = Response(data={"supu": "tupu"}, is_complete=True)
    result = DEFAULT_HTTP_RESPONSE_PARSER_CONFIG.entity_formatter(expected)
    assert result.is_complete
    assert result.data == {"supu": "tupu"}


def test_headers_are_canonicalised():
    response = HTTPResponse(headers={"content-encoding": ["gzip"], "x-some-THING": ["a"]})
    assert response.headers == {"Content-Encoding": ["gzip"], "X-Some-Thing": ["a"]}