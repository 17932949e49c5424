"""
Unit tests for the payload codec.
"""

import gzip
import zlib

import brotli
import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_cache.app.caching.body import (
    decode_text,
    decompress,
    is_supported_encoding,
    is_textual,
    read_full_body,
)
from shared.errors import CodecError


async def _stream(*chunks):
    for chunk in chunks:
        yield chunk


async def _broken_stream():
    yield b"partial"
    raise RuntimeError("socket closed")


class TestReadFullBody:
    """Test cases for read_full_body."""

    @pytest.mark.asyncio
    async def test_concatenates_chunks(self):
        result = await read_full_body(_stream(b"Hello, ", "World", bytearray(b"!")))
        assert result == b"Hello, World!"

    @pytest.mark.asyncio
    async def test_empty_stream(self):
        assert await read_full_body(_stream()) == b""

    @pytest.mark.asyncio
    async def test_binary_data(self):
        data = bytes([0x00, 0x01, 0x02, 0xFF])
        assert await read_full_body(_stream(data)) == data

    @pytest.mark.asyncio
    async def test_stream_error_raises_codec_error(self):
        with pytest.raises(CodecError) as exc_info:
            await read_full_body(_broken_stream())

        assert isinstance(exc_info.value.__cause__, RuntimeError)


class TestDecompress:
    """Test cases for decompress."""

    @pytest.fixture
    def payload(self):
        return b'{"data":[{"id":1,"title":"Hello"}]}'

    def test_gzip(self, payload):
        assert decompress(gzip.compress(payload), "gzip") == payload

    def test_gzip_case_insensitive(self, payload):
        assert decompress(gzip.compress(payload), "GZIP") == payload

    def test_deflate(self, payload):
        assert decompress(zlib.compress(payload), "deflate") == payload

    def test_raw_deflate(self, payload):
        compressor = zlib.compressobj(wbits=-zlib.MAX_WBITS)
        raw = compressor.compress(payload) + compressor.flush()
        assert decompress(raw, "deflate") == payload

    def test_brotli(self, payload):
        assert decompress(brotli.compress(payload), "br") == payload

    def test_stacked_encodings(self, payload):
        encoded = brotli.compress(gzip.compress(payload))
        assert decompress(encoded, "gzip, br") == payload

    @pytest.mark.parametrize("encoding", [None, "", "identity", "compress-unknown"])
    def test_passthrough(self, payload, encoding):
        assert decompress(payload, encoding) == payload

    @pytest.mark.parametrize("encoding,expected", [
        (None, True),
        ("identity", True),
        ("gzip", True),
        ("GZIP, br", True),
        ("deflate, identity", True),
        ("zstd", False),
        ("gzip, compress", False),
    ])
    def test_is_supported_encoding(self, encoding, expected):
        assert is_supported_encoding(encoding) is expected

    def test_empty_gzip_raises(self):
        with pytest.raises(CodecError):
            decompress(b"", "gzip")

    def test_malformed_gzip_raises(self):
        with pytest.raises(CodecError) as exc_info:
            decompress(b"definitely not gzip", "gzip")

        assert exc_info.value.details == {"encoding": "gzip"}

    def test_truncated_brotli_raises(self, payload):
        truncated = brotli.compress(payload * 20)[:-4]
        with pytest.raises(CodecError):
            decompress(truncated, "br")


class TestTextHelpers:
    """Test cases for decode_text and is_textual."""

    def test_decode_text_utf8(self):
        assert decode_text("héllo".encode("utf-8")) == "héllo"

    def test_decode_text_replaces_invalid(self):
        assert decode_text(b"ok\xff") == "ok\ufffd"

    @pytest.mark.parametrize("content_type,expected", [
        ("application/json; charset=utf-8", True),
        ("text/html", True),
        ("application/graphql-response+json", True),
        ("image/png", False),
        ("application/octet-stream", False),
        (None, False),
    ])
    def test_is_textual(self, content_type, expected):
        assert is_textual(content_type) is expected
