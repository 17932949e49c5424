"""
Payload codec: drains response bodies and undoes content encodings so the
stored entry holds the plain payload.
"""

import gzip
import zlib
from typing import AsyncIterable, List, Optional, Union

import brotli

from shared.errors import CodecError

Chunk = Union[bytes, bytearray, memoryview, str]

_TEXTUAL_MARKERS = ("json", "xml", "javascript", "graphql", "x-www-form-urlencoded")


def _to_bytes(chunk: Chunk) -> bytes:
    if isinstance(chunk, str):
        return chunk.encode("utf-8")
    return bytes(chunk)


async def read_full_body(stream: AsyncIterable[Chunk]) -> bytes:
    """Drain ``stream`` into one buffer.

    A failure while iterating is raised as CodecError chained to the
    original exception; partial data is discarded.
    """
    buffer = bytearray()
    try:
        async for chunk in stream:
            buffer.extend(_to_bytes(chunk))
    except Exception as exc:
        raise CodecError(f"Failed to read response body: {exc}") from exc
    return bytes(buffer)


def _gunzip(data: bytes) -> bytes:
    return gzip.decompress(data)


def _inflate(data: bytes) -> bytes:
    try:
        return zlib.decompress(data)
    except zlib.error:
        # Some servers send raw deflate without the zlib wrapper
        return zlib.decompress(data, -zlib.MAX_WBITS)


def _unbrotli(data: bytes) -> bytes:
    return brotli.decompress(data)


_DECODERS = {
    "gzip": _gunzip,
    "x-gzip": _gunzip,
    "deflate": _inflate,
    "br": _unbrotli,
}


def _encoding_tokens(content_encoding: Optional[str]) -> List[str]:
    if not content_encoding:
        return []
    tokens = [token.strip().lower() for token in content_encoding.split(",") if token.strip()]
    return [token for token in tokens if token != "identity"]


def is_supported_encoding(content_encoding: Optional[str]) -> bool:
    """Whether ``decompress`` can fully undo ``content_encoding``."""
    return all(token in _DECODERS for token in _encoding_tokens(content_encoding))


def decompress(data: bytes, content_encoding: Optional[str] = None) -> bytes:
    """Undo ``content_encoding`` on ``data``.

    Supports gzip, deflate and br, including stacked codings such as
    ``"gzip, br"``. Identity, absent or unrecognised codings return the
    input unchanged. Malformed or empty compressed input raises CodecError.
    """
    tokens = _encoding_tokens(content_encoding)
    if not tokens or not is_supported_encoding(content_encoding):
        return data

    result = data
    for token in reversed(tokens):
        if not result:
            raise CodecError(f"Empty body cannot be decoded as {token}", {"encoding": token})
        try:
            result = _DECODERS[token](result)
        except (OSError, EOFError, zlib.error, brotli.error) as exc:
            raise CodecError(
                f"Failed to decompress {token} body: {exc}", {"encoding": token}
            ) from exc
    return result


def decode_text(data: bytes) -> str:
    """Decode UTF-8, substituting U+FFFD for invalid sequences."""
    return data.decode("utf-8", errors="replace")


def is_textual(content_type: Optional[str]) -> bool:
    """Whether a body of this media type is safe to store as text."""
    if not content_type:
        return False
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type.startswith("text/") or any(marker in media_type for marker in _TEXTUAL_MARKERS)
