"""
Cache key derivation.

Keys are opaque to storage. Only the invalidator interprets them, and only
through regular expressions.
"""

import base64
import hashlib
import re
from typing import Union
from urllib.parse import unquote

GRAPHQL_KEY_PREFIX = "POST:/graphql"


def build_request_key(method: str, raw_url: str) -> str:
    """Key for a REST request: ``METHOD:decoded_url``.

    No normalization is applied; ``/a?x=1&y=2`` and ``/a?y=2&x=1`` are
    different keys.
    """
    return f"{method}:{unquote(raw_url, errors='strict')}"


def build_graphql_key(payload: Union[str, bytes]) -> str:
    """Key for a GraphQL operation: ``POST:/graphql:<sha256 base64url>``."""
    data = payload.encode("utf-8") if isinstance(payload, str) else bytes(payload)
    digest = hashlib.sha256(data).digest()
    encoded = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return f"{GRAPHQL_KEY_PREFIX}:{encoded}"


def escape_regexp(value: str) -> str:
    """Escape a literal so it can be embedded in a pattern."""
    return re.escape(value)
