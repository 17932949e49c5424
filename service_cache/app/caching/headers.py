"""
Header policy: decides which response headers are persisted with an entry.
"""

from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple, Union

HeaderSource = Union[Mapping[str, str], Iterable[Tuple[str, str]]]

# Never replayed: the stored body is already decompressed and the length is
# recomputed on serve.
REPLAY_EXCLUDED_HEADERS = frozenset({"content-encoding", "content-length", "transfer-encoding"})


def _iter_headers(headers: HeaderSource) -> Iterable[Tuple[str, str]]:
    if hasattr(headers, "items"):
        return headers.items()
    return headers


def select_headers(
    all_headers: HeaderSource,
    capture_enabled: bool,
    allow_list: Optional[Sequence[str]] = None,
    deny_list: Optional[Sequence[str]] = None,
) -> Optional[Dict[str, str]]:
    """Filter ``all_headers`` through the allow and deny lists.

    Returns None when capture is disabled. Names compare case-insensitively.
    A non-empty allow list keeps only the names it lists; a non-empty deny
    list then removes its names. Empty or missing lists pass everything.
    Repeated header names, in any case, are joined with ``", "`` under the
    first spelling seen.
    """
    if not capture_enabled:
        return None

    allowed = {name.lower() for name in allow_list or ()}
    denied = {name.lower() for name in deny_list or ()}

    selected: Dict[str, str] = {}
    # lowered name -> first spelling seen
    spelling: Dict[str, str] = {}
    for name, value in _iter_headers(all_headers):
        lowered = name.lower()
        if allowed and lowered not in allowed:
            continue
        if denied and lowered in denied:
            continue
        if lowered in spelling:
            first = spelling[lowered]
            selected[first] = f"{selected[first]}, {value}"
        else:
            spelling[lowered] = name
            selected[name] = value
    return selected


def replay_headers(stored: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """Headers to send with a cache hit."""
    if not stored:
        return {}
    return {
        name: value
        for name, value in stored.items()
        if name.lower() not in REPLAY_EXCLUDED_HEADERS
    }
