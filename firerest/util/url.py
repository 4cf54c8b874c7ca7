from typing import Dict, List
from urllib.parse import urlencode

_SCHEMES = ("http://", "https://")


def looks_like_url(s: object) -> bool:
    return isinstance(s, str) and s.startswith(_SCHEMES)


def sanitize_url(url: str) -> str:
    """
    Normalize a database URL: default to https:// when no scheme is given and
    drop trailing slashes. Idempotent.
    """
    url = (url or "").strip()
    if not looks_like_url(url):
        url = "https://" + url
    scheme, rest = url.split("://", 1)
    return scheme + "://" + rest.rstrip("/")


def join_path(base_url: str, segment: str) -> str:
    return base_url + "/" + segment.strip("/")


def encode_query(params: Dict[str, List[str]]) -> str:
    """Canonical query string: keys sorted, values kept in insertion order."""
    pairs = [(k, v) for k in sorted(params) for v in params[k]]
    return urlencode(pairs)


def copy_params(params: Dict[str, List[str]]) -> Dict[str, List[str]]:
    # lists are copied too so a derived reference never aliases its parent
    return {k: list(v) for k, v in params.items()}
