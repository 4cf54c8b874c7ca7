# firerest/reference.py
"""
Reference: a location in the remote JSON tree plus its query configuration.

    root = new("my-db.firebaseio.com")
    users = root.child("users")
    users.auth(secret)
    users.order_by("age").limit_to_first(10).read()
    ref = users.create_child({"name": "ada"})      # POST, server-generated key

Derivations (child, order_by, limit_to_first, ...) return new References and
never touch the parent. auth/unauth/set_token_source mutate the Reference they
are called on; References derived afterwards inherit the new state, earlier
ones do not.

create_child issues a POST and then decodes the response to learn the key.
If decoding fails the write has still happened remotely.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from firerest.codec import JsonCodec, default_codec
from firerest.context import CancellationToken, Context
from firerest.errors import SerializationError, ValueMissingError
from firerest.http.client import execute
from firerest.http.transport import Transport, default_transport
from firerest.tokens import TokenSource
from firerest.util.url import copy_params, encode_query, join_path, sanitize_url
from firerest.watch import WatchState

logger = logging.getLogger(__name__)

# query parameter names
ACCESS_TOKEN_PARAM = "access_token"
AUTH_PARAM = "auth"
SHALLOW_PARAM = "shallow"
FORMAT_PARAM = "format"
FORMAT_EXPORT = "export"
ORDER_BY_PARAM = "orderBy"
LIMIT_TO_FIRST_PARAM = "limitToFirst"
LIMIT_TO_LAST_PARAM = "limitToLast"
START_AT_PARAM = "startAt"
END_AT_PARAM = "endAt"
EQUAL_TO_PARAM = "equalTo"

# field of the POST response holding the generated key
GENERATED_KEY_FIELD = "name"


class Reference:
    def __init__(
        self,
        url: str,
        transport: Optional[Transport] = None,
        token_source: Optional[TokenSource] = None,
        codec: Optional[JsonCodec] = None,
    ) -> None:
        self._url = sanitize_url(url)
        self._transport = transport if transport is not None else default_transport()
        self._token_source = token_source
        self._codec = codec or default_codec
        self._params: Dict[str, List[str]] = {}
        self._watch = WatchState()

    def __repr__(self) -> str:
        return f"Reference({self._url!r})"

    def __str__(self) -> str:
        return self.render()

    @property
    def url(self) -> str:
        return self._url

    @property
    def key(self) -> Optional[str]:
        """Last path segment, None at the database root."""
        path = self._url.split("://", 1)[1]
        if "/" not in path:
            return None
        return path.rsplit("/", 1)[1]

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def token_source(self) -> Optional[TokenSource]:
        return self._token_source

    @property
    def query(self) -> Dict[str, List[str]]:
        return copy_params(self._params)

    # ---- derivation ----

    def _copy(self) -> "Reference":
        c = Reference(
            self._url,
            transport=self._transport,
            token_source=self._token_source,
            codec=self._codec,
        )
        c._params = copy_params(self._params)
        return c

    def child(self, name: str) -> "Reference":
        """New Reference for `name` below this one, with the same configuration."""
        name = (name or "").strip("/")
        if not name:
            raise ValueError("child name must be a non-empty path")
        c = self._copy()
        c._url = join_path(c._url, name)
        return c

    def _with_param(self, key: str, value: Optional[str]) -> "Reference":
        c = self._copy()
        if value is None:
            c._params.pop(key, None)
        else:
            c._params[key] = [value]
        return c

    # ---- query filters ----

    def shallow(self, enabled: bool = True) -> "Reference":
        return self._with_param(SHALLOW_PARAM, "true" if enabled else None)

    def include_priority(self, enabled: bool = True) -> "Reference":
        return self._with_param(FORMAT_PARAM, FORMAT_EXPORT if enabled else None)

    def order_by(self, path: Optional[str]) -> "Reference":
        """Order children by a child path, or by "$key", "$value", "$priority"."""
        if path is not None and (not isinstance(path, str) or not path):
            raise ValueError("order_by path must be a non-empty string")
        return self._with_param(ORDER_BY_PARAM, None if path is None else json.dumps(path))

    def order_by_key(self) -> "Reference":
        return self.order_by("$key")

    def order_by_value(self) -> "Reference":
        return self.order_by("$value")

    def order_by_priority(self) -> "Reference":
        return self.order_by("$priority")

    def _limit(self, key: str, limit: int) -> "Reference":
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
            raise ValueError("limit must be a non-negative integer")
        return self._with_param(key, str(limit) if limit > 0 else None)

    def limit_to_first(self, limit: int) -> "Reference":
        """Keep the first `limit` children; 0 clears the limit."""
        return self._limit(LIMIT_TO_FIRST_PARAM, limit)

    def limit_to_last(self, limit: int) -> "Reference":
        """Keep the last `limit` children; 0 clears the limit."""
        return self._limit(LIMIT_TO_LAST_PARAM, limit)

    def _bound(self, key: str, value: Any) -> "Reference":
        if value is None:
            return self._with_param(key, None)
        try:
            encoded = json.dumps(value, allow_nan=False)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"cannot encode {key} value: {e}") from e
        return self._with_param(key, encoded)

    def start_at(self, value: Any) -> "Reference":
        return self._bound(START_AT_PARAM, value)

    def end_at(self, value: Any) -> "Reference":
        return self._bound(END_AT_PARAM, value)

    def equal_to(self, value: Any) -> "Reference":
        return self._bound(EQUAL_TO_PARAM, value)

    # ---- authentication ----

    def auth(self, token: str) -> None:
        """Set the custom database token (or legacy secret) sent as ?auth=."""
        self._params[AUTH_PARAM] = [token]

    def unauth(self) -> None:
        self._params.pop(AUTH_PARAM, None)

    def set_token_source(self, source: Optional[TokenSource]) -> None:
        """Install the OAuth2 token source used for ?access_token= on every request."""
        self._token_source = source

    # ---- rendering ----

    def _resolve_access_token(self) -> Optional[str]:
        if self._token_source is None:
            return None
        try:
            token = self._token_source.token()
        except Exception as e:
            # best effort: the request goes out without an access token
            logger.debug("token source failed, omitting access_token: %s", e)
            return None
        return token or None

    def render(self) -> str:
        """Request URL: <url>/.json plus the canonical query string."""
        path = self._url + "/.json"
        params = copy_params(self._params)
        token = self._resolve_access_token()
        if token is not None:
            params[ACCESS_TOKEN_PARAM] = [token]
        if params:
            path += "?" + encode_query(params)
        return path

    def _do_request(self, method: str, body: Optional[bytes], ctx: Optional[Context]) -> bytes:
        return execute(self._transport, method, self.render(), body, ctx)

    # ---- operations ----

    def read(self, target: Any = None, ctx: Optional[Context] = None) -> Any:
        """
        GET the value at this location. `target` is an optional type the
        decoded JSON is validated into. A missing node reads as None.
        """
        body = self._do_request("GET", None, ctx)
        return self._codec.decode(body, target)

    def read_required(self, target: Any = None, ctx: Optional[Context] = None) -> Any:
        """Like read(), but raises ValueMissingError for an empty or null node."""
        body = self._do_request("GET", None, ctx)
        if len(body) == 0 or body == b"null":
            raise ValueMissingError()
        return self._codec.decode(body, target)

    def write(self, value: Any, ctx: Optional[Context] = None) -> None:
        """PUT: replace the value at this location."""
        body = self._codec.encode(value)
        self._do_request("PUT", body, ctx)

    def update(self, value: Any, ctx: Optional[Context] = None) -> None:
        """PATCH: update the given children, leaving the others alone."""
        body = self._codec.encode(value)
        self._do_request("PATCH", body, ctx)

    def delete(self, ctx: Optional[Context] = None) -> None:
        self._do_request("DELETE", None, ctx)

    def create_child(self, value: Any, ctx: Optional[Context] = None) -> "Reference":
        """
        POST `value` under a server-generated key and return a Reference to it.
        The new Reference shares this transport only: no query, no token source.
        """
        body = self._codec.encode(value)
        resp = self._do_request("POST", body, ctx)
        data = self._codec.decode(resp)
        key = data.get(GENERATED_KEY_FIELD) if isinstance(data, dict) else None
        if not isinstance(key, str) or not key:
            raise SerializationError(
                f"response has no {GENERATED_KEY_FIELD!r} field: {resp[:200]!r}"
            )
        return Reference(join_path(self._url, key), transport=self._transport, codec=self._codec)

    # ---- watch session state ----

    @property
    def watching(self) -> bool:
        return self._watch.watching

    def start_watch(self) -> CancellationToken:
        """Mark this Reference as watched; raises WatchActiveError if it already is."""
        return self._watch.start()

    def stop_watch(self) -> None:
        self._watch.stop()


def new(
    url: str,
    transport: Optional[Transport] = None,
    token_source: Optional[TokenSource] = None,
) -> Reference:
    """Root Reference for `url`; the process-wide default transport when none is given."""
    return Reference(url, transport=transport, token_source=token_source)
