# === NAVMAP v1 ===
# {
#   "module": "courier.options",
#   "purpose": "Validate and merge request options into NormalizedOptions",
#   "sections": [
#     {"id": "policies", "name": "TimeoutPolicy / RetryPolicy", "anchor": "POL", "kind": "api"},
#     {"id": "normalized-options", "name": "NormalizedOptions", "anchor": "class-normalizedoptions", "kind": "class"},
#     {"id": "normalize-options", "name": "normalize_options", "anchor": "function-normalize-options", "kind": "function"},
#     {"id": "merge-options", "name": "merge_options", "anchor": "function-merge-options", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Options normalization.

Callers hand the engine a loose mapping (``{"method": "post", "json": {...}}``)
layered over instance defaults.  :func:`normalize_options` validates every
field, merges the nested structures (headers, hooks, retry and timeout
policies, query parameters) and returns a :class:`NormalizedOptions` whose
invariants the rest of the package relies on:

* ``method`` is upper-case;
* ``url`` is an absolute ``httpx.URL`` with an ``http``/``https`` scheme and
  no userinfo (credentials live in ``username``/``password``);
* header names are lower-case and no header value is ``None``;
* ``hooks`` has a list for every phase, defaults' hooks first;
* ``retry`` and ``timeout`` are immutable pydantic models.

``body``, ``json``, ``form`` and ``context`` are passed through by reference;
merging never copies or traverses them.

Example:
    >>> options = normalize_options("https://example.com", {"method": "post"})
    >>> options.method
    'POST'
"""

from __future__ import annotations

import codecs
import logging
import math
import warnings
from dataclasses import FrozenInstanceError, dataclass, field, fields
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from courier.cookies import CookieJarAdapter, adapt_cookie_jar
from courier.dns import CachedResolver
from courier.errors import OptionsError, UnsupportedProtocolError
from courier.hooks import Hooks
from courier.network.cache import resolve_cache_storage
from courier.network.policy import (
    MAX_REDIRECTS,
    RETRY_ERROR_CODES,
    RETRY_LIMIT,
    RETRY_METHODS,
    RETRY_STATUS_CODES,
)

logger = logging.getLogger(__name__)

__all__ = [
    "TimeoutPolicy",
    "RetryPolicy",
    "NormalizedOptions",
    "normalize_options",
    "merge_options",
    "OPTION_NAMES",
]


# ============================================================================
# Policies
# ============================================================================


class TimeoutPolicy(BaseModel):
    """Per-phase deadlines in seconds; ``None`` disables a phase.

    ``connect``, ``socket`` (read idle) and ``send`` (write) are enforced by
    httpx; ``lookup`` bounds the DNS-cache lookup; ``response`` bounds the
    wait for response headers; ``request`` bounds the whole exchange.
    """

    lookup: Optional[float] = Field(default=None, gt=0)
    connect: Optional[float] = Field(default=None, gt=0)
    socket: Optional[float] = Field(default=None, gt=0)
    send: Optional[float] = Field(default=None, gt=0)
    response: Optional[float] = Field(default=None, gt=0)
    request: Optional[float] = Field(default=None, gt=0)

    model_config = ConfigDict(extra="forbid", frozen=True)

    def as_httpx(self) -> httpx.Timeout:
        return httpx.Timeout(connect=self.connect, read=self.socket, write=self.send, pool=None)


def _use_computed_value(info: Any) -> float:
    return info.computed_value


class RetryPolicy(BaseModel):
    """Retry allow-lists and the delay function.

    ``calculate_delay`` receives a :class:`~courier.network.retry.RetryInfo`
    and returns the delay in seconds (or an awaitable of it); ``0`` stops
    retrying.
    """

    limit: int = Field(default=RETRY_LIMIT, ge=0)
    methods: frozenset[str] = RETRY_METHODS
    status_codes: frozenset[int] = RETRY_STATUS_CODES
    error_codes: frozenset[str] = RETRY_ERROR_CODES
    max_retry_after: Optional[float] = Field(default=None, ge=0)
    calculate_delay: Callable[[Any], Any] = _use_computed_value

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("methods", mode="before")
    @classmethod
    def upper_case_methods(cls, value: Any) -> Any:
        if isinstance(value, str):
            raise ValueError("methods must be a collection of method names")
        return frozenset(str(method).upper() for method in value)


# ============================================================================
# Normalized Options
# ============================================================================

PASSTHROUGH_OPTIONS = ("body", "json", "form", "context")

BOOLEAN_OPTIONS = (
    "decompress",
    "follow_redirect",
    "throw_http_errors",
    "http2",
    "allow_get_body",
    "reject_unauthorized",
    "method_rewriting",
    "ignore_invalid_cookies",
    "resolve_body_only",
    "is_stream",
)

LEGACY_URL_OPTIONS = ("path", "pathname", "host", "hostname", "port", "search", "protocol")

CLIENT_KEYS = frozenset({"http", "https", "http2"})

SEARCH_PARAM_TYPES = (str, int, float, bool)


@dataclass(eq=True)
class NormalizedOptions:
    """Validated, fully defaulted configuration for one request attempt."""

    url: Optional[httpx.URL] = None
    _prefix_url: str = ""
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    search_params: Optional[httpx.QueryParams] = None
    username: str = ""
    password: str = ""

    body: Any = field(default=None, metadata={"passthrough": True})
    json: Any = field(default=None, metadata={"passthrough": True})
    form: Any = field(default=None, metadata={"passthrough": True})
    context: Any = field(default_factory=dict, metadata={"passthrough": True})

    cookie_jar: Optional[CookieJarAdapter] = None
    ignore_invalid_cookies: bool = False
    dns_cache: Any = None
    cache: Any = None

    timeout: TimeoutPolicy = field(default_factory=TimeoutPolicy)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    hooks: Hooks = field(default_factory=Hooks)

    decompress: bool = True
    follow_redirect: bool = True
    max_redirects: int = MAX_REDIRECTS
    method_rewriting: bool = True
    throw_http_errors: bool = True
    http2: bool = False
    allow_get_body: bool = False
    reject_unauthorized: bool = True

    encoding: str = "utf-8"
    response_type: str = "text"
    resolve_body_only: bool = False
    is_stream: bool = False

    transport: Optional[Callable[..., Any]] = None
    clients: Optional[Mapping[str, httpx.AsyncClient]] = None
    local_address: Optional[str] = None
    socket_path: Optional[str] = None

    _frozen: bool = field(default=False, compare=False, repr=False)

    def __setattr__(self, name: str, value: Any) -> None:
        if self.__dict__.get("_frozen"):
            raise FrozenInstanceError(f"cannot assign to field {name!r} of frozen options")
        super().__setattr__(name, value)

    @property
    def prefix_url(self) -> str:
        return self._prefix_url

    @prefix_url.setter
    def prefix_url(self, value: Union[str, httpx.URL]) -> None:
        """Change the prefix, rebasing ``url`` when it was built from the old one."""
        new_prefix = str(value)
        if new_prefix and not new_prefix.endswith("/"):
            new_prefix += "/"
        if self.url is not None and self._prefix_url:
            current = str(self.url)
            if not current.startswith(self._prefix_url):
                raise OptionsError(
                    f"Cannot change `prefix_url` from {self._prefix_url} to {new_prefix}: {current}"
                )
            self.url = httpx.URL(new_prefix + current[len(self._prefix_url) :])
        self._prefix_url = new_prefix

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def to_dict(self) -> dict[str, Any]:
        """Return the options as a mapping accepted by :func:`normalize_options`."""
        result: dict[str, Any] = {}
        for item in fields(self):
            if item.name.startswith("_"):
                continue
            result[item.name] = getattr(self, item.name)
        if self._prefix_url:
            result["prefix_url"] = self._prefix_url
        return result

    def derive(self) -> "NormalizedOptions":
        """Copy for a new attempt; containers are cloned, passthrough fields shared."""
        values: dict[str, Any] = {}
        for item in fields(self):
            if item.name == "_frozen":
                continue
            values[item.name] = getattr(self, item.name)
        values["headers"] = dict(self.headers)
        values["hooks"] = self.hooks.copy()
        if isinstance(self.context, MappingProxyType):
            values["context"] = dict(self.context)
        if self.clients is not None:
            values["clients"] = dict(self.clients)
        return NormalizedOptions(**values)

    def freeze(self) -> "NormalizedOptions":
        """Return a read-only copy used as immutable instance defaults."""
        frozen = self.derive()
        frozen.headers = MappingProxyType(dict(frozen.headers))  # type: ignore[assignment]
        frozen.hooks = Hooks(
            **{name: tuple(getattr(frozen.hooks, name)) for name in _hook_names()}  # type: ignore[arg-type]
        )
        if isinstance(frozen.context, dict):
            frozen.context = MappingProxyType(frozen.context)
        if frozen.clients is not None:
            frozen.clients = MappingProxyType(dict(frozen.clients))
        frozen._frozen = True
        return frozen


def _hook_names() -> tuple[str, ...]:
    return tuple(item.name for item in fields(Hooks))


OPTION_NAMES = frozenset(
    [item.name for item in fields(NormalizedOptions) if not item.name.startswith("_")]
    + ["prefix_url"]
)


# ============================================================================
# Normalization
# ============================================================================


def normalize_options(
    url: Union[str, httpx.URL, Mapping[str, Any], NormalizedOptions, None] = None,
    options: Union[Mapping[str, Any], NormalizedOptions, None] = None,
    defaults: Optional[NormalizedOptions] = None,
) -> NormalizedOptions:
    """Validate ``options`` layered over ``defaults``.

    Args:
        url: Absolute URL, a path relative to ``prefix_url``, or a mapping
            of options used as an overlay.
        options: Caller options. A :class:`NormalizedOptions` is accepted
            and normalizes to an equivalent value.
        defaults: Instance defaults; ``options`` win over them.

    Returns:
        A new :class:`NormalizedOptions`.

    Raises:
        OptionsError: On the first invalid field.
        UnsupportedProtocolError: When the resolved URL is not http/https.
    """
    if isinstance(url, (Mapping, NormalizedOptions)):
        options = {**_as_mapping(url), **_as_mapping(options)}
        url = None

    raw = _as_mapping(options)
    if url is not None:
        if raw.get("url") is not None:
            raise OptionsError("The `url` option is mutually exclusive with the `url` argument")
        raw["url"] = url

    _check_option_names(raw)
    provided = {key: value for key, value in raw.items() if value is not None}

    opts = defaults.derive() if defaults is not None else NormalizedOptions()

    if "method" in provided:
        method = provided["method"]
        if not isinstance(method, str):
            raise OptionsError(f"Expected `method` to be a string, got {type(method).__name__}")
        opts.method = method.upper()

    if "headers" in provided:
        opts.headers = _merge_headers(opts.headers, provided["headers"])

    if "prefix_url" in provided:
        prefix = str(provided["prefix_url"])
        if prefix and not prefix.endswith("/"):
            prefix += "/"
        opts._prefix_url = prefix

    if "search_params" in provided:
        params = _coerce_search_params(provided["search_params"])
        if defaults is not None and defaults.search_params is not None:
            for key, value in defaults.search_params.multi_items():
                if key not in params:
                    params = params.add(key, value)
        opts.search_params = params

    if "url" in provided:
        opts.url = _resolve_url(provided["url"], opts.prefix_url)
        if opts.search_params is not None and "search_params" not in provided:
            params = opts.url.params
            for key, value in opts.search_params.multi_items():
                if key not in params:
                    params = params.add(key, value)
            opts.url = opts.url.copy_with(params=params)
        elif opts.search_params is not None:
            opts.url = opts.url.copy_with(params=opts.search_params)
    elif opts.url is not None and "search_params" in provided:
        opts.url = opts.url.copy_with(params=opts.search_params)

    if opts.url is not None:
        _move_credentials(opts)

    _apply_credentials(opts, provided)

    if "cookie_jar" in provided:
        opts.cookie_jar = adapt_cookie_jar(provided["cookie_jar"])

    if "cache" in provided:
        opts.cache = resolve_cache_storage(provided["cache"])

    if "dns_cache" in provided:
        opts.dns_cache = _coerce_dns_cache(provided["dns_cache"])

    if "timeout" in provided:
        opts.timeout = _merge_timeout(opts.timeout, provided["timeout"])

    if "context" in provided:
        context = provided["context"]
        if not isinstance(context, Mapping):
            raise OptionsError(f"Expected `context` to be a mapping, got {type(context).__name__}")
        opts.context = context
    for name in ("body", "json", "form"):
        if name in raw:
            setattr(opts, name, raw[name])

    if "hooks" in provided:
        opts.hooks = opts.hooks.merge(Hooks.coerce(provided["hooks"]))

    for name in BOOLEAN_OPTIONS:
        if name in provided:
            value = provided[name]
            if not isinstance(value, bool):
                raise OptionsError(f"Expected `{name}` to be a boolean, got {type(value).__name__}")
            setattr(opts, name, value)

    if "max_redirects" in provided:
        value = provided["max_redirects"]
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise OptionsError(f"Expected `max_redirects` to be a non-negative integer, got {value!r}")
        opts.max_redirects = value

    if "retry" in provided:
        opts.retry = _merge_retry(opts.retry, provided["retry"])
    if opts.retry.max_retry_after is None:
        limits = [value for value in (opts.timeout.request, opts.timeout.connect) if value is not None]
        opts.retry = _validate_model(
            RetryPolicy, {**_model_values(opts.retry), "max_retry_after": min(limits) if limits else math.inf}
        )

    if "encoding" in provided:
        encoding = provided["encoding"]
        if not isinstance(encoding, str):
            raise OptionsError(f"Expected `encoding` to be a string, got {type(encoding).__name__}")
        try:
            codecs.lookup(encoding)
        except LookupError as exc:
            raise OptionsError(f"Unknown encoding `{encoding}`") from exc
        opts.encoding = encoding

    if "response_type" in provided:
        response_type = provided["response_type"]
        if not isinstance(response_type, str):
            raise OptionsError(
                f"Expected `response_type` to be a string, got {type(response_type).__name__}"
            )
        opts.response_type = response_type

    _apply_transport_options(opts, provided)
    return opts


def merge_options(*sources: Union[Mapping[str, Any], NormalizedOptions, None]) -> NormalizedOptions:
    """Fold ``sources`` left to right; later sources win, hooks concatenate."""
    merged: Optional[NormalizedOptions] = None
    for source in sources:
        merged = normalize_options(None, source, merged)
    return merged if merged is not None else NormalizedOptions()


# ============================================================================
# Helpers
# ============================================================================


def _as_mapping(options: Union[Mapping[str, Any], NormalizedOptions, None]) -> dict[str, Any]:
    if options is None:
        return {}
    if isinstance(options, NormalizedOptions):
        return options.to_dict()
    if not isinstance(options, Mapping):
        raise OptionsError(f"Expected options to be a mapping, got {type(options).__name__}")
    return dict(options)


def _check_option_names(raw: Mapping[str, Any]) -> None:
    for key in raw:
        if key in LEGACY_URL_OPTIONS:
            raise OptionsError(f"The legacy `url.{key}` option is not supported. Pass a full URL instead.")
        if key == "follow_redirects":
            raise OptionsError("The `follow_redirects` option does not exist. Use `follow_redirect` instead.")
        if key == "encoding" and raw[key] is None:
            raise OptionsError("To get a bytes body, set `response_type` to `buffer` instead")
        if key not in OPTION_NAMES and key != "auth":
            raise OptionsError(f"Unexpected option `{key}`")


def _header_value(name: str, value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bytes):
        return value.decode("latin-1")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    raise OptionsError(f"Expected header `{name}` to be a string, got {type(value).__name__}")


def _merge_headers(base: Mapping[str, str], headers: Any) -> dict[str, str]:
    if not isinstance(headers, (Mapping, httpx.Headers)):
        raise OptionsError(f"Expected `headers` to be a mapping, got {type(headers).__name__}")
    merged = dict(base)
    for key, value in headers.items():
        name = key.decode("latin-1") if isinstance(key, bytes) else str(key)
        name = name.lower()
        if value is None:
            merged.pop(name, None)
            continue
        merged[name] = _header_value(name, value)
    return merged


def _coerce_search_params(value: Any) -> httpx.QueryParams:
    if isinstance(value, httpx.QueryParams):
        return value
    if isinstance(value, str):
        return httpx.QueryParams(value.lstrip("?"))
    if isinstance(value, Mapping):
        items: list[tuple[str, str]] = []
        for key, item in value.items():
            if item is None:
                items.append((str(key), ""))
            elif isinstance(item, SEARCH_PARAM_TYPES):
                items.append((str(key), _search_param_value(item)))
            else:
                raise OptionsError(
                    f"Expected `search_params.{key}` to be a string, number, boolean or None, "
                    f"got {type(item).__name__}"
                )
        return httpx.QueryParams(items)
    raise OptionsError(
        f"Expected `search_params` to be a string, mapping or QueryParams, got {type(value).__name__}"
    )


def _search_param_value(value: Union[str, int, float, bool]) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _resolve_url(value: Any, prefix_url: str) -> httpx.URL:
    if isinstance(value, str):
        if prefix_url and value.startswith("/"):
            raise OptionsError("`url` must not start with a slash when using `prefix_url`")
        value = prefix_url + value
    elif not isinstance(value, httpx.URL):
        raise OptionsError(f"Expected `url` to be a string or httpx.URL, got {type(value).__name__}")

    try:
        url = httpx.URL(value)
    except (httpx.InvalidURL, TypeError) as exc:
        raise OptionsError(f"Invalid URL: {value}") from exc

    if url.scheme == "unix":
        url = httpx.URL("http://unix" + url.raw_path.decode("ascii"))
    if not url.scheme:
        raise OptionsError(f"Invalid URL: {value}")
    if url.scheme not in ("http", "https"):
        raise UnsupportedProtocolError(url)
    if not url.host:
        raise OptionsError(f"Invalid URL: {value}")
    return url


def _move_credentials(opts: NormalizedOptions) -> None:
    url = opts.url
    if url is None or not url.userinfo:
        return
    if url.username:
        opts.username = url.username
    if url.password:
        opts.password = url.password
    opts.url = url.copy_with(username="", password="")


def _apply_credentials(opts: NormalizedOptions, provided: Mapping[str, Any]) -> None:
    if "auth" in provided:
        if "username" in provided or "password" in provided:
            raise OptionsError("The `auth` option is mutually exclusive with `username` and `password`")
        warnings.warn(
            "The `auth` option is deprecated. Use `username` and `password` instead.",
            DeprecationWarning,
            stacklevel=4,
        )
        auth = provided["auth"]
        if isinstance(auth, (tuple, list)) and len(auth) == 2:
            opts.username, opts.password = str(auth[0]), str(auth[1])
        elif isinstance(auth, str):
            opts.username, _, opts.password = auth.partition(":")
        else:
            raise OptionsError("Expected `auth` to be a 'user:password' string or a pair")

    for name in ("username", "password"):
        if name in provided:
            value = provided[name]
            if not isinstance(value, str):
                raise OptionsError(f"Expected `{name}` to be a string, got {type(value).__name__}")
            setattr(opts, name, value)


def _coerce_dns_cache(value: Any) -> Any:
    if value is True:
        return CachedResolver()
    if value is False:
        return None
    if callable(getattr(value, "lookup", None)):
        return value
    raise OptionsError(
        f"Expected `dns_cache` to be a boolean or an object with a `lookup` method, got {type(value).__name__}"
    )


def _model_values(model: BaseModel) -> dict[str, Any]:
    return {name: getattr(model, name) for name in type(model).model_fields}


def _validate_model(model: type[BaseModel], values: Mapping[str, Any]) -> Any:
    try:
        return model.model_validate(dict(values))
    except ValidationError as exc:
        raise OptionsError(f"Invalid `{model.__name__}`: {exc}") from exc


def _merge_timeout(base: TimeoutPolicy, value: Any) -> TimeoutPolicy:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        update: Mapping[str, Any] = {"request": value}
    elif isinstance(value, TimeoutPolicy):
        update = value.model_dump(exclude_none=True)
    elif isinstance(value, Mapping):
        update = value
    else:
        raise OptionsError(f"Expected `timeout` to be a number or mapping, got {type(value).__name__}")
    return _validate_model(TimeoutPolicy, {**_model_values(base), **update})


def _merge_retry(base: RetryPolicy, value: Any) -> RetryPolicy:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        update: Mapping[str, Any] = {"limit": int(value)}
    elif isinstance(value, RetryPolicy):
        update = _model_values(value)
    elif isinstance(value, Mapping):
        update = {key: item for key, item in value.items() if item is not None}
        if "max_retry_after" in value and value["max_retry_after"] is None:
            update = {**update, "max_retry_after": None}
    else:
        raise OptionsError(f"Expected `retry` to be a number or mapping, got {type(value).__name__}")
    return _validate_model(RetryPolicy, {**_model_values(base), **update})


def _apply_transport_options(opts: NormalizedOptions, provided: Mapping[str, Any]) -> None:
    if "transport" in provided:
        transport = provided["transport"]
        if not callable(transport):
            raise OptionsError(f"Expected `transport` to be callable, got {type(transport).__name__}")
        opts.transport = transport

    if "clients" in provided:
        clients = provided["clients"]
        if not isinstance(clients, Mapping):
            raise OptionsError(f"Expected `clients` to be a mapping, got {type(clients).__name__}")
        for key, client in clients.items():
            if key not in CLIENT_KEYS:
                raise OptionsError(
                    f"Expected the `clients` keys to be `http`, `https` or `http2`, got `{key}`"
                )
            if not isinstance(client, httpx.AsyncClient):
                raise OptionsError(f"Expected `clients.{key}` to be an httpx.AsyncClient")
        opts.clients = dict(clients)

    for name in ("local_address", "socket_path"):
        if name in provided:
            value = provided[name]
            if not isinstance(value, str):
                raise OptionsError(f"Expected `{name}` to be a string, got {type(value).__name__}")
            setattr(opts, name, value)
