"""Config loading for CORS Proxify.

Reads `.corsproxify/config.yaml` (or `~/.corsproxify/config.yaml`).
Raises SystemExit on parse errors, a missing `version` field or invalid values.
If no config file is found, returns default values (safe to run without config).

Config search order:
  1. `config_path` argument (if provided, for testing or explicit override)
  2. CORSPROXIFY_CONFIG environment variable (if set)
  3. `.corsproxify/config.yaml` (working directory, for development)
  4. `~/.corsproxify/config.yaml` (home directory, for production deployments)

Environment variable overrides (applied after the file, always win):
  HOST / PORT                   : listen address (CORSPROXIFY_HOST / CORSPROXIFY_PORT win over both)
  CORSPROXIFY_BLACKLIST         : comma-separated origin blacklist
  CORSPROXIFY_WHITELIST         : comma-separated origin whitelist
  CORSPROXIFY_RATELIMIT         : "<max> <minutes> [unlimited hosts or /regex/...]"
  CORSPROXIFY_TLS_VERIFY        : "0" disables upstream certificate verification
  NO_PROXY, HTTP_PROXY, HTTPS_PROXY, ALL_PROXY (or lower-case): forward proxy routing
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import Any, NoReturn, Optional, Union

import yaml

from corsproxify.constants import (
    DEFAULT_HOST,
    DEFAULT_MAX_REDIRECTS,
    DEFAULT_PORT,
    DEFAULT_UPSTREAM_TIMEOUT_S,
)
from corsproxify.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1

SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

DEFAULT_CONFIG_PATHS = [
    ".corsproxify/config.yaml",
    os.path.expanduser("~/.corsproxify/config.yaml"),
]

# (upper-case, lower-case) environment variable names per ForwardProxyConfig field.
_FORWARD_PROXY_ENV: dict[str, tuple[str, str]] = {
    "no_proxy": ("NO_PROXY", "no_proxy"),
    "http_proxy": ("HTTP_PROXY", "http_proxy"),
    "https_proxy": ("HTTPS_PROXY", "https_proxy"),
    "all_proxy": ("ALL_PROXY", "all_proxy"),
}


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class ServerConfig:
    """Listen address of the proxy."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT


@dataclass
class PolicyConfig:
    """Origin policy applied to every inbound request.

    origin_blacklist:     Requests from these exact origins are refused (403).
    origin_whitelist:     If non-empty, only these exact origins are served (403 otherwise).
    require_header:       Request must carry at least one of these headers (400 otherwise).
    remove_headers:       Stripped from the outbound request.
    set_headers:          Forced onto the outbound request.
    redirect_same_origin: Answer same-origin requests with a 301 to the target itself.
    max_redirects:        301/302/303 hops followed inside the proxy.
    cors_max_age:         Access-Control-Max-Age for preflights (0 = header omitted).

    Header names are lower-cased once here; ``require_header`` also accepts a
    single string.
    """

    origin_blacklist: list[str] = field(default_factory=list)
    origin_whitelist: list[str] = field(default_factory=list)
    require_header: Union[str, list[str], None] = field(default_factory=list)
    remove_headers: list[str] = field(default_factory=list)
    set_headers: dict[str, str] = field(default_factory=dict)
    redirect_same_origin: bool = False
    max_redirects: int = DEFAULT_MAX_REDIRECTS
    cors_max_age: int = 0

    def __post_init__(self) -> None:
        required = self.require_header or []
        if isinstance(required, str):
            required = [required]
        self.require_header = [name.lower() for name in required]
        self.remove_headers = [name.lower() for name in self.remove_headers]
        self.set_headers = {
            name.lower(): str(value) for name, value in self.set_headers.items()
        }


@dataclass
class ForwardProxyConfig:
    """Forward proxy endpoints the outbound requests may be routed through.

    Empty strings mean "not configured". ``no_proxy`` is a comma-separated list
    of ``host[:port]`` entries, or ``*`` to disable forwarding entirely.
    """

    no_proxy: str = ""
    http_proxy: str = ""
    https_proxy: str = ""
    all_proxy: str = ""


@dataclass
class TransportConfig:
    """Outbound httpx transport settings."""

    timeout_s: float = DEFAULT_UPSTREAM_TIMEOUT_S
    verify_tls: bool = True
    add_x_forwarded: bool = True  # append X-Forwarded-For/-Port/-Proto upstream


@dataclass
class Config:
    """Root configuration object populated from .corsproxify/config.yaml.

    All fields have safe defaults; CORS Proxify can start without any config file.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    server: ServerConfig = field(default_factory=ServerConfig)
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    forward_proxy: ForwardProxyConfig = field(default_factory=ForwardProxyConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
    rate_limit: Optional[str] = None
    path: Optional[str] = None  # Path to the loaded config file

    @classmethod
    def defaults(cls) -> "Config":
        """Return a fully-default Config (no file required)."""
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are silently ignored.

        Raises:
            SystemExit(1): On a section that is not a mapping, or on invalid
                           max_redirects / cors_max_age / port / timeout values.
        """
        # ── Server ────────────────────────────────────────────────────────────
        server_raw = _section(raw, "server")
        server = ServerConfig(
            host=str(server_raw.get("host", DEFAULT_HOST)),
            port=_non_negative_int(server_raw.get("port", DEFAULT_PORT), "server.port"),
        )

        # ── Policy ────────────────────────────────────────────────────────────
        policy_raw = _section(raw, "policy")
        set_headers = policy_raw.get("set_headers") or {}
        if not isinstance(set_headers, dict):
            _fail("CONFIG ERROR: policy.set_headers must be a mapping of header name to value.")
        policy = PolicyConfig(
            origin_blacklist=_string_list(policy_raw.get("origin_blacklist"), "policy.origin_blacklist"),
            origin_whitelist=_string_list(policy_raw.get("origin_whitelist"), "policy.origin_whitelist"),
            require_header=_string_list(policy_raw.get("require_header"), "policy.require_header"),
            remove_headers=_string_list(policy_raw.get("remove_headers"), "policy.remove_headers"),
            set_headers=set_headers,
            redirect_same_origin=bool(policy_raw.get("redirect_same_origin", False)),
            max_redirects=_non_negative_int(
                policy_raw.get("max_redirects", DEFAULT_MAX_REDIRECTS), "policy.max_redirects"
            ),
            cors_max_age=_non_negative_int(policy_raw.get("cors_max_age", 0), "policy.cors_max_age"),
        )

        # ── Forward proxy ─────────────────────────────────────────────────────
        forward_raw = _section(raw, "forward_proxy")
        forward_proxy = ForwardProxyConfig(
            no_proxy=str(forward_raw.get("no_proxy") or ""),
            http_proxy=str(forward_raw.get("http_proxy") or ""),
            https_proxy=str(forward_raw.get("https_proxy") or ""),
            all_proxy=str(forward_raw.get("all_proxy") or ""),
        )

        # ── Transport ─────────────────────────────────────────────────────────
        transport_raw = _section(raw, "transport")
        timeout_s = transport_raw.get("timeout_s", DEFAULT_UPSTREAM_TIMEOUT_S)
        if not isinstance(timeout_s, (int, float)) or isinstance(timeout_s, bool) or timeout_s <= 0:
            _fail(f"CONFIG ERROR: transport.timeout_s must be a positive number, got {timeout_s!r}.")
        transport = TransportConfig(
            timeout_s=float(timeout_s),
            verify_tls=bool(transport_raw.get("verify_tls", True)),
            add_x_forwarded=bool(transport_raw.get("add_x_forwarded", True)),
        )

        rate_limit = raw.get("rate_limit")
        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            server=server,
            policy=policy,
            forward_proxy=forward_proxy,
            transport=transport,
            rate_limit=str(rate_limit) if rate_limit else None,
            path=path,
        )


# ─── Validation helpers ───────────────────────────────────────────────────────


def _fail(msg: str) -> NoReturn:
    print(msg, file=sys.stderr)
    raise SystemExit(1)


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        _fail(f"CONFIG ERROR: '{name}' must be a mapping.")
    return value


def _string_list(value: Any, name: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        _fail(f"CONFIG ERROR: {name} must be a string or a list of strings.")
    return [str(item) for item in value]


def _non_negative_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        _fail(f"CONFIG ERROR: {name} must be a non-negative integer, got {value!r}.")
    return value


def parse_env_list(value: Optional[str]) -> list[str]:
    """Split a comma-separated environment value, dropping blanks."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate CORS Proxify configuration.

    Search order:
      1. ``config_path`` argument (if provided)
      2. ``CORSPROXIFY_CONFIG`` environment variable (if set)
      3. ``.corsproxify/config.yaml``
      4. ``~/.corsproxify/config.yaml``

    If no file is found at any of these paths, returns default Config (not an error).
    If a file is found but invalid, writes error to stderr and raises SystemExit(1).
    Environment overrides are applied in both cases.

    Raises:
        SystemExit(1): On YAML parse error, missing ``version`` field, unsupported
                       version, invalid values, or an invalid ``PORT``.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("CORSPROXIFY_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    # ── No config file found ─────────────────────────────────────────────────
    if found_path is None:
        logger.info("No config file found, using defaults", searched=search_paths)
        config = Config.defaults()
        _apply_env_overrides(config)
        return config

    # ── Parse config file ─────────────────────────────────────────────────────
    logger.info("Loading config", path=found_path)

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        _fail(
            f"CONFIG ERROR: Failed to parse {found_path}: {exc}\n"
            "CORS Proxify refuses to start with an invalid config. "
            "Check the YAML syntax and try again."
        )
    except OSError as exc:
        _fail(f"CONFIG ERROR: Could not read {found_path}: {exc}")

    if not isinstance(raw, dict):
        if raw is None:
            _fail(
                f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        _fail(
            f"CONFIG ERROR: {found_path} is not a valid YAML mapping.\n"
            "The config file must be a YAML dictionary at the top level."
        )

    # ── Version validation ────────────────────────────────────────────────────
    version = raw.get("version")
    if version is None:
        _fail(
            f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
    if version not in SUPPORTED_VERSIONS:
        _fail(
            f"CONFIG ERROR: Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )

    config = Config.from_dict(raw, path=found_path)
    _apply_env_overrides(config)

    if config.policy.origin_whitelist and config.policy.origin_blacklist:
        overlap = set(config.policy.origin_whitelist) & set(config.policy.origin_blacklist)
        if overlap:
            logger.warning(
                "Origins are both whitelisted and blacklisted, blacklist wins",
                origins=sorted(overlap),
            )

    logger.info(
        "Config loaded",
        path=found_path,
        version=config.version,
        max_redirects=config.policy.max_redirects,
        rate_limited=bool(config.rate_limit),
    )
    return config


def _apply_env_overrides(config: Config) -> None:
    """Apply environment variable overrides to a Config object in-place.

    Called both for file-loaded and default configs so env vars always take
    precedence over any file value.

    Raises:
        SystemExit(1): If the port variable is set but not a valid integer.
    """
    env_host = os.environ.get("CORSPROXIFY_HOST") or os.environ.get("HOST")
    if env_host:
        config.server.host = env_host

    env_port = os.environ.get("CORSPROXIFY_PORT") or os.environ.get("PORT")
    if env_port:
        try:
            config.server.port = int(env_port)
        except ValueError:
            _fail(f"CONFIG ERROR: port environment variable is not a valid integer: '{env_port}'")

    blacklist = os.environ.get("CORSPROXIFY_BLACKLIST")
    if blacklist is not None:
        config.policy.origin_blacklist = parse_env_list(blacklist)

    whitelist = os.environ.get("CORSPROXIFY_WHITELIST")
    if whitelist is not None:
        config.policy.origin_whitelist = parse_env_list(whitelist)

    rate_limit = os.environ.get("CORSPROXIFY_RATELIMIT")
    if rate_limit is not None:
        config.rate_limit = rate_limit or None

    if os.environ.get("CORSPROXIFY_TLS_VERIFY") == "0":
        config.transport.verify_tls = False

    for attr, (upper, lower) in _FORWARD_PROXY_ENV.items():
        value = os.environ.get(upper) or os.environ.get(lower)
        if value:
            setattr(config.forward_proxy, attr, value)
