"""URL resolver: turns the inbound request path into a Target.

The inbound path minus its leading ``/`` is the target URL:

  /http://example.com/a?b=1   → http://example.com/a?b=1
  /https:/example.com         → MalformedSchemeRequest (router collapsed "//")
  /example.com:443/a          → https://example.com/a   (scheme inferred from port)
  /example.com/a              → http://example.com/a
  /favicon.ico                → Target(host="favicon.ico"); rejected later by
                                is_valid_hostname() since no scheme was given

Host-name validation is a separate predicate used by the policy engine so that
an explicit ``http(s):`` prefix can bypass it.
"""

from __future__ import annotations

import ipaddress
import re
from typing import Optional
from urllib.parse import unquote

from corsproxify.constants import TOP_LEVEL_DOMAINS
from corsproxify.errors import MalformedSchemeRequest, UnresolvableTarget
from corsproxify.models.target import Target

# scheme (optional, with "//"), host, port (any digits, so oversized ports are
# captured and rejected by policy), then path/query.
_TARGET_PATTERN = re.compile(
    r"^(?:(https?:)?//)?(([^/?]+?)(?::(\d*)(?=[/?]|$))?)([/?][\s\S]*|$)",
    re.IGNORECASE,
)

_SCHEME_PREFIX = re.compile(r"^https?:", re.IGNORECASE)
_MISSING_SLASH = re.compile(r"^https?:/[^/]", re.IGNORECASE)
_EXPLICIT_SCHEME_PATH = re.compile(r"^/https?:")

# Characters that cannot appear in a (percent-decoded) host name. "@" is
# included: targets with embedded credentials are not supported.
_FORBIDDEN_HOST_CHARS = re.compile(r"[\s#%<>\\^|@\[\]:]")

# Dotted DNS name; group 1 is the top-level label.
_DNS_NAME = re.compile(
    r"^(?:[a-z0-9_](?:[a-z0-9_-]{0,61}[a-z0-9_])?\.)+([a-z0-9-]{2,63})\.?$",
    re.IGNORECASE,
)


def resolve_target(path_and_query: Optional[str]) -> Target:
    """Parse a request path (with or without its leading ``/``) into a Target.

    Raises:
        MalformedSchemeRequest: ``http:/host``, a scheme followed by a single slash.
        UnresolvableTarget:     Anything else that does not yield a host name.
    """
    text = path_and_query or ""
    if text.startswith("/"):
        text = text[1:]
    if not text:
        raise UnresolvableTarget("empty path")

    if _MISSING_SLASH.match(text):
        raise MalformedSchemeRequest(text)

    match = _TARGET_PATTERN.match(text)
    if match is None:
        raise UnresolvableTarget(text)

    scheme_token, _, raw_host, raw_port, path = match.groups()
    if scheme_token:
        scheme = scheme_token[:-1].lower()
    else:
        if _SCHEME_PREFIX.match(text):
            # "http:///" would otherwise parse as host="http", path="///".
            raise UnresolvableTarget(text)
        scheme = "https" if raw_port == "443" else "http"

    hostname = _normalize_hostname(raw_host)
    if not hostname:
        raise UnresolvableTarget(text)

    if not path:
        path = "/"
    elif path.startswith("?"):
        path = "/" + path

    port = int(raw_port) if raw_port else None
    return Target(scheme=scheme, hostname=hostname, port=port, path=path)


def has_explicit_scheme(raw_url: str) -> bool:
    """True when the inbound request path starts with ``/http:`` or ``/https:``."""
    return bool(_EXPLICIT_SCHEME_PATH.match(raw_url))


def is_valid_hostname(hostname: Optional[str]) -> bool:
    """TLD-shaped DNS name, IPv4 literal or IPv6 literal."""
    if not hostname:
        return False
    dns_match = _DNS_NAME.match(hostname)
    if dns_match:
        tld = dns_match.group(1).lower()
        if tld in TOP_LEVEL_DOMAINS or tld.startswith("xn--"):
            return True
    for address_type in (ipaddress.IPv4Address, ipaddress.IPv6Address):
        try:
            address_type(hostname.strip("[]"))
            return True
        except ValueError:
            continue
    return False


def _normalize_hostname(raw_host: str) -> str:
    host = raw_host.lower()
    if host.startswith("[") and host.endswith("]"):
        literal = host[1:-1]
        try:
            ipaddress.IPv6Address(literal)
        except ValueError:
            return ""
        return literal
    if "%" in host:
        try:
            host = unquote(host, errors="strict")
        except UnicodeDecodeError:
            return ""
    if _FORBIDDEN_HOST_CHARS.search(host):
        return ""
    if not host.isascii():
        # Internationalised names travel as punycode ("bücher.de" → "xn--bcher-kva.de").
        try:
            host = host.encode("idna").decode("ascii").lower()
        except UnicodeError:
            return ""
    return host
