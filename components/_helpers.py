"""
Pure helpers for canonical-host enforcement and edge wiring. Testable without
Pulumi runtime.

Used by the AWS component: ``redirect_function_code`` renders the CloudFront
Function attached at viewer-request, ``distribution_aliases`` builds the alias
set, and ``oac_bucket_policy`` grants the distribution read access to the
bucket. ``redirect_decision`` is the same host decision in Python. It takes the
raw query string and renders it the way the function renders CloudFront's
parsed query (names grouped in first-seen order, empty values bare). The
tests run both over one case table when node is available. No Pulumi types;
all functions accept and return plain Python types.
"""

import json
import re
from dataclasses import dataclass

CANONICAL = "CANONICAL"
NON_CANONICAL = "NON_CANONICAL"

PASS = "pass"
REDIRECT = "redirect"

MOVED_PERMANENTLY = 301

_LABEL_RE = re.compile(r"(?!-)[a-z0-9-]{1,63}(?<!-)")
_PORT_RE = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class RedirectDecision:
    """
    What the edge does with one request.

    Attributes:
        state: ``CANONICAL`` or ``NON_CANONICAL``.
        action: ``pass`` (forward unmodified) or ``redirect``.
        status: 301 for redirects, None otherwise.
        location: Redirect target, None otherwise.
    """

    state: str
    action: str
    status: int | None = None
    location: str | None = None


def normalize_host(value: str | None) -> str | None:
    """
    Lower-case *value*, dropping a port suffix and a trailing dot.

    Returns None for a missing or malformed Host header (whitespace, userinfo,
    paths, IP literals in brackets, invalid labels).
    """
    if value is None:
        return None
    host = value.strip().lower()
    if not host or any(c.isspace() or c in "/@[]\\?#" for c in host):
        return None
    name, sep, port = host.rpartition(":")
    if sep:
        if not _PORT_RE.fullmatch(port):
            return None
        host = name
    if host.endswith("."):
        host = host[:-1]
    if not host or len(host) > 253:
        return None
    if not all(_LABEL_RE.fullmatch(label) for label in host.split(".")):
        return None
    return host


def require_hostname(value: str) -> str:
    host = normalize_host(value)
    if host is None or "." not in host:
        raise ValueError(f"not a valid hostname: {value!r}")
    return host


def render_query(querystring: str) -> str:
    grouped: dict[str, list[str]] = {}
    for part in querystring.split("&"):
        name, _, value = part.partition("=")
        if name:
            grouped.setdefault(name, []).append(value)
    return "&".join(
        name if value == "" else f"{name}={value}"
        for name, values in grouped.items()
        for value in values
    )


def redirect_decision(
    host: str | None,
    uri: str = "/",
    querystring: str = "",
    *,
    canonical_host: str,
) -> RedirectDecision:
    """
    Decide whether a request may pass or must be redirected.

    Args:
        host: Host header as received (None when absent).
        uri: Request path.
        querystring: Raw query string without the leading ``?``. Repeated
            names are grouped after their first occurrence and ``a=`` becomes
            ``a``, as CloudFront parses it for the function.
        canonical_host: The one public hostname.

    Returns:
        ``pass`` when *host* is the canonical host; otherwise a 301 to
        ``https://<canonical_host><uri>[?<querystring>]``.
    """
    canonical = require_hostname(canonical_host)
    if normalize_host(host) == canonical:
        return RedirectDecision(state=CANONICAL, action=PASS)

    path = uri if uri.startswith("/") else f"/{uri}"
    location = f"https://{canonical}{path}"
    query = render_query(querystring)
    if query:
        location = f"{location}?{query}"
    return RedirectDecision(
        state=NON_CANONICAL,
        action=REDIRECT,
        status=MOVED_PERMANENTLY,
        location=location,
    )


_FUNCTION_TEMPLATE = """\
var CANONICAL_HOST = __CANONICAL__;
var LABEL = /^(?!-)[a-z0-9-]{1,63}$/;

function normalizeHost(value) {
    if (!value) {
        return null;
    }
    var host = value.trim().toLowerCase();
    if (!host || /[\\s\\/@\\[\\]\\\\?#]/.test(host)) {
        return null;
    }
    var colon = host.lastIndexOf(":");
    if (colon !== -1) {
        if (!/^[0-9]+$/.test(host.substring(colon + 1))) {
            return null;
        }
        host = host.substring(0, colon);
    }
    if (host.endsWith(".")) {
        host = host.substring(0, host.length - 1);
    }
    if (!host || host.length > 253) {
        return null;
    }
    var labels = host.split(".");
    for (var i = 0; i < labels.length; i++) {
        if (!LABEL.test(labels[i]) || labels[i].endsWith("-")) {
            return null;
        }
    }
    return host;
}

function queryString(querystring) {
    var parts = [];
    for (var name in querystring) {
        var entry = querystring[name];
        var values = entry.multiValue ? entry.multiValue : [entry];
        for (var i = 0; i < values.length; i++) {
            parts.push(values[i].value === "" ? name : name + "=" + values[i].value);
        }
    }
    return parts.join("&");
}

function handler(event) {
    var request = event.request;
    var header = request.headers.host;
    if (normalizeHost(header ? header.value : null) === CANONICAL_HOST) {
        return request;
    }
    var query = queryString(request.querystring);
    var location = "https://" + CANONICAL_HOST + request.uri + (query ? "?" + query : "");
    return {
        statusCode: 301,
        statusDescription: "Moved Permanently",
        headers: { location: { value: location } }
    };
}
"""


def redirect_function_code(canonical_host: str) -> str:
    """Render the viewer-request CloudFront Function (cloudfront-js-2.0)."""
    canonical = require_hostname(canonical_host)
    return _FUNCTION_TEMPLATE.replace("__CANONICAL__", json.dumps(canonical))


def distribution_aliases(
    canonical_host: str,
    extra_aliases: list[str] | None = None,
) -> list[str]:
    """
    Alias set for the distribution: the canonical host first, then each extra
    alias (e.g. ``www.`` variants) once. Extras are served only to be
    redirected by the function.
    """
    aliases = [require_hostname(canonical_host)]
    for alias in extra_aliases or []:
        host = require_hostname(alias)
        if host not in aliases:
            aliases.append(host)
    return aliases


def oac_bucket_policy(bucket_arn: str, distribution_arn: str) -> dict:
    """
    Bucket policy letting only the given distribution (via OAC) read objects.
    """
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "AllowCloudFrontRead",
                "Effect": "Allow",
                "Principal": {"Service": "cloudfront.amazonaws.com"},
                "Action": "s3:GetObject",
                "Resource": f"{bucket_arn}/*",
                "Condition": {"StringEquals": {"AWS:SourceArn": distribution_arn}},
            }
        ],
    }


def resource_name(prefix: str, project_name: str, environment: str) -> str:
    return f"{prefix}-{project_name}-{environment}"
