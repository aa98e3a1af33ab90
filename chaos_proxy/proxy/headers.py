import re
from typing import Dict, Iterable, List, Tuple
from urllib.parse import unquote, urlsplit

from fastapi import Request

from chaos_proxy.errors import UpstreamConstructionError
from chaos_proxy.vars import VIA_HEADER

# Hop-by-hop headers that should NOT be forwarded (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# scheme "://" as in RFC 3986
ABSOLUTE_TARGET = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")


def get_request_target(request: Request) -> str:
    """The request target exactly as the client sent it, query included."""
    scope = request.scope
    raw_path = scope.get("raw_path") or scope.get("path", "/").encode("utf-8")
    raw_path = raw_path.split(b"?", 1)[0]
    query_string = scope.get("query_string", b"")
    if query_string:
        raw_path = raw_path + b"?" + query_string
    return raw_path.decode("latin-1")


def is_absolute_target(target: str) -> bool:
    return ABSOLUTE_TARGET.match(target) is not None


def get_request_path(request: Request) -> str:
    """Decoded path of the request target, used for prefix matching."""
    path = urlsplit(get_request_target(request)).path
    return unquote(path) or "/"


def get_target_url(request: Request) -> str:
    """
    Return the upstream URL for a request.

    The upstream is whatever the client asked for. Clients configured to use
    a proxy send an absolute-form target which is used verbatim. Clients
    routed to the proxy transparently send an origin-form target, resolved
    against their ``Host`` header.
    """
    target = get_request_target(request)
    if is_absolute_target(target):
        return target

    host = request.headers.get("host")
    if not host:
        raise UpstreamConstructionError(
            f"cannot resolve upstream for {target!r}: no absolute target and no Host header"
        )
    if not target.startswith("/"):
        target = "/" + target
    return f"{request.url.scheme}://{host}{target}"


def reject_forwarding_loop(request: Request) -> None:
    """
    Refuse a request this proxy has already forwarded once.

    A client talking to the proxy directly sends its own address as ``Host``;
    resolving that origin-form target points the proxy back at itself. The
    second pass carries our ``Via`` entry and is stopped here.

    Raises:
        UpstreamConstructionError: ``Via`` already lists this proxy
    """
    via = request.headers.get("via", "")
    if VIA_HEADER in [entry.strip() for entry in via.split(",")]:
        raise UpstreamConstructionError(
            f"forwarding loop: request to {get_request_target(request)!r} "
            f"already passed through {VIA_HEADER!r}"
        )


def prepare_headers(request: Request) -> Dict[str, str]:
    """
    Prepare headers for forwarding to the upstream.

    The inbound headers are copied, minus hop-by-hop headers and ``Host``
    (set by the client from the target URL), and the proxy headers are added.
    """
    headers: Dict[str, str] = {}

    for name, value in request.headers.items():
        name_lower = name.lower()
        if name_lower in HOP_BY_HOP_HEADERS or name_lower == "host":
            continue
        if name_lower in headers:
            separator = "; " if name_lower == "cookie" else ", "
            headers[name_lower] = f"{headers[name_lower]}{separator}{value}"
        else:
            headers[name_lower] = value

    existing_via = headers.get("via", "")
    headers["via"] = f"{existing_via}, {VIA_HEADER}".strip(", ")

    client_ip = request.client.host if request.client else "unknown"
    existing_xff = headers.get("x-forwarded-for", "")
    headers["x-forwarded-for"] = f"{existing_xff}, {client_ip}".strip(", ")

    headers["x-forwarded-host"] = request.headers.get("host", "")
    headers["x-forwarded-proto"] = request.url.scheme

    return headers


def filter_response_headers(headers: Iterable[Tuple[str, str]]) -> List[Tuple[str, str]]:
    """Drop hop-by-hop headers from an upstream response, keeping repeats."""
    return [
        (name, value)
        for name, value in headers
        if name.lower() not in HOP_BY_HOP_HEADERS
    ]
