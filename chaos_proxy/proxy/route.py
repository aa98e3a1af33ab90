import logging
from urllib.parse import urlsplit

from fastapi import APIRouter, Request
from fastapi.responses import Response

from chaos_proxy.proxy.handler import ProxyHandler

router = APIRouter()
logger = logging.getLogger("uvicorn.error")


class AbsoluteFormMiddleware:
    """
    ASGI middleware for absolute-form request targets.

    A client using this service as its HTTP proxy sends
    ``GET http://upstream/path HTTP/1.1``. Some servers hand that target to
    the application unchanged as the scope path, which no route can match.
    The path is narrowed to ``/path`` here; ``raw_path`` keeps the full
    target for the handler.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http":
            path = scope.get("path", "")
            if path and not path.startswith("/"):
                scope = dict(scope)
                if not scope.get("raw_path"):
                    scope["raw_path"] = path.encode("utf-8")
                scope["path"] = urlsplit(path).path or "/"
        await self.app(scope, receive, send)


async def proxy_all(request: Request) -> Response:
    """Catch-all endpoint: every method, every path goes through the proxy."""
    handler: ProxyHandler = request.app.state.proxy_handler
    return await handler.handle(request)


# methods=None accepts any HTTP method
router.add_route("/{path:path}", proxy_all, include_in_schema=False)
