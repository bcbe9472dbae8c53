import re
from uuid import uuid4

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.core import context

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def _header(headers: dict[bytes, bytes], name: bytes) -> str:
    return headers.get(name, b"").decode("latin-1").strip()


class RequestContextMiddleware:
    """Bind request, tenant and actor ids to context vars for the request's lifetime.

    A caller-supplied ``X-Request-ID`` is reused only if it is short and plain;
    anything else is replaced so log lines cannot be forged through it.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        context.clear_context()
        headers = dict(scope.get("headers", []))
        supplied = _header(headers, b"x-request-id")
        request_id = supplied if _REQUEST_ID_RE.fullmatch(supplied) else str(uuid4())
        context.set_request_id(request_id)
        tenant_id = _header(headers, b"x-tenant-id")
        if tenant_id:
            context.set_tenant_id(tenant_id)

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers_list = list(message.get("headers", []))
                headers_list.append((b"x-request-id", request_id.encode()))
                message["headers"] = headers_list
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            context.clear_context()
