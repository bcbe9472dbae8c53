import ipaddress

from starlette.types import ASGIApp, Receive, Scope, Send


def client_from_forwarded(value: str, proxies_count: int) -> str | None:
    """Pick the client address from ``X-Forwarded-For`` given N trusted proxies.

    The header reads ``client, proxy1, proxy2``; with N trusted hops the client
    sits at index ``-(N + 1)``. Anything that is not an IP address is ignored.
    """
    hops = [hop.strip() for hop in value.split(",") if hop.strip()]
    if proxies_count <= 0 or len(hops) <= proxies_count:
        return None
    candidate = hops[-(proxies_count + 1)]
    try:
        ipaddress.ip_address(candidate)
    except ValueError:
        return None
    return candidate


class TrustedProxiesMiddleware:
    """Rewrite ``scope["client"]`` so the limiter and logs see the real caller."""

    def __init__(self, app: ASGIApp, proxies_count: int = 1) -> None:
        self.app = app
        self.proxies_count = proxies_count

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and self.proxies_count > 0:
            headers = dict(scope.get("headers", []))
            forwarded = headers.get(b"x-forwarded-for", b"").decode("latin-1")
            real_ip = client_from_forwarded(forwarded, self.proxies_count) if forwarded else None
            if real_ip:
                port = scope["client"][1] if scope.get("client") else 0
                scope["client"] = (real_ip, port)

        await self.app(scope, receive, send)
