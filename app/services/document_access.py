import hashlib
import hmac
import time
from datetime import datetime, timezone
from urllib.parse import urlencode

from app.core.settings import settings


def _sign(secret_key: str, object_key: str, expires: int) -> str:
    """Create the HMAC-SHA256 signature for a document URL."""
    message = f"{object_key}:{expires}"
    return hmac.new(
        secret_key.encode("utf-8"),
        message.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def sign_document_url(object_key: str, *, expires_in: int | None = None, now: float | None = None) -> tuple[str, datetime]:
    ttl = expires_in if expires_in is not None else settings.document_url_expiry_seconds
    expires = int(now if now is not None else time.time()) + ttl
    signature = _sign(settings.secret_key, object_key, expires)
    params = urlencode({"key": object_key, "expires": expires, "signature": signature})
    url = f"{settings.document_url_base.rstrip('/')}?{params}"
    return url, datetime.fromtimestamp(expires, tz=timezone.utc)


def verify_document_signature(object_key: str, expires: int, signature: str, *, now: float | None = None) -> bool:
    """Return False when the signature is wrong or the link has expired."""
    if int(now if now is not None else time.time()) > expires:
        return False
    expected = _sign(settings.secret_key, object_key, expires)
    return hmac.compare_digest(expected, signature)
