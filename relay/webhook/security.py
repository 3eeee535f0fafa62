import hashlib
import hmac

SIGNATURE_PREFIX = "sha256="


def sign(body: bytes, app_secret: str) -> str:
    digest = hmac.new(app_secret.encode(), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def is_authentic(body: bytes, signature_header: str | None, app_secret: str) -> bool:
    """Check Meta's X-Hub-Signature-256 header. An empty app secret disables the check."""
    if not app_secret:
        return True
    if not signature_header or not signature_header.startswith(SIGNATURE_PREFIX):
        return False
    return hmac.compare_digest(sign(body, app_secret), signature_header)
