"""Return/redirect URL handling for hosted billing pages."""
from typing import Iterable, Optional
from urllib.parse import urlsplit

DEFAULT_RETURN_PATH = "/pricing"


def _origin_of(url: str) -> Optional[str]:
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return None
    if parts.username or parts.password:
        return None
    return f"{parts.scheme}://{parts.netloc}".lower()


def sanitize_return_url(
    return_url: Optional[str],
    base_origin: str,
    allowed_origins: Iterable[str],
    default_path: str = DEFAULT_RETURN_PATH,
) -> str:
    """
    Resolve a client-supplied return URL to one we are willing to redirect to.

    - same-origin relative paths ("/account") are resolved against base_origin
    - absolute URLs are kept only when their origin is allow-listed
    - anything else falls back to base_origin + default_path
    """
    base = base_origin.rstrip("/")
    fallback = f"{base}{default_path}"
    if not return_url or not isinstance(return_url, str):
        return fallback

    candidate = return_url.strip()
    if candidate.startswith("/") and not candidate.startswith("//") and "\\" not in candidate:
        return f"{base}{candidate}"

    origin = _origin_of(candidate)
    allowed = {o.rstrip("/").lower() for o in allowed_origins}
    if origin and origin in allowed:
        return candidate
    return fallback
