"""
Identity for koma API.

Authentication is delegated to the upstream edge (Cloudflare Access). The edge
verifies the user's session and forwards the verified email in a header; this
service trusts that header completely and never decodes tokens itself. The
header name is configurable (Settings.IDENTITY_HEADER).
"""
from typing import Optional

from fastapi import Request
from pydantic import BaseModel, ConfigDict

from koma_api.models.user import User


class Identity(BaseModel):
    """An already-verified caller identity."""
    model_config = ConfigDict(frozen=True)

    email: str

    @property
    def user_id(self) -> str:
        return User.normalized_id(self.email)

    def matches(self, value: Optional[str]) -> bool:
        if not isinstance(value, str):
            return False
        return value.strip().lower() == self.user_id


def identity_from_headers(headers, header_name: str) -> Optional[Identity]:
    raw = headers.get(header_name)
    email = raw.strip() if raw else ""
    if not email:
        return None
    return Identity(email=email)


def get_identity(request: Request) -> Optional[Identity]:
    """FastAPI dependency: the forwarded identity, or None for anonymous callers."""
    header_name = request.app.state.engine.settings.IDENTITY_HEADER
    return identity_from_headers(request.headers, header_name)


def get_client_address(request: Request) -> str:
    """Client address as seen by the edge: CF-Connecting-IP, then X-Forwarded-For, then the peer."""
    cf_ip = request.headers.get("cf-connecting-ip")
    if cf_ip and cf_ip.strip():
        return cf_ip.strip()
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"
