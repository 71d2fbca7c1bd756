# app/services/calendar/oauth_state.py
"""
OAuth ``state`` values for the calendar connect flow.

Shape: ``provider:platform:user_id:nonce`` where the nonce is
``<random>.<signature>`` and the signature is an HMAC-SHA256 of everything
before it, keyed by ``SECRET_KEY``.
"""
import base64
import hashlib
import hmac
import secrets
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

from app.config.settings import get_settings
from app.core.exceptions import ValidationError
from app.schemas.calendar import Platform

_SEPARATOR = ":"
_SIGNATURE_SEPARATOR = "."


@dataclass(frozen=True)
class OAuthState:
    provider: str
    platform: Platform
    user_id: str
    nonce: str


WEB_SCHEMES = {"http", "https"}


def infer_platform(redirect_url: Optional[str]) -> Platform:
    """A custom (non-HTTP) scheme means the mobile app started the flow."""
    if redirect_url and "://" in redirect_url and urlsplit(redirect_url).scheme.lower() not in WEB_SCHEMES:
        return Platform.MOBILE
    return Platform.WEB


def _sign(payload: str, secret: Optional[str] = None) -> str:
    key = (secret or get_settings().SECRET_KEY).encode("utf-8")
    digest = hmac.new(key, payload.encode("utf-8"), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def encode_state(provider: str, platform: Platform, user_id: str, secret: Optional[str] = None) -> str:
    platform_value = Platform(platform).value
    payload = _SEPARATOR.join([provider, platform_value, str(user_id), secrets.token_hex(16)])
    return f"{payload}{_SIGNATURE_SEPARATOR}{_sign(payload, secret)}"


def decode_state(state: str) -> OAuthState:
    """Split a state value into its parts. Does not check the signature."""
    parts = (state or "").split(_SEPARATOR)
    if len(parts) < 4:
        raise ValidationError("Invalid OAuth state: malformed")

    provider, platform, user_id = parts[0], parts[1], parts[2]
    nonce = _SEPARATOR.join(parts[3:])
    if not provider or not platform or not user_id or not nonce:
        raise ValidationError("Invalid OAuth state: malformed")
    if platform not in (Platform.WEB.value, Platform.MOBILE.value):
        raise ValidationError("Invalid OAuth state: unknown platform")

    return OAuthState(provider=provider, platform=Platform(platform), user_id=user_id, nonce=nonce)


def verify_state(state: str, secret: Optional[str] = None) -> bool:
    """True when the state carries a valid signature from this server."""
    payload, sep, signature = (state or "").rpartition(_SIGNATURE_SEPARATOR)
    if not sep or not payload or not signature:
        return False
    return hmac.compare_digest(_sign(payload, secret), signature)
