"""Teori request signing"""

import base64
import hashlib
from typing import Optional

from .errors import SettingsNotLoadedError
from .settings import TeoriSettingsResolver

AUTH_SCHEME = "Teori"


def compute_auth_token(payload: str, secret: str) -> str:
    """base64(SHA256(payload + secret))"""
    combined = (payload + secret).encode("utf-8")
    return base64.b64encode(hashlib.sha256(combined).digest()).decode("ascii")


class RequestSigner:
    """Builds the Authorization header from the resolver's current snapshot"""

    def __init__(self, resolver: TeoriSettingsResolver, scheme: str = AUTH_SCHEME):
        self.resolver = resolver
        self.scheme = scheme

    def sign(self, payload: Optional[str] = None) -> str:
        settings = self.resolver.current
        if settings is None:
            raise SettingsNotLoadedError("Teori settings not loaded")
        return f"{self.scheme} {compute_auth_token(payload or '', settings.api_secret)}"
