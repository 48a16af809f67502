"""
Voice Notes - API Module

Authentication, request gating and request/response models for the
voice notes backend.
"""

from .auth import TokenService, build_token_service, generate_signing_key
from .config import Settings
from .middleware import AuthGateMiddleware, require_auth

__all__ = [
    "TokenService",
    "build_token_service",
    "generate_signing_key",
    "Settings",
    "AuthGateMiddleware",
    "require_auth",
]
