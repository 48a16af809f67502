"""
API Authentication Module

Issues and verifies signed bearer tokens for the single admin principal.
Tokens are stateless: nothing is stored server-side, so verification is
a pure function of the token, the signing key and the current time.
"""

import base64
import binascii
import hashlib
import hmac
import json
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .exceptions import AuthError, ExpiredToken, InvalidCredential, InvalidSignature, MalformedToken

logger = logging.getLogger(__name__)

NONCE_BYTES = 16
SIGNING_KEY_BYTES = 32
DEFAULT_TOKEN_TTL_MILLIS = 30 * 24 * 60 * 60 * 1000


def now_millis() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def generate_signing_key() -> str:
    """
    Generate a new random signing key.

    Returns:
        32 random bytes, hex-encoded.
    """
    return secrets.token_hex(SIGNING_KEY_BYTES)


@dataclass(frozen=True)
class TokenPayload:
    """Decoded token contents."""
    expires_at: int  # epoch millis
    nonce: str

    def serialize(self) -> str:
        """Canonical string form that the signature is computed over."""
        return json.dumps(
            {"exp": self.expires_at, "nonce": self.nonce},
            separators=(",", ":"),
            sort_keys=True,
        )

    @classmethod
    def parse(cls, raw: str) -> "TokenPayload":
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise MalformedToken("Payload is not an object")

        exp = data.get("exp")
        nonce = data.get("nonce")
        # bool is an int subclass
        if not isinstance(exp, int) or isinstance(exp, bool):
            raise MalformedToken("Payload expiry is not an integer")
        if not isinstance(nonce, str):
            raise MalformedToken("Payload nonce is not a string")

        return cls(expires_at=exp, nonce=nonce)


class TokenService:
    """
    Bearer token issuance and verification.

    Wire form: base64(serialized payload) + "." + hex(HMAC-SHA256).
    """

    def __init__(
        self,
        signing_key: str,
        admin_password: str,
        ttl_millis: int = DEFAULT_TOKEN_TTL_MILLIS,
        clock: Callable[[], int] = now_millis,
    ):
        """
        Initialize the token service.

        Args:
            signing_key: Secret used to sign tokens. Must be non-empty.
            admin_password: The shared admin secret checked on login.
            ttl_millis: Token lifetime in milliseconds.
            clock: Returns the current time in epoch milliseconds.
        """
        if not signing_key:
            raise ValueError("signing_key must not be empty")
        if ttl_millis <= 0:
            raise ValueError("ttl_millis must be positive")

        self._key = signing_key.encode("utf-8")
        self._admin_password = admin_password or ""
        self.ttl_millis = ttl_millis
        self._clock = clock

    def _sign(self, serialized: str) -> str:
        return hmac.new(self._key, serialized.encode("utf-8"), hashlib.sha256).hexdigest()

    def issue_token(self) -> str:
        """
        Issue a new bearer token.

        Returns:
            Token in wire form.
        """
        payload = TokenPayload(
            expires_at=self._clock() + self.ttl_millis,
            nonce=secrets.token_hex(NONCE_BYTES),
        )
        serialized = payload.serialize()
        encoded = base64.b64encode(serialized.encode("utf-8")).decode("ascii")
        return f"{encoded}.{self._sign(serialized)}"

    def decode_token(self, token: str) -> TokenPayload:
        """
        Decode and fully verify a token.

        Args:
            token: Token in wire form.

        Returns:
            The verified payload.

        Raises:
            MalformedToken: Token cannot be parsed.
            InvalidSignature: Signature does not match the payload.
            ExpiredToken: Token expiry is not in the future.
        """
        if not isinstance(token, str) or "." not in token:
            raise MalformedToken("Missing separator")

        encoded, signature = token.split(".", 1)
        try:
            raw = base64.b64decode(encoded, validate=True)
            serialized = raw.decode("utf-8")
        except (binascii.Error, ValueError) as e:
            raise MalformedToken(f"Invalid base64 payload: {e}")

        # Unused trailing bits are ignored by the decoder; only accept the
        # canonical encoding so every payload has exactly one wire form.
        if base64.b64encode(raw).decode("ascii") != encoded:
            raise MalformedToken("Non-canonical base64 payload")

        expected = self._sign(serialized)
        if not hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8")):
            raise InvalidSignature("Signature mismatch")

        try:
            payload = TokenPayload.parse(serialized)
        except ValueError as e:
            raise MalformedToken(f"Unparseable payload: {e}")

        if payload.expires_at <= self._clock():
            raise ExpiredToken("Token expired")

        return payload

    def verify_token(self, token: str) -> bool:
        """
        Check whether a token is currently valid.

        Never raises: any failure, including a malformed token, is
        reported as False.
        """
        try:
            self.decode_token(token)
            return True
        except AuthError as e:
            logger.debug(f"Token rejected: {type(e).__name__}")
            return False
        except Exception as e:
            logger.debug(f"Token rejected: unexpected {type(e).__name__}")
            return False

    def check_credential(self, supplied_password: Optional[str]) -> bool:
        """
        Compare a supplied password with the admin secret in constant time.

        An unset admin secret never matches.
        """
        if not self._admin_password or not isinstance(supplied_password, str):
            return False
        return hmac.compare_digest(
            self._admin_password.encode("utf-8"),
            supplied_password.encode("utf-8"),
        )

    def login(self, supplied_password: Optional[str]) -> str:
        """
        Exchange the admin password for a new token.

        Raises:
            InvalidCredential: Password does not match.
        """
        if not self.check_credential(supplied_password):
            raise InvalidCredential("Invalid password")
        return self.issue_token()


def build_token_service(settings, clock: Callable[[], int] = now_millis) -> TokenService:
    """
    Create the process-wide token service from settings.

    Generates a signing key when none is configured. Tokens issued under a
    generated key do not survive a restart and cannot be verified by other
    instances.
    """
    signing_key = settings.token_secret
    if not signing_key:
        logger.warning(
            "TOKEN_SECRET not set; generated a random signing key. "
            "Issued tokens will be invalid after restart."
        )
        signing_key = generate_signing_key()

    if not settings.admin_password:
        logger.warning("ADMIN_PASSWORD not set; all login attempts will fail")

    return TokenService(
        signing_key=signing_key,
        admin_password=settings.admin_password,
        ttl_millis=settings.token_ttl_millis,
        clock=clock,
    )
