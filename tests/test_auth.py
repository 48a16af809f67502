"""
Unit tests for the token service.
"""

import base64
import hashlib
import hmac
import json
import logging
import re
import string

import pytest

from api.auth import TokenService, build_token_service, generate_signing_key
from api.config import Settings
from api.exceptions import ExpiredToken, InvalidSignature, MalformedToken
from tests.conftest import ADMIN_PASSWORD, DAY_MILLIS, SIGNING_KEY, START_MILLIS

TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9+/]+=*\.[0-9a-f]{64}$")
BASE64_CHARS = string.ascii_letters + string.digits + "+/"
STANDARD_BASE64 = string.ascii_uppercase + string.ascii_lowercase + string.digits + "+/"


def sign(serialized: str, key: str = SIGNING_KEY) -> str:
    """Build a wire-form token for an arbitrary payload string."""
    encoded = base64.b64encode(serialized.encode("utf-8")).decode("ascii")
    mac = hmac.new(key.encode("utf-8"), serialized.encode("utf-8"), hashlib.sha256).hexdigest()
    return f"{encoded}.{mac}"


def replace_char(token: str, index: int, alphabet: str) -> str:
    current = token[index]
    replacement = next(c for c in alphabet if c != current)
    return token[:index] + replacement + token[index + 1:]


# =============================================================================
# Issue / verify
# =============================================================================


def test_issued_token_verifies(token_service):
    token = token_service.issue_token()
    assert token_service.verify_token(token) is True


def test_token_wire_form(token_service, clock):
    token = token_service.issue_token()
    assert TOKEN_PATTERN.match(token)

    encoded, signature = token.split(".", 1)
    payload = json.loads(base64.b64decode(encoded))

    assert payload["exp"] == START_MILLIS + 30 * DAY_MILLIS
    assert re.fullmatch(r"[0-9a-f]{32}", payload["nonce"])
    expected = hmac.new(
        SIGNING_KEY.encode(), base64.b64decode(encoded), hashlib.sha256
    ).hexdigest()
    assert signature == expected


def test_tokens_use_fresh_nonces(token_service):
    tokens = {token_service.issue_token() for _ in range(20)}
    assert len(tokens) == 20


def test_decode_returns_payload(token_service, clock):
    payload = token_service.decode_token(token_service.issue_token())
    assert payload.expires_at == clock() + token_service.ttl_millis
    assert len(payload.nonce) == 32


# =============================================================================
# Tampering
# =============================================================================


def test_every_single_character_mutation_is_rejected(token_service):
    token = token_service.issue_token()
    separator = token.index(".")

    for i in range(len(token)):
        alphabet = BASE64_CHARS if i < separator else "0123456789abcdef"
        if i == separator:
            alphabet = "A"
        mutated = replace_char(token, i, alphabet)
        assert token_service.verify_token(mutated) is False, f"mutation at {i} accepted"


def test_mutated_payload_byte_with_original_signature_is_rejected(token_service):
    token = token_service.issue_token()
    encoded, signature = token.split(".", 1)
    raw = bytearray(base64.b64decode(encoded))

    for i in range(len(raw)):
        tampered = bytearray(raw)
        tampered[i] ^= 0x01
        forged = base64.b64encode(bytes(tampered)).decode("ascii") + "." + signature
        assert token_service.verify_token(forged) is False


def test_extended_expiry_is_rejected(token_service, clock):
    token = token_service.issue_token()
    payload = token_service.decode_token(token)
    forged_payload = json.dumps(
        {"exp": payload.expires_at + 365 * DAY_MILLIS, "nonce": payload.nonce},
        separators=(",", ":"),
        sort_keys=True,
    )
    forged = base64.b64encode(forged_payload.encode()).decode() + "." + token.split(".", 1)[1]

    with pytest.raises(InvalidSignature):
        token_service.decode_token(forged)


def test_uppercase_signature_is_rejected(token_service):
    token = token_service.issue_token()
    encoded, signature = token.split(".", 1)
    assert token_service.verify_token(f"{encoded}.{signature.upper()}") is False


def test_other_signing_key_is_rejected(token_service, clock):
    other = TokenService(
        signing_key="b" * 64,
        admin_password=ADMIN_PASSWORD,
        clock=clock,
    )
    token = other.issue_token()

    assert other.verify_token(token) is True
    assert token_service.verify_token(token) is False
    with pytest.raises(InvalidSignature):
        token_service.decode_token(token)


# =============================================================================
# Expiry
# =============================================================================


def test_token_valid_until_expiry(token_service, clock):
    token = token_service.issue_token()

    clock.advance(30 * DAY_MILLIS - 1)
    assert token_service.verify_token(token) is True

    clock.advance(1)
    assert token_service.verify_token(token) is False

    clock.advance(1)
    assert token_service.verify_token(token) is False


def test_expired_token_raises_expired(token_service, clock):
    token = token_service.issue_token()
    clock.advance(31 * DAY_MILLIS)

    with pytest.raises(ExpiredToken):
        token_service.decode_token(token)


def test_custom_ttl(clock):
    service = TokenService(SIGNING_KEY, ADMIN_PASSWORD, ttl_millis=1000, clock=clock)
    token = service.issue_token()

    clock.advance(999)
    assert service.verify_token(token) is True
    clock.advance(1)
    assert service.verify_token(token) is False


# =============================================================================
# Malformed input
# =============================================================================


@pytest.mark.parametrize(
    "token",
    [
        "",
        "garbage",
        ".",
        "a.b",
        "!!!.abcdef",
        "eyJ.",
        ".0123abcd",
        "Zm9v.",
        "Zm9vé." + "0" * 64,
        "Zm9v." + "é" * 64,
    ],
)
def test_malformed_tokens_are_invalid(token_service, token):
    assert token_service.verify_token(token) is False


def test_non_string_token_is_invalid(token_service):
    assert token_service.verify_token(None) is False
    assert token_service.verify_token(12345) is False


@pytest.mark.parametrize(
    "serialized",
    [
        "not json",
        "[1, 2, 3]",
        '{"nonce": "abc"}',
        '{"exp": "1900000000000", "nonce": "abc"}',
        '{"exp": true, "nonce": "abc"}',
        '{"exp": 1900000000000, "nonce": 5}',
    ],
)
def test_correctly_signed_but_unparseable_payload_is_malformed(token_service, serialized):
    token = sign(serialized)

    assert token_service.verify_token(token) is False
    with pytest.raises(MalformedToken):
        token_service.decode_token(token)


def test_signed_payload_with_far_expiry_is_accepted(token_service):
    token = sign('{"exp":9999999999999,"nonce":"00"}')
    assert token_service.verify_token(token) is True


def test_non_canonical_base64_is_malformed(token_service):
    # 34-byte payload, so the encoding ends in "=="
    token = sign('{"exp":9999999999999,"nonce":"00"}')
    encoded, signature = token.split(".", 1)
    assert encoded.endswith("==")
    assert token_service.verify_token(token)

    with pytest.raises(MalformedToken):
        token_service.decode_token(encoded.rstrip("=") + "." + signature)


def test_unused_base64_bits_are_malformed(token_service):
    token = sign('{"exp":9999999999999,"nonce":"00"}')
    encoded, signature = token.split(".", 1)

    # The last data character before "==" carries four unused bits
    last = encoded[-3]
    flipped = STANDARD_BASE64[STANDARD_BASE64.index(last) ^ 1]
    variant = encoded[:-3] + flipped + "=="
    assert base64.b64decode(variant) == base64.b64decode(encoded)

    with pytest.raises(MalformedToken):
        token_service.decode_token(variant + "." + signature)


# =============================================================================
# Credentials
# =============================================================================


def test_check_credential(token_service):
    assert token_service.check_credential(ADMIN_PASSWORD) is True
    assert token_service.check_credential("secret1234") is False
    assert token_service.check_credential("") is False
    assert token_service.check_credential(None) is False


def test_unset_admin_password_never_matches(clock):
    service = TokenService(SIGNING_KEY, "", clock=clock)
    assert service.check_credential("") is False
    assert service.check_credential("anything") is False


def test_constructor_rejects_bad_arguments():
    with pytest.raises(ValueError):
        TokenService("", ADMIN_PASSWORD)
    with pytest.raises(ValueError):
        TokenService(SIGNING_KEY, ADMIN_PASSWORD, ttl_millis=0)


# =============================================================================
# Construction from settings
# =============================================================================


def test_generate_signing_key():
    key = generate_signing_key()
    assert re.fullmatch(r"[0-9a-f]{64}", key)
    assert key != generate_signing_key()


def test_build_token_service_uses_configured_key(clock):
    settings = Settings(admin_password=ADMIN_PASSWORD, token_secret=SIGNING_KEY)
    first = build_token_service(settings, clock=clock)
    second = build_token_service(settings, clock=clock)

    assert second.verify_token(first.issue_token()) is True


def test_build_token_service_generates_key_when_missing(clock, caplog):
    settings = Settings(admin_password=ADMIN_PASSWORD)

    with caplog.at_level(logging.WARNING, logger="api.auth"):
        first = build_token_service(settings, clock=clock)
        second = build_token_service(settings, clock=clock)

    assert "TOKEN_SECRET not set" in caplog.text
    # Separate "processes" cannot verify each other's tokens
    assert first.verify_token(first.issue_token()) is True
    assert second.verify_token(first.issue_token()) is False


def test_build_token_service_uses_settings_ttl(clock):
    settings = Settings(admin_password=ADMIN_PASSWORD, token_secret=SIGNING_KEY, token_ttl_days=1)
    service = build_token_service(settings, clock=clock)
    token = service.issue_token()

    clock.advance(DAY_MILLIS - 1)
    assert service.verify_token(token) is True
    clock.advance(1)
    assert service.verify_token(token) is False
