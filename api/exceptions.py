"""
Voice Notes - Exceptions

Error taxonomy for authentication, provider calls and note storage.
"""


class VoiceNotesError(Exception):
    """Base error for the voice notes backend."""
    pass


class ConfigurationError(VoiceNotesError):
    """Invalid settings detected at startup."""
    pass


class AuthError(VoiceNotesError):
    """Base authentication failure. Always surfaced as a generic 401."""
    pass


class InvalidCredential(AuthError):
    """Supplied password does not match the admin secret."""
    pass


class MalformedToken(AuthError):
    """Token wire form could not be parsed."""
    pass


class InvalidSignature(AuthError):
    """Token signature does not match its payload."""
    pass


class ExpiredToken(AuthError):
    """Token signature is valid but the expiry has passed."""
    pass


class MissingAuthorization(AuthError):
    """No usable Authorization header on the request."""
    pass


class ProviderError(VoiceNotesError):
    """Error talking to the hosted speech/text provider."""
    pass


class ProviderNotConfigured(ProviderError):
    """No provider API key configured."""
    pass

