"""
Error Taxonomy

Every failure that can end a transfer session maps to one of these classes.
The session records the class name as ``error_kind`` when it moves to FAILED.
"""


class SecureShareError(Exception):
    """Base class for all transfer errors."""

    @property
    def kind(self) -> str:
        return type(self).__name__


class KeyFormatError(SecureShareError):
    """An imported public key is malformed."""


class KeyAgreementError(SecureShareError):
    """Shared key derivation failed (curve mismatch, invalid peer key)."""


class ChannelError(SecureShareError):
    """The direct channel failed, closed, or could not be established."""


class AuthenticationError(SecureShareError):
    """A chunk failed its authentication tag check. Never retried."""


class ProtocolSequenceError(SecureShareError):
    """A message arrived in a state that does not expect it."""


class SignalingError(SecureShareError):
    """A signaling message is malformed, or the relay connection was lost."""


class RegistrationError(SignalingError):
    """The relay did not acknowledge our session identifier."""
