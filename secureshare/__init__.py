"""
SecureShare - End-to-End Encrypted Peer-to-Peer File Transfer

Two sessions meet at a rendezvous relay, agree on an AES-256-GCM key with
ECDH P-256, open a direct channel and stream a file as encrypted 16KB chunks.
"""

__version__ = "1.0.0"

from .config import Config, load_config
from .errors import (
    SecureShareError,
    KeyFormatError,
    KeyAgreementError,
    ChannelError,
    AuthenticationError,
    ProtocolSequenceError,
    SignalingError,
    RegistrationError,
)
from .node import SecureShareNode
from .transfer import TransferState, Role

__all__ = [
    '__version__',
    'Config',
    'load_config',
    'SecureShareError',
    'KeyFormatError',
    'KeyAgreementError',
    'ChannelError',
    'AuthenticationError',
    'ProtocolSequenceError',
    'SignalingError',
    'RegistrationError',
    'SecureShareNode',
    'TransferState',
    'Role',
]
