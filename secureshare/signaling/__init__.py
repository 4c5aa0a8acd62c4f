"""
Signaling Module - Rendezvous Relay

Carries public keys and channel-setup metadata between sessions before a
direct channel exists.
"""

from .messages import (
    SignalKind,
    SignalingMessage,
    public_key_signal,
    description_signal,
    candidate_signal,
)
from .relay import RelayServer, RelayClient

__all__ = [
    'SignalKind',
    'SignalingMessage',
    'public_key_signal',
    'description_signal',
    'candidate_signal',
    'RelayServer',
    'RelayClient',
]
