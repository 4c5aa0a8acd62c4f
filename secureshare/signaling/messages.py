"""
Signaling Messages

A signaling message is addressed ``{from, target}`` and carries exactly one of:

- ``{"publicKey": "<JWK json>"}``
- ``{"type": "offer" | "answer", "sdp": {...}}``
- ``{"candidate": {"host": "...", "port": 1234}}``

The relay forwards them verbatim; it does not guarantee ordering between
different kinds.
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..errors import SignalingError


class SignalKind(Enum):
    PUBLIC_KEY = "publicKey"
    SESSION_DESCRIPTION = "sessionDescription"
    CANDIDATE = "candidate"


DESCRIPTION_TYPES = ('offer', 'answer')


def public_key_signal(public_key: str) -> Dict[str, Any]:
    return {'publicKey': public_key}


def description_signal(desc_type: str, sdp: Dict[str, Any]) -> Dict[str, Any]:
    if desc_type not in DESCRIPTION_TYPES:
        raise ValueError(f"Unknown session description type: {desc_type}")
    return {'type': desc_type, 'sdp': sdp}


def candidate_signal(host: str, port: int) -> Dict[str, Any]:
    return {'candidate': {'host': host, 'port': port}}


@dataclass
class SignalingMessage:
    """A relayed signaling message."""
    sender: str
    target: str
    signal: Dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> SignalKind:
        """
        Classify the payload.

        Raises:
            SignalingError: the payload is not one of the three known shapes
        """
        signal = self.signal
        if not isinstance(signal, dict):
            raise SignalingError(f"Signal payload must be an object, got {type(signal).__name__}")

        if 'publicKey' in signal:
            if not isinstance(signal['publicKey'], str):
                raise SignalingError("publicKey must be a string")
            return SignalKind.PUBLIC_KEY

        if 'sdp' in signal:
            if signal.get('type') not in DESCRIPTION_TYPES:
                raise SignalingError(f"Unknown session description type: {signal.get('type')!r}")
            if not isinstance(signal['sdp'], dict):
                raise SignalingError("sdp must be an object")
            return SignalKind.SESSION_DESCRIPTION

        if 'candidate' in signal:
            candidate = signal['candidate']
            if (not isinstance(candidate, dict)
                    or not isinstance(candidate.get('host'), str)
                    or not isinstance(candidate.get('port'), int)):
                raise SignalingError(f"Malformed candidate: {candidate!r}")
            return SignalKind.CANDIDATE

        raise SignalingError(f"Unrecognized signal keys: {sorted(signal)}")

    @property
    def public_key(self) -> Optional[str]:
        return self.signal.get('publicKey')

    @property
    def description_type(self) -> Optional[str]:
        return self.signal.get('type')

    @property
    def sdp(self) -> Optional[Dict[str, Any]]:
        return self.signal.get('sdp')

    @property
    def candidate(self) -> Optional[Dict[str, Any]]:
        return self.signal.get('candidate')

    def to_headers(self) -> Dict[str, Any]:
        """Header fields for a SIGNAL wire message."""
        return {'from': self.sender, 'target': self.target, 'signal': self.signal}

    @classmethod
    def from_headers(cls, headers: Dict[str, Any]) -> 'SignalingMessage':
        """
        Build from SIGNAL wire headers.

        Raises:
            SignalingError: addressing fields are missing
        """
        sender = headers.get('from')
        target = headers.get('target')
        if not isinstance(sender, str) or not isinstance(target, str):
            raise SignalingError("Signal is missing 'from' or 'target'")
        return cls(sender=sender, target=target, signal=headers.get('signal'))
