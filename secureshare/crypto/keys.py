"""
Key Exchange

Design Decision: Key Agreement
==============================

Options Considered:
1. X25519 - Modern, fast, fixed-size raw keys
   - Not available to browser peers through WebCrypto everywhere
2. ECDH over NIST P-256
   - Supported by every WebCrypto implementation
   - Public keys travel as JSON Web Keys
3. RSA key wrapping
   - Large keys, no forward secrecy for the session key

Decision: ECDH P-256 with JWK-encoded public keys
- Each session generates a fresh ephemeral key pair; nothing is persisted
- The raw 32-byte ECDH secret is used directly as the AES-256-GCM key,
  matching WebCrypto's deriveKey(ECDH -> AES-GCM, length 256)
- Both sides derive bit-identical keys from (own private, peer public)

JWK shape:
```
{"kty": "EC", "crv": "P-256", "x": "<b64url>", "y": "<b64url>",
 "ext": true, "key_ops": []}
```
"""

import asyncio
import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from typing import Union

from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..errors import KeyFormatError, KeyAgreementError

logger = logging.getLogger(__name__)

CURVE_NAME = 'P-256'
COORDINATE_LENGTH = 32  # bytes per P-256 coordinate
SHARED_KEY_LENGTH = 32  # AES-256


def _b64url_encode(data: bytes) -> str:
    """Base64url encode without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b'=').decode('ascii')


def _b64url_decode(text: str) -> bytes:
    padding = '=' * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


@dataclass
class KeyPair:
    """An ephemeral key pair used for one session's key agreement."""
    private_key: ec.EllipticCurvePrivateKey = field(repr=False)

    @property
    def public_key(self) -> ec.EllipticCurvePublicKey:
        return self.private_key.public_key()


class SharedKey:
    """
    Symmetric AES-256-GCM key derived from ECDH.

    Never serialized or transmitted; ``repr`` does not reveal key material.
    """

    def __init__(self, key: bytes):
        if len(key) != SHARED_KEY_LENGTH:
            raise KeyAgreementError(f"Shared key must be {SHARED_KEY_LENGTH} bytes, got {len(key)}")
        self._key = key
        self.aead = AESGCM(key)

    def __eq__(self, other) -> bool:
        if not isinstance(other, SharedKey):
            return NotImplemented
        return self._key == other._key

    def __hash__(self):
        return hash(self._key)

    def __repr__(self) -> str:
        return '<SharedKey AES-256-GCM>'

    @property
    def key_bytes(self) -> bytes:
        return self._key


def _generate_key_pair_sync() -> KeyPair:
    return KeyPair(private_key=ec.generate_private_key(ec.SECP256R1()))


async def generate_key_pair() -> KeyPair:
    """Generate a fresh P-256 key pair without blocking the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, _generate_key_pair_sync)


def export_public_key(key_pair: Union[KeyPair, ec.EllipticCurvePublicKey]) -> str:
    """
    Serialize a public key as JWK JSON text.

    Args:
        key_pair: A KeyPair, or a bare public key

    Returns:
        JSON string that round-trips through import_public_key()
    """
    public_key = key_pair.public_key if isinstance(key_pair, KeyPair) else key_pair
    numbers = public_key.public_numbers()
    jwk = {
        'kty': 'EC',
        'crv': CURVE_NAME,
        'x': _b64url_encode(numbers.x.to_bytes(COORDINATE_LENGTH, 'big')),
        'y': _b64url_encode(numbers.y.to_bytes(COORDINATE_LENGTH, 'big')),
        'ext': True,
        'key_ops': [],
    }
    return json.dumps(jwk)


def import_public_key(data: Union[str, bytes]) -> ec.EllipticCurvePublicKey:
    """
    Parse a JWK public key.

    Raises:
        KeyFormatError: not JSON, not an EC P-256 JWK, or not a curve point
    """
    try:
        jwk = json.loads(data)
    except (ValueError, TypeError) as e:
        raise KeyFormatError(f"Public key is not valid JSON: {e}") from e

    if not isinstance(jwk, dict):
        raise KeyFormatError("Public key JWK must be a JSON object")
    if jwk.get('kty') != 'EC':
        raise KeyFormatError(f"Unsupported key type: {jwk.get('kty')!r}")
    if jwk.get('crv') != CURVE_NAME:
        raise KeyFormatError(f"Unsupported curve: {jwk.get('crv')!r}")

    try:
        x = _b64url_decode(jwk['x'])
        y = _b64url_decode(jwk['y'])
    except KeyError as e:
        raise KeyFormatError(f"JWK is missing coordinate {e}") from e
    except (binascii.Error, ValueError, TypeError, AttributeError) as e:
        raise KeyFormatError(f"JWK coordinate is not base64url: {e}") from e

    if len(x) != COORDINATE_LENGTH or len(y) != COORDINATE_LENGTH:
        raise KeyFormatError("JWK coordinates have the wrong length")

    try:
        numbers = ec.EllipticCurvePublicNumbers(
            int.from_bytes(x, 'big'),
            int.from_bytes(y, 'big'),
            ec.SECP256R1(),
        )
        return numbers.public_key()
    except ValueError as e:
        raise KeyFormatError(f"JWK point is not on {CURVE_NAME}: {e}") from e


def _derive_sync(private_key: ec.EllipticCurvePrivateKey,
                 peer_public_key: ec.EllipticCurvePublicKey) -> SharedKey:
    if not isinstance(peer_public_key, ec.EllipticCurvePublicKey):
        raise KeyAgreementError(
            f"Peer key is not an elliptic-curve public key: {type(peer_public_key).__name__}"
        )
    if peer_public_key.curve.name != private_key.curve.name:
        raise KeyAgreementError(
            f"Curve mismatch: local {private_key.curve.name}, peer {peer_public_key.curve.name}"
        )
    try:
        secret = private_key.exchange(ec.ECDH(), peer_public_key)
    except ValueError as e:
        raise KeyAgreementError(f"ECDH exchange failed: {e}") from e
    return SharedKey(secret[:SHARED_KEY_LENGTH])


async def derive_shared_key(private_key: ec.EllipticCurvePrivateKey,
                            peer_public_key: ec.EllipticCurvePublicKey) -> SharedKey:
    """
    Derive the session's AES-256-GCM key from our private key and the peer's public key.

    Raises:
        KeyAgreementError: curve mismatch or invalid peer key
    """
    loop = asyncio.get_running_loop()
    shared = await loop.run_in_executor(None, _derive_sync, private_key, peer_public_key)
    logger.debug("Derived shared key")
    return shared
