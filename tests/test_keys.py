import json

import pytest
from cryptography.hazmat.primitives.asymmetric import ec

from secureshare.crypto import (
    SharedKey,
    derive_shared_key,
    export_public_key,
    generate_key_pair,
    import_public_key,
)
from secureshare.crypto.keys import _b64url_encode
from secureshare.errors import KeyAgreementError, KeyFormatError


@pytest.mark.asyncio
async def test_both_sides_derive_the_same_key():
    alice = await generate_key_pair()
    bob = await generate_key_pair()

    alice_key = await derive_shared_key(alice.private_key, import_public_key(export_public_key(bob)))
    bob_key = await derive_shared_key(bob.private_key, import_public_key(export_public_key(alice)))

    assert alice_key == bob_key
    assert len(alice_key.key_bytes) == 32


@pytest.mark.asyncio
async def test_different_peers_give_different_keys():
    alice = await generate_key_pair()
    bob = await generate_key_pair()
    carol = await generate_key_pair()

    with_bob = await derive_shared_key(alice.private_key, bob.public_key)
    with_carol = await derive_shared_key(alice.private_key, carol.public_key)

    assert with_bob != with_carol


@pytest.mark.asyncio
async def test_exported_key_is_p256_jwk():
    pair = await generate_key_pair()
    jwk = json.loads(export_public_key(pair))

    assert jwk["kty"] == "EC"
    assert jwk["crv"] == "P-256"
    assert "d" not in jwk
    assert "=" not in jwk["x"] and "=" not in jwk["y"]

    imported = import_public_key(json.dumps(jwk))
    assert imported.public_numbers() == pair.public_key.public_numbers()


@pytest.mark.parametrize("text", [
    "not json",
    "[]",
    '{"kty": "RSA", "crv": "P-256", "x": "AA", "y": "AA"}',
    '{"kty": "EC", "crv": "P-384", "x": "AA", "y": "AA"}',
    '{"kty": "EC", "crv": "P-256"}',
    '{"kty": "EC", "crv": "P-256", "x": "AAAA", "y": "AAAA"}',
    '{"kty": "EC", "crv": "P-256", "x": "!!!", "y": "@@@"}',
])
def test_malformed_public_key_is_rejected(text):
    with pytest.raises(KeyFormatError):
        import_public_key(text)


def test_point_not_on_curve_is_rejected():
    jwk = {
        "kty": "EC",
        "crv": "P-256",
        "x": _b64url_encode(b"\x01" * 32),
        "y": _b64url_encode(b"\x02" * 32),
    }
    with pytest.raises(KeyFormatError):
        import_public_key(json.dumps(jwk))


@pytest.mark.asyncio
async def test_curve_mismatch_fails_agreement():
    pair = await generate_key_pair()
    other_curve = ec.generate_private_key(ec.SECP384R1()).public_key()

    with pytest.raises(KeyAgreementError):
        await derive_shared_key(pair.private_key, other_curve)


def test_shared_key_requires_32_bytes():
    with pytest.raises(KeyAgreementError):
        SharedKey(b"\x00" * 16)


def test_shared_key_repr_hides_material():
    key = SharedKey(b"\xab" * 32)
    assert "abab" not in repr(key).lower()
    assert "\\xab" not in repr(key)
