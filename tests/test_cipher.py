import os

import pytest

from secureshare.crypto import (
    CHUNK_SIZE,
    NONCE_LENGTH,
    TAG_LENGTH,
    SharedKey,
    decrypt_chunk,
    decrypt_chunk_async,
    encrypt_chunk,
    encrypt_chunk_async,
)
from secureshare.errors import AuthenticationError


@pytest.fixture
def key():
    return SharedKey(os.urandom(32))


def test_round_trip(key):
    plaintext = os.urandom(1000)
    frame = encrypt_chunk(key, plaintext)

    assert len(frame.nonce) == NONCE_LENGTH
    assert len(frame.ciphertext) == len(plaintext) + TAG_LENGTH
    assert frame.plaintext_length == len(plaintext)
    assert decrypt_chunk(key, frame.ciphertext, frame.nonce) == plaintext


def test_full_and_empty_chunks(key):
    for plaintext in (b"", os.urandom(CHUNK_SIZE)):
        frame = encrypt_chunk(key, plaintext)
        assert decrypt_chunk(key, frame.ciphertext, frame.nonce) == plaintext


def test_oversized_chunk_is_rejected(key):
    with pytest.raises(ValueError):
        encrypt_chunk(key, b"\x00" * (CHUNK_SIZE + 1))


def test_nonces_are_fresh(key):
    nonces = {encrypt_chunk(key, b"same").nonce for _ in range(200)}
    assert len(nonces) == 200


def test_same_plaintext_encrypts_differently(key):
    first = encrypt_chunk(key, b"same plaintext")
    second = encrypt_chunk(key, b"same plaintext")
    assert first.ciphertext != second.ciphertext


@pytest.mark.parametrize("position", [0, 5, 99, 100, 115])
def test_any_flipped_bit_fails_authentication(key, position):
    frame = encrypt_chunk(key, os.urandom(100))
    tampered = bytearray(frame.ciphertext)
    tampered[position] ^= 0x01

    with pytest.raises(AuthenticationError):
        decrypt_chunk(key, bytes(tampered), frame.nonce)


def test_wrong_nonce_fails_authentication(key):
    frame = encrypt_chunk(key, b"payload")
    other_nonce = bytes(b ^ 0xFF for b in frame.nonce)

    with pytest.raises(AuthenticationError):
        decrypt_chunk(key, frame.ciphertext, other_nonce)


def test_wrong_key_fails_authentication(key):
    frame = encrypt_chunk(key, b"payload")

    with pytest.raises(AuthenticationError):
        decrypt_chunk(SharedKey(os.urandom(32)), frame.ciphertext, frame.nonce)


def test_malformed_inputs_fail_authentication(key):
    frame = encrypt_chunk(key, b"payload")

    with pytest.raises(AuthenticationError):
        decrypt_chunk(key, frame.ciphertext, frame.nonce[:8])
    with pytest.raises(AuthenticationError):
        decrypt_chunk(key, frame.ciphertext[:TAG_LENGTH - 1], frame.nonce)


@pytest.mark.asyncio
async def test_async_variants(key):
    frame = await encrypt_chunk_async(key, b"async payload")
    assert await decrypt_chunk_async(key, frame.ciphertext, frame.nonce) == b"async payload"
