"""
Chunk Encryption

AES-256-GCM with a fresh random 12-byte nonce per chunk. The nonce is
generated inside encrypt_chunk() and is never a parameter, so a caller
cannot reuse one under the same key.

The 16-byte authentication tag is appended to the ciphertext, so a
ciphertext is always ``len(plaintext) + 16`` bytes.
"""

import asyncio
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag

from ..errors import AuthenticationError
from .keys import SharedKey

# Protocol constants
CHUNK_SIZE = 16384  # 16KB plaintext chunks
NONCE_LENGTH = 12
TAG_LENGTH = 16
ENCRYPTION_METHOD = 'AES-GCM'
MAX_CIPHERTEXT_LENGTH = CHUNK_SIZE + TAG_LENGTH


@dataclass(frozen=True)
class ChunkFrame:
    """An encrypted chunk: the nonce and the ciphertext (tag included)."""
    nonce: bytes
    ciphertext: bytes

    @property
    def plaintext_length(self) -> int:
        return len(self.ciphertext) - TAG_LENGTH


def encrypt_chunk(shared_key: SharedKey, plaintext: bytes) -> ChunkFrame:
    """
    Encrypt one plaintext chunk.

    Args:
        shared_key: Session key
        plaintext: At most CHUNK_SIZE bytes

    Returns:
        ChunkFrame with a freshly generated nonce
    """
    if len(plaintext) > CHUNK_SIZE:
        raise ValueError(f"Chunk too large: {len(plaintext)} > {CHUNK_SIZE}")

    nonce = os.urandom(NONCE_LENGTH)
    ciphertext = shared_key.aead.encrypt(nonce, bytes(plaintext), None)
    return ChunkFrame(nonce=nonce, ciphertext=ciphertext)


def decrypt_chunk(shared_key: SharedKey, ciphertext: bytes, nonce: bytes) -> bytes:
    """
    Decrypt and authenticate one chunk.

    Raises:
        AuthenticationError: tag mismatch (corrupted or tampered data)
    """
    if len(nonce) != NONCE_LENGTH:
        raise AuthenticationError(f"Invalid nonce length: {len(nonce)}")
    if len(ciphertext) < TAG_LENGTH:
        raise AuthenticationError(f"Ciphertext shorter than tag: {len(ciphertext)}")

    try:
        return shared_key.aead.decrypt(bytes(nonce), bytes(ciphertext), None)
    except InvalidTag as e:
        raise AuthenticationError("Chunk failed authentication (corrupted or tampered)") from e


async def encrypt_chunk_async(shared_key: SharedKey, plaintext: bytes) -> ChunkFrame:
    """encrypt_chunk() on the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, encrypt_chunk, shared_key, plaintext)


async def decrypt_chunk_async(shared_key: SharedKey, ciphertext: bytes, nonce: bytes) -> bytes:
    """decrypt_chunk() on the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, decrypt_chunk, shared_key, ciphertext, nonce)
