"""
Crypto Module - Key Agreement and Chunk Encryption

ECDH P-256 key exchange and AES-256-GCM chunk encryption.
"""

from .keys import (
    KeyPair,
    SharedKey,
    generate_key_pair,
    export_public_key,
    import_public_key,
    derive_shared_key,
)
from .cipher import (
    CHUNK_SIZE,
    NONCE_LENGTH,
    TAG_LENGTH,
    ENCRYPTION_METHOD,
    ChunkFrame,
    encrypt_chunk,
    decrypt_chunk,
    encrypt_chunk_async,
    decrypt_chunk_async,
)

__all__ = [
    'KeyPair',
    'SharedKey',
    'generate_key_pair',
    'export_public_key',
    'import_public_key',
    'derive_shared_key',
    'CHUNK_SIZE',
    'NONCE_LENGTH',
    'TAG_LENGTH',
    'ENCRYPTION_METHOD',
    'ChunkFrame',
    'encrypt_chunk',
    'decrypt_chunk',
    'encrypt_chunk_async',
    'decrypt_chunk_async',
]
