"""
Transfer Module - Encrypted Chunk Transfer

Chunk framing, encryption pipeline and the per-session state machine.
"""

from .frames import TransferManifest, FrameDemultiplexer, encode_frame, decode_combined
from .codec import ChunkEncoder, ChunkAssembler, chunk_count
from .progress import TransferProgress, ChunkRecord
from .session import (
    TransferState,
    Role,
    TransferSession,
    SenderSession,
    ReceiverSession,
)

__all__ = [
    'TransferManifest',
    'FrameDemultiplexer',
    'encode_frame',
    'decode_combined',
    'ChunkEncoder',
    'ChunkAssembler',
    'chunk_count',
    'TransferProgress',
    'ChunkRecord',
    'TransferState',
    'Role',
    'TransferSession',
    'SenderSession',
    'ReceiverSession',
]
