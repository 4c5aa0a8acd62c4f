"""
Transfer Progress

Plain-data views of a running transfer for any presentation layer.
"""

import time
from dataclasses import dataclass, field
from typing import Optional

from ..crypto.cipher import CHUNK_SIZE, ENCRYPTION_METHOD


@dataclass
class ChunkRecord:
    """The most recently processed chunk."""
    chunk_number: int
    original_size: int
    encrypted_size: int
    nonce_length: int
    total_chunks: Optional[int] = None  # known on the sending side only
    method: str = ENCRYPTION_METHOD
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            'method': self.method,
            'chunk_number': self.chunk_number,
            'total_chunks': self.total_chunks,
            'original_size': self.original_size,
            'encrypted_size': self.encrypted_size,
            'nonce_length': self.nonce_length,
            'timestamp': self.timestamp,
        }


@dataclass
class TransferProgress:
    """Track bytes processed; the fraction never decreases."""
    total_bytes: Optional[int] = None
    bytes_processed: int = 0
    chunks_processed: int = 0
    start_time: float = field(default_factory=time.time)
    _fraction: float = field(default=0.0, repr=False)

    def update(self, plaintext_length: int):
        """Record one processed chunk and recompute the fraction."""
        self.bytes_processed += plaintext_length
        self.chunks_processed += 1
        self._recompute()

    def complete(self):
        self._fraction = 1.0

    def _recompute(self):
        if self.total_bytes:
            fraction = min(self.bytes_processed / self.total_bytes, 1.0)
        else:
            # Size unknown until the manifest; approaches 1.0 one chunk at a time
            fraction = self.bytes_processed / (self.bytes_processed + CHUNK_SIZE)
        self._fraction = max(self._fraction, fraction)

    @property
    def fraction(self) -> float:
        """Progress as 0.0 to 1.0."""
        return self._fraction

    @property
    def percent(self) -> float:
        return self._fraction * 100

    @property
    def elapsed_seconds(self) -> float:
        return time.time() - self.start_time

    @property
    def speed_bytes_per_sec(self) -> float:
        elapsed = self.elapsed_seconds
        if elapsed == 0:
            return 0
        return self.bytes_processed / elapsed

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'total_bytes': self.total_bytes,
            'bytes_processed': self.bytes_processed,
            'chunks_processed': self.chunks_processed,
            'fraction': self.fraction,
            'percent': self.percent,
            'elapsed_seconds': self.elapsed_seconds,
            'speed_bytes_per_sec': self.speed_bytes_per_sec,
        }
