"""
Chunk Codec

Sender side: read a file in fixed 16KB slices and encrypt each one.
Receiver side: decrypt frames in arrival order and append the plaintext to
a part-file that only becomes the real file once the manifest checks out.

Design Decision: Receiver Buffering
===================================

Options Considered:
1. Keep every ciphertext in memory, decrypt all on the manifest
   - What browser peers do; memory grows with file size
2. Decrypt each frame on arrival and append to a part-file
   - Constant memory, a tampered chunk fails immediately
   - Requires cleanup of the part-file on failure

Decision: Option 2. A failed or truncated transfer deletes the part-file,
so a partial file is never presented as a finished one.
"""

import logging
import uuid
from pathlib import Path
from typing import AsyncIterator, Optional, Tuple

import aiofiles
import aiofiles.os

from ..crypto.cipher import CHUNK_SIZE, ChunkFrame, encrypt_chunk_async, decrypt_chunk_async
from ..crypto.keys import SharedKey
from ..errors import ProtocolSequenceError
from .frames import TransferManifest

logger = logging.getLogger(__name__)


def chunk_count(file_size: int, chunk_size: int = CHUNK_SIZE) -> int:
    """Calculate number of chunks for a file of given size."""
    return (file_size + chunk_size - 1) // chunk_size


def safe_file_name(name: str) -> str:
    """Reduce a peer-supplied file name to a bare, non-empty base name."""
    base = Path(name.replace('\\', '/')).name.strip()
    if base in ('', '.', '..'):
        return 'file'
    return base


def unique_path(directory: Path, file_name: str) -> Path:
    """Return ``directory/file_name``, adding `` (n)`` if the name is taken."""
    candidate = directory / file_name
    if not candidate.exists():
        return candidate

    stem, suffix = candidate.stem, candidate.suffix
    n = 1
    while True:
        candidate = directory / f"{stem} ({n}){suffix}"
        if not candidate.exists():
            return candidate
        n += 1


class ChunkEncoder:
    """
    Splits a file into encrypted chunk frames.

    frames() is a lazy async generator: the next slice is only read and
    encrypted when the consumer asks for it, so a sender that waits for the
    channel between chunks throttles reading without re-ordering anything.
    """

    def __init__(self, shared_key: SharedKey, chunk_size: int = CHUNK_SIZE):
        if chunk_size > CHUNK_SIZE:
            raise ValueError(f"Chunk size cannot exceed {CHUNK_SIZE}")
        self.shared_key = shared_key
        self.chunk_size = chunk_size

    async def frames(self, file_path: Path) -> AsyncIterator[Tuple[int, ChunkFrame]]:
        """
        Yields:
            (plaintext_length, ChunkFrame) tuples in file order
        """
        async with aiofiles.open(file_path, 'rb') as f:
            while True:
                chunk = await f.read(self.chunk_size)
                if not chunk:
                    break
                frame = await encrypt_chunk_async(self.shared_key, chunk)
                yield len(chunk), frame


class ChunkAssembler:
    """
    Decrypts frames in arrival order into a part-file.

    Usage:
        assembler = ChunkAssembler(key, output_dir)
        for frame in frames:
            await assembler.add(frame)
        path = await assembler.finalize(manifest)
    """

    def __init__(self, shared_key: SharedKey, output_dir: Path):
        self.shared_key = shared_key
        self.output_dir = Path(output_dir)
        self.part_path: Optional[Path] = None
        self.bytes_written = 0
        self.chunks_received = 0
        self._file = None
        self._closed = False

    async def _ensure_open(self):
        if self._closed:
            raise ProtocolSequenceError("Assembler is already closed")
        if self._file is None:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            self.part_path = self.output_dir / f".{uuid.uuid4().hex}.part"
            self._file = await aiofiles.open(self.part_path, 'wb')

    async def add(self, frame: ChunkFrame) -> int:
        """
        Decrypt one frame and append it.

        Returns:
            Plaintext length

        Raises:
            AuthenticationError: the frame failed authentication
        """
        await self._ensure_open()
        plaintext = await decrypt_chunk_async(self.shared_key, frame.ciphertext, frame.nonce)
        await self._file.write(plaintext)
        self.bytes_written += len(plaintext)
        self.chunks_received += 1
        return len(plaintext)

    async def finalize(self, manifest: TransferManifest) -> Path:
        """
        Close the part-file and move it to its final name.

        Raises:
            ProtocolSequenceError: size does not match the manifest
        """
        await self._ensure_open()
        await self._file.close()
        self._file = None
        self._closed = True

        if manifest.total_size != self.bytes_written:
            await self._remove_part()
            raise ProtocolSequenceError(
                f"Size mismatch: manifest says {manifest.total_size} bytes, "
                f"received {self.bytes_written}"
            )

        final_path = unique_path(self.output_dir, safe_file_name(manifest.file_name))
        await aiofiles.os.rename(self.part_path, final_path)
        self.part_path = None
        logger.info(f"Assembled {final_path.name} ({self.bytes_written:,} bytes, "
                    f"{self.chunks_received} chunks)")
        return final_path

    async def discard(self):
        """Drop everything received so far."""
        if self._file is not None:
            await self._file.close()
            self._file = None
        self._closed = True
        await self._remove_part()

    async def _remove_part(self):
        if self.part_path is not None and self.part_path.exists():
            await aiofiles.os.remove(self.part_path)
            logger.debug(f"Discarded partial data ({self.bytes_written:,} bytes)")
        self.part_path = None
