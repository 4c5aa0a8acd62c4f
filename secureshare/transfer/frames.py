"""
Chunk Framing

Design Decision: Nonce/Ciphertext Pairing
=========================================

Options Considered:
1. Alternating messages (nonce, then ciphertext)
   - What existing browser peers send
   - Pairing depends on strict alternation and arrival order
2. One message per chunk: nonce || ciphertext
   - The nonce is a fixed 12 bytes, so no length prefix is needed
   - A lost or duplicated message cannot shift the pairing
3. Tagged record {index, nonce, ciphertext}
   - Explicit, but adds a header to every 16KB chunk

Decision: Option 2 ("combined") by default; option 1 ("alternating") is
kept for compatibility. The offerer picks the mode and announces it in its
offer.

Control messages are UTF-8 JSON. The only one is the end-of-transfer
manifest:
```
{"done": true, "fileName": "report.pdf", "totalSize": 50000}
```
"""

import json
from dataclasses import dataclass
from typing import List, Optional, Union

from ..crypto.cipher import ChunkFrame, NONCE_LENGTH, TAG_LENGTH, MAX_CIPHERTEXT_LENGTH
from ..errors import ProtocolSequenceError

COMBINED = 'combined'
ALTERNATING = 'alternating'


@dataclass
class TransferManifest:
    """End-of-transfer control message."""
    file_name: str
    total_size: int
    done: bool = True

    def to_json(self) -> str:
        return json.dumps({
            'done': self.done,
            'fileName': self.file_name,
            'totalSize': self.total_size,
        })

    @classmethod
    def from_json(cls, text: str) -> 'TransferManifest':
        """
        Parse a control message.

        Raises:
            ProtocolSequenceError: not a well-formed manifest
        """
        try:
            data = json.loads(text)
        except ValueError as e:
            raise ProtocolSequenceError(f"Control message is not JSON: {e}") from e

        if not isinstance(data, dict) or data.get('done') is not True:
            raise ProtocolSequenceError(f"Unexpected control message: {text[:80]!r}")

        file_name = data.get('fileName') or 'file'
        total_size = data.get('totalSize')
        if not isinstance(file_name, str):
            raise ProtocolSequenceError("Manifest fileName must be a string")
        if not isinstance(total_size, int) or isinstance(total_size, bool) or total_size < 0:
            raise ProtocolSequenceError(f"Manifest totalSize is invalid: {total_size!r}")

        return cls(file_name=file_name, total_size=total_size)


def encode_frame(frame: ChunkFrame, framing: str = COMBINED) -> List[bytes]:
    """Binary messages to send for one chunk, in order."""
    if framing == COMBINED:
        return [frame.nonce + frame.ciphertext]
    if framing == ALTERNATING:
        return [frame.nonce, frame.ciphertext]
    raise ValueError(f"Unknown framing mode: {framing}")


def _check_ciphertext(ciphertext: bytes):
    if len(ciphertext) < TAG_LENGTH:
        raise ProtocolSequenceError(f"Ciphertext too short: {len(ciphertext)} bytes")
    if len(ciphertext) > MAX_CIPHERTEXT_LENGTH:
        raise ProtocolSequenceError(f"Ciphertext too long: {len(ciphertext)} bytes")


def decode_combined(data: bytes) -> ChunkFrame:
    """Split a combined message into nonce and ciphertext."""
    if len(data) < NONCE_LENGTH:
        raise ProtocolSequenceError(f"Frame too short: {len(data)} bytes")
    ciphertext = data[NONCE_LENGTH:]
    _check_ciphertext(ciphertext)
    return ChunkFrame(nonce=data[:NONCE_LENGTH], ciphertext=ciphertext)


class FrameDemultiplexer:
    """
    Turns channel messages back into chunk frames and the manifest.

    In alternating mode it keeps an expect-nonce/expect-ciphertext flip-flop
    and pairs the i-th nonce with the i-th ciphertext by arrival order.
    """

    def __init__(self, framing: str = COMBINED):
        if framing not in (COMBINED, ALTERNATING):
            raise ValueError(f"Unknown framing mode: {framing}")
        self.framing = framing
        self._pending_nonce: Optional[bytes] = None

    @property
    def expecting_nonce(self) -> bool:
        return self._pending_nonce is None

    def feed(self, payload: Union[bytes, str]) -> Union[ChunkFrame, TransferManifest, None]:
        """
        Consume one channel message.

        Returns:
            ChunkFrame when a chunk is complete, TransferManifest for the
            end-of-transfer message, None when a nonce is waiting for its
            ciphertext

        Raises:
            ProtocolSequenceError: the message breaks the framing rules
        """
        if isinstance(payload, str):
            if self._pending_nonce is not None:
                raise ProtocolSequenceError("Control message arrived between a nonce and its ciphertext")
            return TransferManifest.from_json(payload)

        data = bytes(payload)
        if self.framing == COMBINED:
            return decode_combined(data)

        if self._pending_nonce is None:
            if len(data) != NONCE_LENGTH:
                raise ProtocolSequenceError(
                    f"Expected a {NONCE_LENGTH}-byte nonce, got {len(data)} bytes"
                )
            self._pending_nonce = data
            return None

        nonce, self._pending_nonce = self._pending_nonce, None
        _check_ciphertext(data)
        return ChunkFrame(nonce=nonce, ciphertext=data)
