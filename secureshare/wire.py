"""
Wire Framing

Design Decision: Framing
========================

Options Considered:
1. Newline-delimited JSON
   - Simple, but binary chunks need base64 (+33% size)
2. WebSocket frames
   - Extra dependency, handshake overhead
3. Raw TCP with custom length-prefixed framing
   - Lightweight, binary-safe, full control

Decision: Length-prefixed messages with a JSON header and a binary body.
The same framing carries relay traffic (REGISTER/SIGNAL) and direct-channel
traffic (HELLO/DATA/CONTROL).

Message Format:
```
+----------------+----------------+----------------+----------------+
| Length (4B)    | HeaderLen (4B) | Header (JSON)  | Data (binary)  |
+----------------+----------------+----------------+----------------+

Header JSON:
{
    "type": "REGISTER" | "SIGNAL" | "DATA" | "CONTROL" | ...,
    "data_length": 12345,
    ...
}
```
"""

import asyncio
import json
import struct
import logging
from enum import Enum
from typing import Optional, Dict, Any
from dataclasses import dataclass, field

from .errors import ProtocolSequenceError

logger = logging.getLogger(__name__)

MAX_MESSAGE_SIZE = 1024 * 1024  # 1MB; chunks are 16KB


class MessageType(Enum):
    """Wire message types."""
    # Relay
    REGISTER = "REGISTER"
    REGISTERED = "REGISTERED"
    SIGNAL = "SIGNAL"

    # Direct channel
    HELLO = "HELLO"
    DATA = "DATA"
    CONTROL = "CONTROL"

    # Common
    ERROR = "ERROR"
    PING = "PING"
    PONG = "PONG"


@dataclass
class WireMessage:
    """A framed message."""
    type: MessageType
    headers: Dict[str, Any] = field(default_factory=dict)
    data: bytes = b''

    def to_bytes(self) -> bytes:
        """Serialize message to bytes."""
        header_dict = {
            'type': self.type.value,
            'data_length': len(self.data),
            **self.headers
        }
        header_bytes = json.dumps(header_dict).encode('utf-8')

        total_length = len(header_bytes) + len(self.data)

        # Pack: length (4 bytes) + header_length (4 bytes) + header + data
        return (
            struct.pack('>I', total_length) +
            struct.pack('>I', len(header_bytes)) +
            header_bytes +
            self.data
        )

    @classmethod
    async def from_reader(cls, reader: asyncio.StreamReader) -> Optional['WireMessage']:
        """
        Read a message from a stream.

        Returns:
            The message, or None if the stream ended

        Raises:
            ProtocolSequenceError: the frame is malformed
        """
        try:
            length_bytes = await reader.readexactly(4)
            total_length = struct.unpack('>I', length_bytes)[0]

            if total_length > MAX_MESSAGE_SIZE:
                raise ProtocolSequenceError(f"Message too large: {total_length}")

            header_length_bytes = await reader.readexactly(4)
            header_length = struct.unpack('>I', header_length_bytes)[0]
            if header_length > total_length:
                raise ProtocolSequenceError(
                    f"Header length {header_length} exceeds message length {total_length}"
                )

            header_bytes = await reader.readexactly(header_length)

            data_length = total_length - header_length
            data = await reader.readexactly(data_length) if data_length > 0 else b''
        except asyncio.IncompleteReadError:
            return None

        try:
            header_dict = json.loads(header_bytes.decode('utf-8'))
            msg_type = MessageType(header_dict.pop('type'))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise ProtocolSequenceError(f"Malformed message header: {e}") from e
        header_dict.pop('data_length', None)

        return cls(type=msg_type, headers=header_dict, data=data)


async def write_message(writer: asyncio.StreamWriter, message: WireMessage):
    """Write one message and wait for the transport buffer to drain."""
    writer.write(message.to_bytes())
    await writer.drain()
