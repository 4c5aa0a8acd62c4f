"""
Direct Channel Abstraction

An ordered, message-oriented, bidirectional channel between two sessions.
Binary payloads (``bytes``) carry encrypted chunks; text payloads (``str``)
carry UTF-8 control messages.

Lifecycle mirrors a data channel: CONNECTING -> OPEN -> CLOSING -> CLOSED,
with ``on_open``, ``on_message``, ``on_close`` and ``on_error`` callbacks.

Ordering: messages are handed to ``on_message`` one at a time, in the order
the peer sent them. The channel awaits the handler before reading the next
message, so a slow handler applies backpressure instead of reordering.
"""

import logging
from enum import Enum
from typing import Optional, Union, Callable, Awaitable

from ..errors import ChannelError

logger = logging.getLogger(__name__)

Payload = Union[bytes, str]
MessageHandler = Callable[[Payload], Awaitable[None]]
LifecycleHandler = Callable[[], Awaitable[None]]
ErrorHandler = Callable[[Exception], Awaitable[None]]


class ChannelState(Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class DirectChannel:
    """
    Base class for direct channels.

    Subclasses implement _transmit(), wait_writable(), buffered_amount,
    _start_pump() and _shutdown().
    """

    def __init__(self, label: str = 'fileTransfer'):
        self.label = label
        self.state = ChannelState.CONNECTING

        self.on_open: Optional[LifecycleHandler] = None
        self.on_message: Optional[MessageHandler] = None
        self.on_close: Optional[LifecycleHandler] = None
        self.on_error: Optional[ErrorHandler] = None

        # Statistics
        self.messages_sent = 0
        self.messages_received = 0
        self.bytes_sent = 0
        self.bytes_received = 0

    @property
    def is_open(self) -> bool:
        return self.state == ChannelState.OPEN

    @property
    def buffered_amount(self) -> int:
        """Bytes queued for sending but not yet handed to the peer."""
        raise NotImplementedError

    async def start(self):
        """Report the channel open and begin delivering messages."""
        if self.state != ChannelState.CONNECTING:
            raise ChannelError(f"Channel cannot start from state {self.state.value}")
        self.state = ChannelState.OPEN
        logger.debug(f"Channel {self.label} open")
        if self.on_open:
            await self.on_open()
        self._start_pump()

    async def send(self, payload: Payload):
        """
        Send one message.

        Raises:
            ChannelError: the channel is not open or the transport failed
        """
        if self.state != ChannelState.OPEN:
            raise ChannelError(f"Channel is {self.state.value}")
        if not isinstance(payload, (bytes, bytearray, memoryview, str)):
            raise TypeError(f"Unsupported payload type: {type(payload).__name__}")
        if isinstance(payload, (bytearray, memoryview)):
            payload = bytes(payload)

        await self._transmit(payload)
        self.messages_sent += 1
        self.bytes_sent += len(payload)

    async def wait_writable(self):
        """Wait until the channel can accept another message."""
        raise NotImplementedError

    async def close(self):
        """Close the channel and notify ``on_close`` once."""
        if self.state in (ChannelState.CLOSING, ChannelState.CLOSED):
            return
        self.state = ChannelState.CLOSING
        try:
            await self._shutdown()
        finally:
            await self._closed()

    # === Hooks for subclasses ===

    async def _transmit(self, payload: Payload):
        raise NotImplementedError

    def _start_pump(self):
        raise NotImplementedError

    async def _shutdown(self):
        raise NotImplementedError

    async def _deliver(self, payload: Payload):
        self.messages_received += 1
        self.bytes_received += len(payload)
        if self.on_message is None:
            logger.warning(f"Channel {self.label}: dropping message, no handler")
            return
        try:
            await self.on_message(payload)
        except Exception as e:
            logger.error(f"Channel {self.label}: message handler failed: {e}")

    async def _fail(self, error: Exception):
        """Report a transport error, then close."""
        if self.state == ChannelState.CLOSED:
            return
        logger.warning(f"Channel {self.label} error: {error}")
        if self.on_error:
            try:
                await self.on_error(error)
            except Exception as e:
                logger.error(f"Channel {self.label}: error handler failed: {e}")
        await self.close()

    async def _closed(self):
        if self.state == ChannelState.CLOSED:
            return
        self.state = ChannelState.CLOSED
        logger.debug(f"Channel {self.label} closed")
        if self.on_close:
            try:
                await self.on_close()
            except Exception as e:
                logger.error(f"Channel {self.label}: close handler failed: {e}")


class Negotiator:
    """
    Establishes a DirectChannel with one peer using the signaling relay.

    The offerer calls offer(); the answerer feeds received descriptions and
    candidates in through handle_description()/handle_candidate(). Both then
    await wait_channel().
    """

    async def offer(self):
        raise NotImplementedError

    async def handle_description(self, desc_type: str, sdp: dict):
        raise NotImplementedError

    async def handle_candidate(self, candidate: dict):
        raise NotImplementedError

    async def wait_channel(self) -> DirectChannel:
        raise NotImplementedError

    @property
    def framing(self) -> str:
        raise NotImplementedError

    async def close(self):
        pass
