"""
TCP Direct Channel

A DirectChannel over an asyncio stream. Each payload is one wire message:
DATA (binary) or CONTROL (UTF-8 text). TCP delivers in order, so message
order on the receiving side equals send order.
"""

import asyncio
import logging
from typing import Optional

from ..errors import ChannelError, ProtocolSequenceError
from ..wire import MessageType, WireMessage
from .base import DirectChannel, ChannelState, Payload

logger = logging.getLogger(__name__)


class TcpChannel(DirectChannel):
    """DirectChannel backed by a connected asyncio stream pair."""

    def __init__(self, reader: asyncio.StreamReader,
                 writer: asyncio.StreamWriter,
                 max_buffered_amount: int = 1024 * 1024,
                 label: str = 'fileTransfer'):
        super().__init__(label=label)
        self.reader = reader
        self.writer = writer
        self.max_buffered_amount = max_buffered_amount
        self._pump_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    @property
    def remote_address(self):
        return self.writer.get_extra_info('peername')

    @property
    def buffered_amount(self) -> int:
        transport = self.writer.transport
        if transport is None or transport.is_closing():
            return 0
        return transport.get_write_buffer_size()

    async def wait_writable(self):
        if self.state != ChannelState.OPEN:
            raise ChannelError(f"Channel is {self.state.value}")
        if self.buffered_amount > self.max_buffered_amount:
            try:
                await self.writer.drain()
            except (ConnectionError, OSError) as e:
                raise ChannelError(f"Channel write failed: {e}") from e

    async def _transmit(self, payload: Payload):
        if isinstance(payload, str):
            message = WireMessage(type=MessageType.CONTROL, data=payload.encode('utf-8'))
        else:
            message = WireMessage(type=MessageType.DATA, data=payload)

        async with self._lock:
            try:
                self.writer.write(message.to_bytes())
                await self.writer.drain()
            except (ConnectionError, OSError) as e:
                raise ChannelError(f"Channel write failed: {e}") from e

    def _start_pump(self):
        self._pump_task = asyncio.create_task(self._pump())

    async def _pump(self):
        """Read messages and deliver them in order until EOF or error."""
        try:
            while self.state == ChannelState.OPEN:
                message = await WireMessage.from_reader(self.reader)
                if message is None:
                    logger.debug(f"Channel {self.label}: peer closed the stream")
                    break

                if message.type == MessageType.DATA:
                    await self._deliver(message.data)
                elif message.type == MessageType.CONTROL:
                    try:
                        text = message.data.decode('utf-8')
                    except UnicodeDecodeError as e:
                        raise ProtocolSequenceError(f"Control message is not UTF-8: {e}") from e
                    await self._deliver(text)
                elif message.type == MessageType.PING:
                    await self._transmit_raw(WireMessage(type=MessageType.PONG))
                else:
                    logger.debug(f"Channel {self.label}: ignoring {message.type.value}")
        except asyncio.CancelledError:
            raise
        except ProtocolSequenceError as e:
            await self._fail(e)
            return
        except (ConnectionError, OSError) as e:
            await self._fail(ChannelError(f"Channel read failed: {e}"))
            return

        await self.close()

    async def _transmit_raw(self, message: WireMessage):
        async with self._lock:
            self.writer.write(message.to_bytes())
            await self.writer.drain()

    async def _shutdown(self):
        try:
            if self.writer.can_write_eof():
                self.writer.write_eof()
        except (ConnectionError, OSError, RuntimeError):
            pass
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError):
            pass

        # Never cancel ourselves; the pump loop exits on the state change
        if self._pump_task and self._pump_task is not asyncio.current_task():
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass
