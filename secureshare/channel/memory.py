"""
In-Memory Direct Channel

A connected pair of channels inside one event loop. Each side owns a
bounded inbox; when the peer's inbox is full, the sender blocks, which
gives the same backpressure behaviour as a real transport.
"""

import asyncio
import logging
from typing import Optional, Tuple

from ..errors import ChannelError
from .base import DirectChannel, ChannelState, Payload

logger = logging.getLogger(__name__)

_EOF = object()


class MemoryChannel(DirectChannel):
    """One end of an in-process channel pair."""

    def __init__(self, max_queued: int = 64, label: str = 'fileTransfer'):
        super().__init__(label=label)
        self._inbox: asyncio.Queue = asyncio.Queue(maxsize=max_queued)
        self._peer: Optional['MemoryChannel'] = None
        self._writable = asyncio.Event()
        self._writable.set()
        self._pump_task: Optional[asyncio.Task] = None

    @classmethod
    def pair(cls, max_queued: int = 64) -> Tuple['MemoryChannel', 'MemoryChannel']:
        """Create two connected channels."""
        a = cls(max_queued=max_queued)
        b = cls(max_queued=max_queued)
        a._peer = b
        b._peer = a
        return a, b

    @property
    def buffered_amount(self) -> int:
        if self._peer is None:
            return 0
        return self._peer._inbox.qsize()

    async def wait_writable(self):
        if self.state != ChannelState.OPEN:
            raise ChannelError(f"Channel is {self.state.value}")
        await self._writable.wait()

    async def _transmit(self, payload: Payload):
        peer = self._peer
        if peer is None or peer.state in (ChannelState.CLOSING, ChannelState.CLOSED):
            raise ChannelError("Peer channel is closed")
        await peer._inbox.put(payload)
        if peer._inbox.full():
            self._writable.clear()

    def _start_pump(self):
        self._pump_task = asyncio.create_task(self._pump())

    async def _pump(self):
        while self.state == ChannelState.OPEN:
            payload = await self._inbox.get()
            if self._peer is not None:
                self._peer._writable.set()
            if payload is _EOF:
                break
            await self._deliver(payload)
        await self.close()

    async def _shutdown(self):
        peer = self._peer
        if peer is not None and peer.state != ChannelState.CLOSED:
            # Queued messages are still delivered before the peer sees EOF
            try:
                peer._inbox.put_nowait(_EOF)
            except asyncio.QueueFull:
                asyncio.create_task(peer._inbox.put(_EOF))
        if self._pump_task and self._pump_task is not asyncio.current_task():
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass

    async def fail(self, error: Exception):
        """Simulate a transport error on this end."""
        await self._fail(error)
