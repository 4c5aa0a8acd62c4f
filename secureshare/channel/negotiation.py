"""
Direct Channel Negotiation

Design Decision: Channel Setup
==============================

Options Considered:
1. Full WebRTC (ICE/DTLS/SCTP)
   - Browser interop, NAT traversal
   - Very heavy for a file-transfer core
2. Relay everything through the rendezvous server
   - Simple, but the relay would carry the file data
3. Offer/answer over the relay, then a direct TCP connection
   - Offerer listens, advertises host:port candidates
   - Answerer dials candidates until one completes the handshake

Decision: Option 3. NAT traversal is out of scope; candidates are plain
host/port pairs taken from the configured advertise addresses.

Handshake:
```
sender (offerer)                         receiver (answerer)
  listen on channel_host:0
  SIGNAL {type: offer, sdp: {token, framing}}  ->
  SIGNAL {candidate: {host, port}} (per host)  ->
                                          <-  SIGNAL {type: answer, sdp: {token}}
                                          <-  TCP connect + HELLO {token}
  HELLO {token}                               ->
  channel open                                   channel open
```
The token binds the TCP connection to this negotiation, so a stray
connection to the listener is dropped.
"""

import asyncio
import logging
import secrets
from typing import Optional, List, Set, Tuple, Any, Dict

from ..config import Config, FRAMING_MODES
from ..errors import ChannelError
from ..signaling.messages import description_signal, candidate_signal
from ..wire import MessageType, WireMessage, write_message
from .base import DirectChannel, Negotiator
from .tcp import TcpChannel

logger = logging.getLogger(__name__)

HANDSHAKE_TIMEOUT = 5.0


class TcpNegotiator(Negotiator):
    """
    Offer/answer negotiation of a TcpChannel with one peer.

    Args:
        signaler: Object with ``async send_signal(target, signal)``
        peer_id: Session identifier of the peer
        config: Node configuration
    """

    def __init__(self, signaler, peer_id: str, config: Optional[Config] = None):
        self.signaler = signaler
        self.peer_id = peer_id
        self.config = config or Config()

        self.token: Optional[str] = None
        self._framing = self.config.framing
        self._is_offerer = False
        self._answered = False

        self._server: Optional[asyncio.AbstractServer] = None
        self._channel: Optional[asyncio.Future] = None
        self._pending_candidates: List[Tuple[str, int]] = []
        self._tried: Set[Tuple[str, int]] = set()
        self._dial_tasks: List[asyncio.Task] = []

    @property
    def framing(self) -> str:
        return self._framing

    def _channel_future(self) -> asyncio.Future:
        if self._channel is None:
            self._channel = asyncio.get_running_loop().create_future()
        return self._channel

    # === Offerer ===

    async def offer(self):
        """Open a listener and send offer + candidates to the peer."""
        self._is_offerer = True
        self.token = secrets.token_hex(16)
        self._channel_future()

        try:
            self._server = await asyncio.start_server(
                self._handle_inbound,
                self.config.channel_host,
                0
            )
        except OSError as e:
            raise ChannelError(f"Cannot listen on {self.config.channel_host}: {e}") from e

        port = self._server.sockets[0].getsockname()[1]
        logger.info(f"Channel listener on {self.config.channel_host}:{port}")

        await self.signaler.send_signal(
            self.peer_id,
            description_signal('offer', {'token': self.token, 'framing': self._framing}),
        )
        for host in self.config.advertise_hosts:
            await self.signaler.send_signal(self.peer_id, candidate_signal(host, port))

    async def _handle_inbound(self, reader: asyncio.StreamReader,
                              writer: asyncio.StreamWriter):
        peer = writer.get_extra_info('peername')
        future = self._channel_future()
        if future.done():
            writer.close()
            return

        try:
            hello = await asyncio.wait_for(WireMessage.from_reader(reader), HANDSHAKE_TIMEOUT)
        except Exception as e:
            logger.debug(f"Handshake from {peer} failed: {e}")
            writer.close()
            return

        if (hello is None or hello.type != MessageType.HELLO
                or not secrets.compare_digest(str(hello.headers.get('token', '')).encode(), self.token.encode())):
            logger.warning(f"Rejected channel connection from {peer}: bad handshake")
            writer.close()
            return

        if future.done():
            writer.close()
            return

        try:
            await write_message(writer, WireMessage(type=MessageType.HELLO, headers={'token': self.token}))
        except (ConnectionError, OSError) as e:
            logger.debug(f"Handshake reply to {peer} failed: {e}")
            writer.close()
            return

        logger.info(f"Direct channel accepted from {peer}")
        future.set_result(TcpChannel(reader, writer, self.config.max_buffered_amount))
        self._close_listener()

    # === Answerer ===

    async def handle_description(self, desc_type: str, sdp: Dict[str, Any]):
        """Process an offer (answerer) or answer (offerer)."""
        if desc_type == 'answer':
            if not self._is_offerer:
                raise ChannelError("Received an answer without having sent an offer")
            if sdp.get('token') != self.token:
                raise ChannelError("Answer does not match our offer")
            self._answered = True
            logger.debug(f"Peer {self.peer_id} answered")
            return

        if self._is_offerer:
            raise ChannelError("Received an offer while offering")
        if self.token is not None:
            logger.debug("Ignoring repeated offer")
            return

        token = sdp.get('token')
        if not isinstance(token, str) or not token:
            raise ChannelError("Offer has no token")
        self.token = token
        framing = sdp.get('framing', self._framing)
        if framing not in FRAMING_MODES:
            raise ChannelError(f"Offer uses unknown framing {framing!r}")
        self._framing = framing
        self._channel_future()

        await self.signaler.send_signal(self.peer_id, description_signal('answer', {'token': token}))

        pending, self._pending_candidates = self._pending_candidates, []
        for host, port in pending:
            self._start_dial(host, port)

    async def handle_candidate(self, candidate: Dict[str, Any]):
        """Dial a candidate, or hold it until the offer arrives."""
        if self._is_offerer:
            logger.debug("Offerer ignoring candidate")
            return
        host, port = candidate['host'], candidate['port']
        if self.token is None:
            self._pending_candidates.append((host, port))
        else:
            self._start_dial(host, port)

    def _start_dial(self, host: str, port: int):
        if (host, port) in self._tried:
            return
        self._tried.add((host, port))
        self._dial_tasks.append(asyncio.create_task(self._dial(host, port)))

    async def _dial(self, host: str, port: int):
        future = self._channel_future()
        if future.done():
            return
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port),
                timeout=self.config.connect_timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug(f"Candidate {host}:{port} unreachable: {e}")
            return

        try:
            await write_message(writer, WireMessage(type=MessageType.HELLO, headers={'token': self.token}))
            reply = await asyncio.wait_for(WireMessage.from_reader(reader), HANDSHAKE_TIMEOUT)
        except Exception as e:
            logger.debug(f"Handshake with {host}:{port} failed: {e}")
            writer.close()
            return

        if reply is None or reply.type != MessageType.HELLO or reply.headers.get('token') != self.token:
            logger.warning(f"Candidate {host}:{port} answered with a bad handshake")
            writer.close()
            return

        if future.done():
            writer.close()
            return

        logger.info(f"Direct channel connected to {host}:{port}")
        future.set_result(TcpChannel(reader, writer, self.config.max_buffered_amount))

    # === Common ===

    async def wait_channel(self) -> DirectChannel:
        """
        Wait for the direct channel.

        Raises:
            ChannelError: no candidate completed the handshake in time
        """
        future = self._channel_future()
        try:
            return await asyncio.wait_for(asyncio.shield(future), self.config.connect_timeout)
        except asyncio.TimeoutError:
            raise ChannelError(
                f"No direct channel to {self.peer_id} within {self.config.connect_timeout}s"
            ) from None

    def _close_listener(self):
        if self._server is not None:
            self._server.close()
            self._server = None

    async def close(self):
        """Stop listening and abandon pending dials."""
        self._close_listener()
        for task in self._dial_tasks:
            if not task.done():
                task.cancel()
        self._dial_tasks.clear()
        if self._channel is not None and not self._channel.done():
            self._channel.cancel()
