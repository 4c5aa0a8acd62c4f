"""
Signaling Relay

The relay is a rendezvous point: each running instance registers its
session identifier, and signaling messages addressed to that identifier are
forwarded to it. The relay only ever sees public keys and connection-setup
metadata; file data travels over the direct channel.

Relay Protocol (framed with wire.WireMessage):
```
client -> relay   REGISTER   {"id": "K3Q9ZB"}
relay  -> client  REGISTERED {"id": "K3Q9ZB"}
client -> relay   SIGNAL     {"target": "X7P2MA", "signal": {...}}
relay  -> target  SIGNAL     {"from": "K3Q9ZB", "target": "X7P2MA", "signal": {...}}
relay  -> client  ERROR      {"reason": "...", "target": "X7P2MA"}
```
"""

import asyncio
import logging
from typing import Optional, Dict, List, Set, Callable, Awaitable, Any

from ..errors import RegistrationError, SignalingError
from ..wire import MessageType, WireMessage, write_message
from .messages import SignalingMessage

logger = logging.getLogger(__name__)


# Callback types
SignalHandler = Callable[[SignalingMessage], Awaitable[None]]
CloseHandler = Callable[[], Awaitable[None]]
FailureHandler = Callable[[Exception], None]


class RelayConnection:
    """One client connection as seen by the relay server."""

    def __init__(self, reader: asyncio.StreamReader,
                 writer: asyncio.StreamWriter):
        self.reader = reader
        self.writer = writer
        self.session_id: Optional[str] = None
        self._lock = asyncio.Lock()

    @property
    def remote_address(self):
        return self.writer.get_extra_info('peername')

    async def send(self, message: WireMessage):
        async with self._lock:
            await write_message(self.writer, message)

    async def send_error(self, reason: str, **headers: Any):
        await self.send(WireMessage(
            type=MessageType.ERROR,
            headers={'reason': reason, **headers},
        ))

    async def close(self):
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError):
            pass


class RelayServer:
    """
    TCP rendezvous server routing signaling messages by session identifier.
    """

    def __init__(self, host: str = '0.0.0.0', port: int = 8765):
        self.host = host
        self.port = port
        self.server: Optional[asyncio.AbstractServer] = None
        self._sessions: Dict[str, RelayConnection] = {}
        self._connections: Set[RelayConnection] = set()
        self._running = False

        # Statistics
        self.signals_forwarded = 0

    @property
    def registered_ids(self) -> List[str]:
        return list(self._sessions)

    async def start(self):
        """Start the relay server."""
        self.server = await asyncio.start_server(
            self._handle_connection,
            self.host,
            self.port
        )
        self._running = True

        addr = self.server.sockets[0].getsockname()
        self.port = addr[1]
        logger.info(f"Relay listening on {addr[0]}:{addr[1]}")

    async def stop(self):
        """Stop the relay server and drop every client."""
        self._running = False
        if self.server:
            self.server.close()
            for conn in list(self._connections):
                await conn.close()
            await self.server.wait_closed()
            logger.info(f"Relay stopped. Forwarded {self.signals_forwarded} signals")

    async def serve_forever(self):
        if self.server is None:
            await self.start()
        async with self.server:
            await self.server.serve_forever()

    async def _handle_connection(self, reader: asyncio.StreamReader,
                                 writer: asyncio.StreamWriter):
        """Handle one client until it disconnects."""
        conn = RelayConnection(reader, writer)
        self._connections.add(conn)
        peer = conn.remote_address
        logger.debug(f"Relay connection from {peer}")

        try:
            while self._running:
                message = await WireMessage.from_reader(reader)
                if message is None:
                    break

                if message.type == MessageType.REGISTER:
                    await self._handle_register(conn, message)
                elif message.type == MessageType.SIGNAL:
                    await self._handle_signal(conn, message)
                elif message.type == MessageType.PING:
                    await conn.send(WireMessage(type=MessageType.PONG))
                else:
                    logger.warning(f"Unexpected {message.type.value} from {peer}")
                    await conn.send_error(f"unexpected message {message.type.value}")

        except (ConnectionError, SignalingError) as e:
            logger.debug(f"Relay connection {peer} dropped: {e}")
        except Exception as e:
            logger.error(f"Error handling relay connection from {peer}: {e}")
        finally:
            if conn.session_id and self._sessions.get(conn.session_id) is conn:
                del self._sessions[conn.session_id]
                logger.info(f"Unregistered {conn.session_id}")
            self._connections.discard(conn)
            await conn.close()

    async def _handle_register(self, conn: RelayConnection, message: WireMessage):
        session_id = message.headers.get('id')
        if not isinstance(session_id, str) or not session_id:
            await conn.send_error('invalid id')
            return

        existing = self._sessions.get(session_id)
        if existing is not None and existing is not conn:
            await conn.send_error('id already registered', id=session_id)
            return

        if conn.session_id and conn.session_id != session_id:
            self._sessions.pop(conn.session_id, None)

        conn.session_id = session_id
        self._sessions[session_id] = conn
        await conn.send(WireMessage(type=MessageType.REGISTERED, headers={'id': session_id}))
        logger.info(f"Registered {session_id} from {conn.remote_address}")

    async def _handle_signal(self, conn: RelayConnection, message: WireMessage):
        if conn.session_id is None:
            await conn.send_error('not registered')
            return

        target = message.headers.get('target')
        target_conn = self._sessions.get(target) if isinstance(target, str) else None
        if target_conn is None:
            logger.debug(f"Signal from {conn.session_id} to unknown target {target}")
            await conn.send_error('unknown target', target=target)
            return

        # Sender identity comes from the registration, never from the payload
        forwarded = WireMessage(
            type=MessageType.SIGNAL,
            headers={
                'from': conn.session_id,
                'target': target,
                'signal': message.headers.get('signal'),
            },
        )
        try:
            await target_conn.send(forwarded)
            self.signals_forwarded += 1
        except (ConnectionError, OSError) as e:
            logger.warning(f"Could not forward signal to {target}: {e}")
            await conn.send_error('target unreachable', target=target)

    def get_stats(self) -> dict:
        return {
            'registered': len(self._sessions),
            'signals_forwarded': self.signals_forwarded,
            'port': self.port,
        }


class RelayClient:
    """
    Client side of the relay: registration and signal exchange.

    Incoming signals are dispatched one at a time, in arrival order, to the
    handlers registered with on_signal().
    """

    def __init__(self, session_id: str, host: str = '127.0.0.1',
                 port: int = 8765, register_timeout: float = 5.0):
        self.session_id = session_id
        self.host = host
        self.port = port
        self.register_timeout = register_timeout

        self.registered = False
        self.reader: Optional[asyncio.StreamReader] = None
        self.writer: Optional[asyncio.StreamWriter] = None

        self._signal_handlers: List[SignalHandler] = []
        self._close_handlers: List[CloseHandler] = []
        self._registration_failed_handlers: List[FailureHandler] = []
        self._registration: Optional[asyncio.Future] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def connected(self) -> bool:
        return self.writer is not None and not self._closed

    # === Hooks ===

    def on_signal(self, handler: SignalHandler):
        self._signal_handlers.append(handler)
        return handler

    def on_close(self, handler: CloseHandler):
        self._close_handlers.append(handler)
        return handler

    def on_registration_failed(self, handler: FailureHandler):
        self._registration_failed_handlers.append(handler)
        return handler

    # === Lifecycle ===

    async def connect(self, timeout: float = 10.0):
        """
        Open the relay connection.

        Raises:
            SignalingError: the relay is unreachable
        """
        try:
            self.reader, self.writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise SignalingError(f"Cannot reach relay at {self.host}:{self.port}: {e}") from e

        self._closed = False
        self._reader_task = asyncio.create_task(self._read_loop())
        logger.debug(f"Connected to relay {self.host}:{self.port}")

    async def register(self):
        """
        Announce our session identifier and wait for acknowledgment.

        Raises:
            RegistrationError: no acknowledgment (status stays unregistered)
        """
        if not self.connected:
            error = RegistrationError("Not connected to relay")
            self._registration_failed(error)
            raise error

        loop = asyncio.get_running_loop()
        self._registration = loop.create_future()
        await self._send(WireMessage(type=MessageType.REGISTER, headers={'id': self.session_id}))

        try:
            await asyncio.wait_for(asyncio.shield(self._registration), self.register_timeout)
        except asyncio.TimeoutError:
            error = RegistrationError(
                f"Relay did not acknowledge {self.session_id} within {self.register_timeout}s"
            )
            self._registration_failed(error)
            raise error from None
        except RegistrationError as error:
            self._registration_failed(error)
            raise
        finally:
            self._registration = None

        self.registered = True
        logger.info(f"Registered with relay as {self.session_id}")

    async def send_signal(self, target: str, signal: Dict[str, Any]):
        """Send a signal to another session through the relay."""
        if not self.connected:
            raise SignalingError("Relay connection is closed")
        await self._send(WireMessage(
            type=MessageType.SIGNAL,
            headers={'target': target, 'signal': signal},
        ))

    async def close(self):
        """Close the relay connection."""
        if self._closed:
            return
        self._closed = True
        if self.writer is not None:
            self.writer.close()
            try:
                await self.writer.wait_closed()
            except (ConnectionError, OSError):
                pass
        if self._reader_task and self._reader_task is not asyncio.current_task():
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass

    # === Internals ===

    async def _send(self, message: WireMessage):
        async with self._lock:
            try:
                await write_message(self.writer, message)
            except (ConnectionError, OSError) as e:
                raise SignalingError(f"Relay write failed: {e}") from e

    def _registration_failed(self, error: Exception):
        self.registered = False
        logger.error(f"Registration failed: {error}")
        for handler in self._registration_failed_handlers:
            handler(error)

    async def _read_loop(self):
        """Read relay messages until the connection ends."""
        try:
            while True:
                message = await WireMessage.from_reader(self.reader)
                if message is None:
                    break
                await self._dispatch(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Relay connection error: {e}")
        finally:
            was_closed = self._closed
            self._closed = True
            self.registered = False
            if self._registration is not None and not self._registration.done():
                self._registration.set_exception(RegistrationError("Relay connection closed"))
            if not was_closed:
                logger.warning("Relay connection closed")
                for handler in self._close_handlers:
                    try:
                        await handler()
                    except Exception as e:
                        logger.error(f"Relay close handler failed: {e}")

    async def _dispatch(self, message: WireMessage):
        if message.type == MessageType.REGISTERED:
            if self._registration is not None and not self._registration.done():
                self._registration.set_result(message.headers.get('id'))
        elif message.type == MessageType.ERROR:
            reason = message.headers.get('reason', 'unknown error')
            if self._registration is not None and not self._registration.done():
                self._registration.set_exception(RegistrationError(f"Relay refused registration: {reason}"))
            else:
                logger.warning(f"Relay error: {reason} (target={message.headers.get('target')})")
        elif message.type == MessageType.SIGNAL:
            try:
                signal = SignalingMessage.from_headers(message.headers)
            except SignalingError as e:
                logger.warning(f"Dropping malformed relay message: {e}")
                return
            for handler in self._signal_handlers:
                try:
                    await handler(signal)
                except Exception as e:
                    logger.error(f"Signal handler failed: {e}")
        elif message.type == MessageType.PING:
            await self._send(WireMessage(type=MessageType.PONG))
        else:
            logger.debug(f"Ignoring {message.type.value} from relay")
