"""
SecureShare Node - Main Controller

This is the main entry point that orchestrates all components:
- Session identity
- Relay client for registration and signaling
- Direct channel negotiation
- The sender or receiver transfer session
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Union

from .config import Config
from .identity import generate_session_id
from .signaling import RelayClient
from .channel import TcpNegotiator
from .transfer import Role, SenderSession, ReceiverSession, TransferSession, TransferManifest, TransferState

logger = logging.getLogger(__name__)


class SecureShareNode:
    """
    One running instance in one role.

    - start(): connect to the relay and register our session id
    - connect(peer_id): begin the handshake with the peer
    - send_file(path): sender only, once the session is Ready
    - wait_finished(): resolves on Completed or Failed
    """

    def __init__(self, config: Optional[Config] = None,
                 role: Union[Role, str] = Role.RECEIVER,
                 session_id: Optional[str] = None,
                 output_dir: Optional[Path] = None):
        """
        Args:
            config: Node configuration (uses defaults if not provided)
            role: 'sender' or 'receiver'
            session_id: Fixed identifier (generated if not provided)
            output_dir: Receiver output directory (overrides config)
        """
        self.config = config or Config()
        self.role = Role(role)
        self.session_id = session_id or generate_session_id()

        self.relay = RelayClient(
            session_id=self.session_id,
            host=self.config.relay_host,
            port=self.config.relay_port,
            register_timeout=self.config.register_timeout,
        )

        if self.role == Role.SENDER:
            self.session: TransferSession = SenderSession(
                self.session_id, self.relay, self._make_negotiator, self.config
            )
        else:
            self.session = ReceiverSession(
                self.session_id, self.relay, self._make_negotiator, self.config,
                output_dir=output_dir,
            )

        # Wire up relay events to the session
        self.relay.on_signal(self.session.handle_signal)
        self.relay.on_close(self.session.handle_relay_closed)

        self._running = False

    def _make_negotiator(self, peer_id: str) -> TcpNegotiator:
        return TcpNegotiator(self.relay, peer_id, self.config)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def registered(self) -> bool:
        return self.relay.registered

    @property
    def state(self) -> TransferState:
        return self.session.state

    async def start(self):
        """
        Connect to the relay and register.

        Raises:
            SignalingError: relay unreachable
            RegistrationError: registration not acknowledged
        """
        if self._running:
            return

        logger.info(f"Starting {self.role.value} node {self.session_id}...")
        await self.relay.connect()
        try:
            await self.relay.register()
        except Exception:
            await self.relay.close()
            raise
        self._running = True
        logger.info(f"Node {self.session_id} registered with relay "
                    f"{self.config.relay_host}:{self.config.relay_port}")

    async def stop(self):
        """Close the session, the channel and the relay connection."""
        if not self._running:
            return
        logger.info(f"Stopping node {self.session_id}...")
        self._running = False
        await self.session.close()
        await self.relay.close()
        logger.info("Node stopped")

    async def connect(self, peer_id: str):
        """Begin the handshake with a peer."""
        await self.session.connect(peer_id)

    async def send_file(self, file_path: Path) -> TransferManifest:
        """Send a file (sender role only)."""
        if not isinstance(self.session, SenderSession):
            raise RuntimeError("Only a sender node can send files")
        return await self.session.send_file(file_path)

    async def wait_ready(self, timeout: Optional[float] = None) -> TransferState:
        """Wait until the session is Ready (or finished)."""
        ready = asyncio.Event()

        def check(state, session):
            if state == TransferState.READY or state.is_terminal:
                ready.set()

        if self.session.state == TransferState.READY or self.session.state.is_terminal:
            return self.session.state
        self.session.on_state_change(check)
        try:
            await asyncio.wait_for(ready.wait(), timeout)
        finally:
            self.session.remove_state_listener(check)
        return self.session.state

    async def wait_finished(self) -> TransferState:
        return await self.session.wait_finished()

    def get_status(self) -> dict:
        """Node and session status as plain data."""
        return {
            'running': self._running,
            'registered': self.relay.registered,
            **self.session.snapshot(),
        }
