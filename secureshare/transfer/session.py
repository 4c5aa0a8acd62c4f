"""
Transfer Session State Machine

Design Decision: Control Flow
=============================

Three sources drive a session: the relay (signals), the direct channel
(open/message/close/error) and file reads. Each source calls into the
session's async handlers; the session owns all of its mutable state
(key pair, shared key, channel, assembler) and no state is shared between
sessions, so no locking is needed.

States:
```
Idle -> KeyExchangePending -> ChannelConnecting -> Ready -> Transferring -> Completed
 |              |                     |             |          |
 +--------------+---------------------+-------------+----------+--> Failed (absorbing)
```

Sender:   connect() sends our public key (-> KeyExchangePending) and offers
          a channel; the receiver's key arrives (-> ChannelConnecting); the
          channel opens (-> Ready); send_file() (-> Transferring) ends with
          the manifest (-> Completed).
Receiver: connect() binds the peer; the sender's key arrives, we derive and
          reply with ours (-> KeyExchangePending); the offer is answered
          (-> ChannelConnecting); the channel opens (-> Ready); the first
          chunk arrives (-> Transferring); the manifest finalizes the file
          (-> Completed).

The shared key is always derived before the channel offer is answered
(derive-then-connect). Signals from anyone but the bound peer are ignored.
"""

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Optional, Callable, List, Dict, Any, Union

from ..config import Config
from ..crypto.keys import (
    KeyPair, SharedKey, generate_key_pair, export_public_key,
    import_public_key, derive_shared_key,
)
from ..channel.base import DirectChannel, Negotiator, Payload
from ..errors import SecureShareError, ChannelError, ProtocolSequenceError, SignalingError
from ..identity import normalize_session_id
from ..signaling.messages import SignalingMessage, SignalKind, public_key_signal
from .codec import ChunkEncoder, ChunkAssembler, chunk_count
from .frames import FrameDemultiplexer, TransferManifest, encode_frame
from .progress import TransferProgress, ChunkRecord

logger = logging.getLogger(__name__)


class TransferState(Enum):
    IDLE = "Idle"
    KEY_EXCHANGE_PENDING = "KeyExchangePending"
    CHANNEL_CONNECTING = "ChannelConnecting"
    READY = "Ready"
    TRANSFERRING = "Transferring"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TransferState.COMPLETED, TransferState.FAILED)


class Role(Enum):
    SENDER = "sender"
    RECEIVER = "receiver"


# Callback types
StateListener = Callable[[TransferState, 'TransferSession'], None]
ProgressListener = Callable[['TransferSession'], None]
NegotiatorFactory = Callable[[str], Negotiator]


class TransferSession:
    """
    Common machinery for both roles.

    Args:
        session_id: Our identifier at the relay
        signaler: Object with ``async send_signal(target, signal)``
        negotiator_factory: Builds a Negotiator for a peer identifier
        config: Node configuration
    """

    role: Role

    def __init__(self, session_id: str, signaler,
                 negotiator_factory: NegotiatorFactory,
                 config: Optional[Config] = None):
        self.session_id = session_id
        self.signaler = signaler
        self.negotiator_factory = negotiator_factory
        self.config = config or Config()

        self.state = TransferState.IDLE
        self.status = 'Idle'
        self.error: Optional[Exception] = None

        self.peer_id: Optional[str] = None
        self.key_pair: Optional[KeyPair] = None
        self.shared_key: Optional[SharedKey] = None
        self.negotiator: Optional[Negotiator] = None
        self.channel: Optional[DirectChannel] = None

        self.progress = TransferProgress()
        self.last_chunk: Optional[ChunkRecord] = None
        self.file_name: Optional[str] = None
        self.result_path: Optional[Path] = None

        self._channel_open = False
        self._channel_task: Optional[asyncio.Task] = None
        self._demux: Optional[FrameDemultiplexer] = None
        self._finished = asyncio.Event()
        self._state_listeners: List[StateListener] = []
        self._progress_listeners: List[ProgressListener] = []

    # === Observers ===

    def on_state_change(self, listener: StateListener):
        self._state_listeners.append(listener)
        return listener

    def remove_state_listener(self, listener: StateListener):
        if listener in self._state_listeners:
            self._state_listeners.remove(listener)

    def on_progress(self, listener: ProgressListener):
        self._progress_listeners.append(listener)
        return listener

    @property
    def error_kind(self) -> Optional[str]:
        if self.error is None:
            return None
        return type(self.error).__name__

    def _set_state(self, state: TransferState, status: Optional[str] = None):
        previous = self.state
        self.state = state
        if status is not None:
            self.status = status
        if previous != state:
            logger.info(f"[{self.session_id}] {previous.value} -> {state.value}: {self.status}")
        for listener in self._state_listeners:
            listener(state, self)
        if state.is_terminal:
            self._finished.set()

    def _set_status(self, status: str):
        self.status = status
        for listener in self._progress_listeners:
            listener(self)

    async def wait_finished(self) -> TransferState:
        """Wait until the session is Completed or Failed."""
        await self._finished.wait()
        return self.state

    def snapshot(self) -> Dict[str, Any]:
        """Everything a presentation layer needs, as plain data."""
        return {
            'role': self.role.value,
            'session_id': self.session_id,
            'peer_id': self.peer_id,
            'state': self.state.value,
            'status': self.status,
            'error_kind': self.error_kind,
            'progress': self.progress.to_dict(),
            'last_chunk': self.last_chunk.to_dict() if self.last_chunk else None,
            'file_name': self.file_name,
            'result_path': str(self.result_path) if self.result_path else None,
            'framing': self._demux.framing if self._demux else None,
        }

    # === Failure and teardown ===

    async def fail(self, error: Union[Exception, str]):
        """Move to FAILED (absorbing) and release the channel."""
        if self.state.is_terminal:
            return
        if isinstance(error, str):
            error = ProtocolSequenceError(error)
        self.error = error
        logger.error(f"[{self.session_id}] Transfer failed ({type(error).__name__}): {error}")
        self._set_state(TransferState.FAILED, f"Failed: {error}")
        await self._teardown()

    async def close(self):
        """Stop the session; an unfinished session counts as failed."""
        if not self.state.is_terminal:
            await self.fail(ChannelError("Session closed"))
        else:
            await self._teardown()

    async def _teardown(self):
        if self._channel_task and self._channel_task is not asyncio.current_task():
            self._channel_task.cancel()
        if self.negotiator is not None:
            await self.negotiator.close()
        if self.channel is not None:
            await self.channel.close()
        await self._discard_partial()

    async def _discard_partial(self):
        pass

    async def handle_relay_closed(self):
        """The relay connection was lost."""
        if not self.state.is_terminal:
            await self.fail(SignalingError("Relay connection closed"))

    # === Signaling ===

    async def handle_signal(self, message: SignalingMessage):
        """Entry point for every signal delivered by the relay."""
        if self.peer_id is None or message.sender != self.peer_id:
            logger.debug(f"[{self.session_id}] Ignoring signal from {message.sender} "
                         f"(bound peer: {self.peer_id})")
            return
        if self.state.is_terminal:
            logger.debug(f"[{self.session_id}] Ignoring signal in state {self.state.value}")
            return

        try:
            kind = message.kind
            if kind == SignalKind.PUBLIC_KEY:
                await self._on_peer_public_key(message.public_key)
            elif kind == SignalKind.SESSION_DESCRIPTION:
                await self._on_description(message.description_type, message.sdp)
            else:
                if self.negotiator is None:
                    raise ProtocolSequenceError("Candidate received before negotiation started")
                await self.negotiator.handle_candidate(message.candidate)
        except SecureShareError as e:
            await self.fail(e)
        except Exception as e:
            logger.exception(f"[{self.session_id}] Unexpected error handling signal")
            await self.fail(e)

    async def _derive(self, public_key_text: str):
        peer_key = import_public_key(public_key_text)
        self.shared_key = await derive_shared_key(self.key_pair.private_key, peer_key)
        logger.info(f"[{self.session_id}] Shared key derived with {self.peer_id}")

    async def _on_peer_public_key(self, public_key_text: str):
        raise NotImplementedError

    async def _on_description(self, desc_type: str, sdp: Dict[str, Any]):
        raise NotImplementedError

    # === Channel ===

    def _start_channel_wait(self):
        self._channel_task = asyncio.create_task(self._await_channel())

    async def _await_channel(self):
        try:
            channel = await self.negotiator.wait_channel()
        except asyncio.CancelledError:
            return
        except SecureShareError as e:
            await self.fail(e)
            return

        if self.state.is_terminal:
            await channel.close()
            return

        self.channel = channel
        self._demux = FrameDemultiplexer(self.negotiator.framing)
        channel.on_open = self._on_channel_open
        channel.on_message = self._on_channel_message
        channel.on_close = self._on_channel_close
        channel.on_error = self._on_channel_error
        try:
            await channel.start()
        except SecureShareError as e:
            await self.fail(e)

    async def _on_channel_open(self):
        self._channel_open = True
        if self.state == TransferState.CHANNEL_CONNECTING:
            self._set_state(TransferState.READY, self._ready_status())

    def _ready_status(self) -> str:
        return 'Connected'

    async def _on_channel_close(self):
        if not self.state.is_terminal:
            await self.fail(ChannelError("Connection closed"))

    async def _on_channel_error(self, error: Exception):
        if not self.state.is_terminal:
            if not isinstance(error, SecureShareError):
                error = ChannelError(str(error))
            await self.fail(error)

    async def _on_channel_message(self, payload: Payload):
        raise NotImplementedError


class SenderSession(TransferSession):
    """Sending side: offers the channel and streams the file."""

    role = Role.SENDER

    def _ready_status(self) -> str:
        return 'Connected. Ready to send files.'

    async def connect(self, peer_id: str):
        """
        Start the handshake with a receiver.

        Generates our key pair, sends the public key, and offers a channel.
        """
        if self.state != TransferState.IDLE or self.peer_id is not None:
            raise ProtocolSequenceError(f"Cannot connect in state {self.state.value}")

        try:
            self.key_pair = await generate_key_pair()
            self.peer_id = normalize_session_id(peer_id)
            self._set_state(TransferState.KEY_EXCHANGE_PENDING, 'Waiting for receiver key...')
            await self.signaler.send_signal(
                self.peer_id, public_key_signal(export_public_key(self.key_pair))
            )

            self.negotiator = self.negotiator_factory(self.peer_id)
            await self.negotiator.offer()
            self._start_channel_wait()
        except SecureShareError as e:
            await self.fail(e)
            raise

    async def _on_peer_public_key(self, public_key_text: str):
        if self.state != TransferState.KEY_EXCHANGE_PENDING or self.shared_key is not None:
            raise ProtocolSequenceError(f"Unexpected public key in state {self.state.value}")

        await self._derive(public_key_text)
        self._set_state(TransferState.CHANNEL_CONNECTING, 'Key exchanged. Connecting...')
        if self._channel_open:
            self._set_state(TransferState.READY, self._ready_status())

    async def _on_description(self, desc_type: str, sdp: Dict[str, Any]):
        if self.negotiator is None:
            raise ProtocolSequenceError("Session description before connect()")
        await self.negotiator.handle_description(desc_type, sdp)

    async def _on_channel_open(self):
        self._channel_open = True
        if self.state == TransferState.CHANNEL_CONNECTING:
            self._set_state(TransferState.READY, self._ready_status())
        else:
            logger.debug(f"[{self.session_id}] Channel open before receiver key; waiting")

    async def _on_channel_message(self, payload: Payload):
        await self.fail(ProtocolSequenceError("Receiver sent data on the transfer channel"))

    async def send_file(self, file_path: Path) -> TransferManifest:
        """
        Encrypt and send a file, chunk by chunk, then the manifest.

        Returns:
            The manifest that was sent
        """
        if self.state != TransferState.READY:
            raise ProtocolSequenceError(f"Cannot send in state {self.state.value}")

        file_path = Path(file_path)
        if not file_path.is_file():
            raise FileNotFoundError(f"File not found: {file_path}")

        file_size = file_path.stat().st_size
        total_chunks = chunk_count(file_size)
        framing = self._demux.framing if self._demux else self.config.framing

        self.file_name = file_path.name
        self.progress = TransferProgress(total_bytes=file_size)
        self._set_state(TransferState.TRANSFERRING, 'Sending: 0.0%')
        logger.info(f"[{self.session_id}] Sending {file_path.name} "
                    f"({file_size:,} bytes, {total_chunks} chunks, {framing} framing)")

        frames = ChunkEncoder(self.shared_key).frames(file_path)
        try:
            chunk_number = 0
            while True:
                # Nothing is read or encrypted until the channel has room
                await self.channel.wait_writable()
                try:
                    plaintext_length, frame = await frames.__anext__()
                except StopAsyncIteration:
                    break

                for message in encode_frame(frame, framing):
                    await self.channel.send(message)

                chunk_number += 1
                self.last_chunk = ChunkRecord(
                    chunk_number=chunk_number,
                    total_chunks=total_chunks,
                    original_size=plaintext_length,
                    encrypted_size=len(frame.ciphertext),
                    nonce_length=len(frame.nonce),
                )
                self.progress.update(plaintext_length)
                logger.debug(f"[{self.session_id}] Sent chunk {chunk_number}/{total_chunks}")
                self._set_status(f"Sending: {self.progress.percent:.1f}%")

            manifest = TransferManifest(file_name=file_path.name, total_size=file_size)
            await self.channel.send(manifest.to_json())
        except SecureShareError as e:
            await self.fail(e)
            raise
        except Exception as e:
            logger.exception(f"[{self.session_id}] Unexpected error while sending")
            await self.fail(e)
            raise
        finally:
            await frames.aclose()

        self.progress.complete()
        self._set_state(TransferState.COMPLETED, 'File sent successfully')
        return manifest


class ReceiverSession(TransferSession):
    """Receiving side: answers the channel and reassembles the file."""

    role = Role.RECEIVER

    def __init__(self, session_id: str, signaler,
                 negotiator_factory: NegotiatorFactory,
                 config: Optional[Config] = None,
                 output_dir: Optional[Path] = None):
        super().__init__(session_id, signaler, negotiator_factory, config)
        self.output_dir = Path(output_dir) if output_dir else self.config.output_dir
        self._assembler: Optional[ChunkAssembler] = None
        self._pending_offer: Optional[Dict[str, Any]] = None

    def _ready_status(self) -> str:
        return 'Connection secure. Ready to receive files.'

    async def connect(self, peer_id: str):
        """Generate our key pair and bind the sender we expect to hear from."""
        if self.state != TransferState.IDLE or self.peer_id is not None:
            raise ProtocolSequenceError(f"Cannot connect in state {self.state.value}")

        self.key_pair = await generate_key_pair()
        self.peer_id = normalize_session_id(peer_id)
        self.negotiator = self.negotiator_factory(self.peer_id)
        self._set_state(TransferState.IDLE, 'Establishing secure connection...')

    async def _on_peer_public_key(self, public_key_text: str):
        if self.state != TransferState.IDLE or self.shared_key is not None:
            raise ProtocolSequenceError(f"Unexpected public key in state {self.state.value}")

        await self._derive(public_key_text)
        self._set_state(TransferState.KEY_EXCHANGE_PENDING, 'Key exchanged. Waiting for offer...')
        await self.signaler.send_signal(
            self.peer_id, public_key_signal(export_public_key(self.key_pair))
        )

        if self._pending_offer is not None:
            sdp, self._pending_offer = self._pending_offer, None
            await self._answer(sdp)

    async def _on_description(self, desc_type: str, sdp: Dict[str, Any]):
        if desc_type != 'offer':
            raise ProtocolSequenceError(f"Receiver does not expect an {desc_type}")
        if self.shared_key is None:
            # Derive first; the offer waits for the sender's key
            self._pending_offer = sdp
            return
        if self.state != TransferState.KEY_EXCHANGE_PENDING or self._channel_task is not None:
            logger.debug(f"[{self.session_id}] Ignoring repeated offer in state {self.state.value}")
            return
        await self._answer(sdp)

    async def _answer(self, sdp: Dict[str, Any]):
        await self.negotiator.handle_description('offer', sdp)
        self._set_state(TransferState.CHANNEL_CONNECTING, 'Connecting...')
        self._start_channel_wait()

    async def _on_channel_message(self, payload: Payload):
        if self.state.is_terminal:
            return
        try:
            await self._process_payload(payload)
        except SecureShareError as e:
            await self.fail(e)
        except Exception as e:
            logger.exception(f"[{self.session_id}] Unexpected error processing chunk")
            await self.fail(e)

    async def _process_payload(self, payload: Payload):
        if self.shared_key is None:
            raise ProtocolSequenceError("Chunk received before key derivation")
        if self.state not in (TransferState.READY, TransferState.TRANSFERRING):
            raise ProtocolSequenceError(f"Unexpected channel message in state {self.state.value}")

        item = self._demux.feed(payload)
        if item is None:
            return  # nonce held for the next ciphertext

        if self.state == TransferState.READY:
            self._assembler = ChunkAssembler(self.shared_key, self.output_dir)
            self.progress = TransferProgress()
            self._set_state(TransferState.TRANSFERRING, 'Receiving...')

        if isinstance(item, TransferManifest):
            await self._finish(item)
            return

        plaintext_length = await self._assembler.add(item)
        self.progress.update(plaintext_length)
        self.last_chunk = ChunkRecord(
            chunk_number=self._assembler.chunks_received,
            original_size=plaintext_length,
            encrypted_size=len(item.ciphertext),
            nonce_length=len(item.nonce),
        )
        logger.debug(f"[{self.session_id}] Received chunk {self._assembler.chunks_received}")
        self._set_status(f"Receiving: Chunk {self._assembler.chunks_received}")

    async def _finish(self, manifest: TransferManifest):
        self.file_name = manifest.file_name
        self.progress.total_bytes = manifest.total_size
        self._set_status('Decrypting file...')

        self.result_path = await self._assembler.finalize(manifest)
        self._assembler = None
        self.progress.complete()
        self._set_state(TransferState.COMPLETED, 'File saved successfully.')

    async def _discard_partial(self):
        if self._assembler is not None:
            await self._assembler.discard()
            self._assembler = None
