"""
Shared helpers: an in-process signaling bus and a memory-channel negotiator,
so sessions can be driven end to end without sockets.
"""

import asyncio
import os
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from secureshare.channel import MemoryChannel, Negotiator
from secureshare.config import Config
from secureshare.signaling import SignalingMessage, description_signal
from secureshare.transfer import ReceiverSession, SenderSession, TransferState

SENDER_ID = "SEND01"
RECEIVER_ID = "RECV01"


class SignalBus:
    """Routes signals between sessions in order, one delivery task per target."""

    def __init__(self):
        self.sessions: Dict[str, object] = {}
        self.log: List[SignalingMessage] = []
        self._queues: Dict[str, asyncio.Queue] = {}
        self._tasks: List[asyncio.Task] = []

    def attach(self, session_id: str, session):
        self.sessions[session_id] = session
        queue: asyncio.Queue = asyncio.Queue()
        self._queues[session_id] = queue
        self._tasks.append(asyncio.create_task(self._deliver(session, queue)))

    def signaler(self, session_id: str) -> "BusSignaler":
        return BusSignaler(self, session_id)

    async def route(self, message: SignalingMessage):
        self.log.append(message)
        queue = self._queues.get(message.target)
        if queue is not None:
            await queue.put(message)

    async def _deliver(self, session, queue: asyncio.Queue):
        while True:
            message = await queue.get()
            await session.handle_signal(message)

    async def close(self):
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)


class BusSignaler:
    def __init__(self, bus: SignalBus, session_id: str):
        self.bus = bus
        self.session_id = session_id

    async def send_signal(self, target: str, signal: dict):
        await self.bus.route(SignalingMessage(sender=self.session_id, target=target, signal=signal))


class RecordingSignaler:
    """Collects outgoing signals instead of sending them."""

    def __init__(self):
        self.sent: List[tuple] = []

    async def send_signal(self, target: str, signal: dict):
        self.sent.append((target, signal))


class RecordingChannel(MemoryChannel):
    """MemoryChannel that records outgoing payloads and can rewrite them."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.sent: List[object] = []
        self.intercept: Optional[Callable] = None

    async def _transmit(self, payload):
        if self.intercept is not None:
            payload = await self.intercept(self, payload)
            if payload is None:
                return
        self.sent.append(payload)
        await super()._transmit(payload)


class MemoryLink:
    """The two ends of one in-memory channel, handed out after the answer."""

    def __init__(self, framing: str = "combined", max_queued: int = 64):
        self.framing = framing
        self.offerer_channel, self.answerer_channel = RecordingChannel.pair(max_queued=max_queued)
        self.answered = asyncio.Event()


class MemoryNegotiator(Negotiator):
    def __init__(self, link: MemoryLink, signaler, peer_id: str, offerer: bool):
        self.link = link
        self.signaler = signaler
        self.peer_id = peer_id
        self.offerer = offerer
        self.descriptions: List[tuple] = []
        self.closed = False

    @property
    def framing(self) -> str:
        return self.link.framing

    async def offer(self):
        await self.signaler.send_signal(
            self.peer_id, description_signal("offer", {"token": "t", "framing": self.link.framing})
        )

    async def handle_description(self, desc_type: str, sdp: dict):
        self.descriptions.append((desc_type, sdp))
        if desc_type == "offer":
            await self.signaler.send_signal(self.peer_id, description_signal("answer", {"token": "t"}))
            self.link.answered.set()

    async def handle_candidate(self, candidate: dict):
        pass

    async def wait_channel(self):
        await self.link.answered.wait()
        if self.offerer:
            return self.link.offerer_channel
        return self.link.answerer_channel

    async def close(self):
        self.closed = True


class PendingNegotiator(Negotiator):
    """Records calls; the channel never arrives."""

    def __init__(self):
        self.descriptions: List[tuple] = []
        self.candidates: List[dict] = []
        self._never = None

    @property
    def framing(self) -> str:
        return "combined"

    async def offer(self):
        pass

    async def handle_description(self, desc_type: str, sdp: dict):
        self.descriptions.append((desc_type, sdp))

    async def handle_candidate(self, candidate: dict):
        self.candidates.append(candidate)

    async def wait_channel(self):
        self._never = asyncio.get_running_loop().create_future()
        return await self._never


class SessionPair:
    """A connected sender/receiver pair over the bus and a memory link."""

    def __init__(self, output_dir: Path, framing: str = "combined", max_queued: int = 64):
        self.bus = SignalBus()
        self.link = MemoryLink(framing=framing, max_queued=max_queued)
        config = Config(framing=framing, output_dir=output_dir)

        self.sender = SenderSession(
            SENDER_ID,
            self.bus.signaler(SENDER_ID),
            lambda peer: MemoryNegotiator(self.link, self.bus.signaler(SENDER_ID), peer, True),
            config,
        )
        self.receiver = ReceiverSession(
            RECEIVER_ID,
            self.bus.signaler(RECEIVER_ID),
            lambda peer: MemoryNegotiator(self.link, self.bus.signaler(RECEIVER_ID), peer, False),
            config,
        )
        self.bus.attach(SENDER_ID, self.sender)
        self.bus.attach(RECEIVER_ID, self.receiver)

    async def connect(self):
        await self.receiver.connect(SENDER_ID)
        await self.sender.connect(RECEIVER_ID)
        await wait_for_state(self.sender, TransferState.READY)
        await wait_for_state(self.receiver, TransferState.READY)

    async def close(self):
        await self.sender.close()
        await self.receiver.close()
        await self.bus.close()


async def wait_for_state(session, state: TransferState, timeout: float = 5.0):
    """Poll until the session reaches ``state`` (or fail the test)."""
    async def poll():
        while session.state != state:
            if session.state.is_terminal:
                raise AssertionError(
                    f"{session.session_id} ended in {session.state.value}: {session.status}"
                )
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


def output_files(directory: Path) -> List[Path]:
    """Every file in ``directory``, including hidden part-files."""
    if not directory.exists():
        return []
    return sorted(p for p in directory.iterdir() if p.is_file())


@pytest.fixture
def output_dir(tmp_path) -> Path:
    return tmp_path / "received"


@pytest.fixture
def make_file(tmp_path) -> Callable[[str, int], Path]:
    def _make(name: str, size: int) -> Path:
        path = tmp_path / name
        path.write_bytes(os.urandom(size))
        return path
    return _make
