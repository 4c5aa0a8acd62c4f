import asyncio

import pytest

from secureshare.errors import RegistrationError, SignalingError
from secureshare.signaling import RelayClient, RelayServer, public_key_signal
from secureshare.wire import MessageType, WireMessage, write_message


async def start_relay() -> RelayServer:
    relay = RelayServer(host="127.0.0.1", port=0)
    await relay.start()
    return relay


async def registered_client(relay: RelayServer, session_id: str) -> RelayClient:
    client = RelayClient(session_id, host="127.0.0.1", port=relay.port, register_timeout=2.0)
    await client.connect()
    await client.register()
    return client


@pytest.mark.asyncio
async def test_register_and_route_signal():
    relay = await start_relay()
    alice = await registered_client(relay, "ALICE1")
    bob = await registered_client(relay, "BOB001")
    received = asyncio.Queue()

    @bob.on_signal
    async def collect(message):
        await received.put(message)

    try:
        assert alice.registered and bob.registered
        assert sorted(relay.registered_ids) == ["ALICE1", "BOB001"]

        await alice.send_signal("BOB001", public_key_signal("{}"))
        message = await asyncio.wait_for(received.get(), 2.0)

        assert message.sender == "ALICE1"
        assert message.target == "BOB001"
        assert message.public_key == "{}"
        assert relay.get_stats()["signals_forwarded"] == 1
    finally:
        await alice.close()
        await bob.close()
        await relay.stop()


@pytest.mark.asyncio
async def test_signals_arrive_in_send_order():
    relay = await start_relay()
    alice = await registered_client(relay, "ALICE1")
    bob = await registered_client(relay, "BOB001")
    received = []
    done = asyncio.Event()

    @bob.on_signal
    async def collect(message):
        received.append(message.public_key)
        if len(received) == 20:
            done.set()

    try:
        for i in range(20):
            await alice.send_signal("BOB001", public_key_signal(str(i)))
        await asyncio.wait_for(done.wait(), 2.0)
        assert received == [str(i) for i in range(20)]
    finally:
        await alice.close()
        await bob.close()
        await relay.stop()


@pytest.mark.asyncio
async def test_sender_identity_comes_from_registration():
    relay = await start_relay()
    bob = await registered_client(relay, "BOB001")
    received = asyncio.Queue()
    bob.on_signal(received.put)

    reader, writer = await asyncio.open_connection("127.0.0.1", relay.port)
    try:
        await write_message(writer, WireMessage(type=MessageType.REGISTER, headers={"id": "MALLRY"}))
        reply = await WireMessage.from_reader(reader)
        assert reply.type == MessageType.REGISTERED

        await write_message(writer, WireMessage(
            type=MessageType.SIGNAL,
            headers={"from": "ALICE1", "target": "BOB001", "signal": public_key_signal("{}")},
        ))
        message = await asyncio.wait_for(received.get(), 2.0)
        assert message.sender == "MALLRY"
    finally:
        writer.close()
        await bob.close()
        await relay.stop()


@pytest.mark.asyncio
async def test_unknown_target_gets_error():
    relay = await start_relay()
    reader, writer = await asyncio.open_connection("127.0.0.1", relay.port)
    try:
        await write_message(writer, WireMessage(type=MessageType.REGISTER, headers={"id": "ALICE1"}))
        await WireMessage.from_reader(reader)

        await write_message(writer, WireMessage(
            type=MessageType.SIGNAL,
            headers={"target": "NOBODY", "signal": public_key_signal("{}")},
        ))
        reply = await asyncio.wait_for(WireMessage.from_reader(reader), 2.0)

        assert reply.type == MessageType.ERROR
        assert reply.headers["reason"] == "unknown target"
        assert reply.headers["target"] == "NOBODY"
    finally:
        writer.close()
        await relay.stop()


@pytest.mark.asyncio
async def test_signal_before_registration_is_refused():
    relay = await start_relay()
    reader, writer = await asyncio.open_connection("127.0.0.1", relay.port)
    try:
        await write_message(writer, WireMessage(
            type=MessageType.SIGNAL, headers={"target": "BOB001", "signal": {}},
        ))
        reply = await asyncio.wait_for(WireMessage.from_reader(reader), 2.0)
        assert reply.type == MessageType.ERROR
        assert reply.headers["reason"] == "not registered"
    finally:
        writer.close()
        await relay.stop()


@pytest.mark.asyncio
async def test_duplicate_id_is_refused():
    relay = await start_relay()
    first = await registered_client(relay, "SAME01")
    second = RelayClient("SAME01", host="127.0.0.1", port=relay.port, register_timeout=2.0)
    failures = []
    second.on_registration_failed(failures.append)
    try:
        await second.connect()
        with pytest.raises(RegistrationError):
            await second.register()

        assert not second.registered
        assert len(failures) == 1
        assert first.registered
    finally:
        await first.close()
        await second.close()
        await relay.stop()


@pytest.mark.asyncio
async def test_id_is_released_on_disconnect():
    relay = await start_relay()
    first = await registered_client(relay, "SAME01")
    await first.close()
    for _ in range(100):
        if "SAME01" not in relay.registered_ids:
            break
        await asyncio.sleep(0.01)

    second = await registered_client(relay, "SAME01")
    try:
        assert second.registered
    finally:
        await second.close()
        await relay.stop()


@pytest.mark.asyncio
async def test_unreachable_relay():
    relay = await start_relay()
    port = relay.port
    await relay.stop()

    client = RelayClient("ALONE1", host="127.0.0.1", port=port)
    with pytest.raises(SignalingError):
        await client.connect(timeout=2.0)
    assert not client.registered


@pytest.mark.asyncio
async def test_relay_shutdown_notifies_client():
    relay = await start_relay()
    client = await registered_client(relay, "ALICE1")
    closed = asyncio.Event()

    @client.on_close
    async def on_close():
        closed.set()

    await relay.stop()
    await asyncio.wait_for(closed.wait(), 2.0)
    assert not client.registered
    await client.close()
