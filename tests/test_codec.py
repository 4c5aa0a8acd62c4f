import os

import pytest

from secureshare.crypto import CHUNK_SIZE, ChunkFrame, SharedKey
from secureshare.errors import AuthenticationError, ProtocolSequenceError
from secureshare.transfer import ChunkAssembler, ChunkEncoder, TransferManifest, chunk_count
from secureshare.transfer.codec import safe_file_name, unique_path

from .conftest import output_files


@pytest.fixture
def key():
    return SharedKey(os.urandom(32))


async def collect(encoder, path):
    return [item async for item in encoder.frames(path)]


def test_chunk_count():
    assert chunk_count(0) == 0
    assert chunk_count(1) == 1
    assert chunk_count(CHUNK_SIZE) == 1
    assert chunk_count(CHUNK_SIZE + 1) == 2
    assert chunk_count(50000) == 4


@pytest.mark.asyncio
@pytest.mark.parametrize("size, expected", [
    (0, []),
    (1, [1]),
    (CHUNK_SIZE, [CHUNK_SIZE]),
    (50000, [CHUNK_SIZE, CHUNK_SIZE, CHUNK_SIZE, 848]),
])
async def test_encoder_slices_in_order(key, make_file, size, expected):
    path = make_file("input.bin", size)
    frames = await collect(ChunkEncoder(key), path)

    assert [length for length, _ in frames] == expected
    assert [frame.plaintext_length for _, frame in frames] == expected


@pytest.mark.asyncio
@pytest.mark.parametrize("size", [0, 1, 3 * CHUNK_SIZE + 17])
async def test_assembled_file_matches_source(key, make_file, output_dir, size):
    path = make_file("source.bin", size)
    assembler = ChunkAssembler(key, output_dir)
    for _, frame in await collect(ChunkEncoder(key), path):
        await assembler.add(frame)

    result = await assembler.finalize(TransferManifest("source.bin", size))

    assert result == output_dir / "source.bin"
    assert result.read_bytes() == path.read_bytes()
    assert output_files(output_dir) == [result]


@pytest.mark.asyncio
async def test_reordered_chunks_do_not_reassemble(key, make_file, output_dir):
    path = make_file("source.bin", 2 * CHUNK_SIZE)
    frames = [frame for _, frame in await collect(ChunkEncoder(key), path)]
    assembler = ChunkAssembler(key, output_dir)
    for frame in reversed(frames):
        await assembler.add(frame)

    result = await assembler.finalize(TransferManifest("source.bin", 2 * CHUNK_SIZE))
    assert result.read_bytes() != path.read_bytes()


@pytest.mark.asyncio
async def test_size_mismatch_discards_partial_data(key, make_file, output_dir):
    path = make_file("source.bin", 1000)
    assembler = ChunkAssembler(key, output_dir)
    for _, frame in await collect(ChunkEncoder(key), path):
        await assembler.add(frame)

    with pytest.raises(ProtocolSequenceError):
        await assembler.finalize(TransferManifest("source.bin", 2000))
    assert output_files(output_dir) == []


@pytest.mark.asyncio
async def test_failed_chunk_then_discard_leaves_nothing(key, make_file, output_dir):
    path = make_file("source.bin", 1000)
    [(_, frame)] = await collect(ChunkEncoder(key), path)
    assembler = ChunkAssembler(key, output_dir)
    await assembler.add(frame)

    with pytest.raises(AuthenticationError):
        tampered = frame.ciphertext[:-1] + bytes([frame.ciphertext[-1] ^ 0x01])
        await assembler.add(ChunkFrame(nonce=frame.nonce, ciphertext=tampered))

    await assembler.discard()
    assert output_files(output_dir) == []


@pytest.mark.asyncio
async def test_existing_name_gets_a_suffix(key, output_dir):
    output_dir.mkdir(parents=True)
    (output_dir / "notes.txt").write_text("already here")

    assembler = ChunkAssembler(key, output_dir)
    result = await assembler.finalize(TransferManifest("notes.txt", 0))

    assert result.name == "notes (1).txt"
    assert (output_dir / "notes.txt").read_text() == "already here"


@pytest.mark.parametrize("name, expected", [
    ("report.pdf", "report.pdf"),
    ("../../etc/passwd", "passwd"),
    ("C:\\Users\\x\\doc.txt", "doc.txt"),
    ("", "file"),
    ("..", "file"),
])
def test_safe_file_name(name, expected):
    assert safe_file_name(name) == expected


def test_unique_path_counts_up(tmp_path):
    (tmp_path / "a.bin").write_bytes(b"")
    (tmp_path / "a (1).bin").write_bytes(b"")
    assert unique_path(tmp_path, "a.bin") == tmp_path / "a (2).bin"


def test_encoder_rejects_oversized_chunks(key):
    with pytest.raises(ValueError):
        ChunkEncoder(key, chunk_size=CHUNK_SIZE * 2)
