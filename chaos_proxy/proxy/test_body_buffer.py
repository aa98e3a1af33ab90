import os

import pytest

from chaos_proxy.errors import StagingError
from chaos_proxy.proxy import body_buffer
from chaos_proxy.proxy.body_buffer import COPY_BUFFER_SIZE, stage_body


async def body_from(chunks):
    for chunk in chunks:
        yield chunk


async def read_all(staged):
    return b"".join([chunk async for chunk in staged.aiter_chunks()])


@pytest.mark.asyncio
async def test_stage_small_body(tmp_path):
    staged = await stage_body(body_from([b"hello ", b"world"]), directory=str(tmp_path))
    try:
        assert staged.length == 11
        assert os.path.exists(staged.path)
        assert await read_all(staged) == b"hello world"
    finally:
        staged.release()

    assert not os.path.exists(staged.path)


@pytest.mark.asyncio
async def test_stage_body_larger_than_copy_buffer(tmp_path):
    chunks = [bytes([i % 256]) * 300_000 for i in range(10)]

    async with await stage_body(body_from(chunks), directory=str(tmp_path)) as staged:
        assert staged.length == 3_000_000
        data = await read_all(staged)

    assert data == b"".join(chunks)
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_staged_body_replays_in_bounded_chunks(tmp_path):
    payload = b"x" * (COPY_BUFFER_SIZE * 2 + 10)

    async with await stage_body(body_from([payload]), directory=str(tmp_path)) as staged:
        sizes = [len(chunk) async for chunk in staged.aiter_chunks()]

    assert sizes == [COPY_BUFFER_SIZE, COPY_BUFFER_SIZE, 10]


@pytest.mark.asyncio
async def test_empty_body(tmp_path):
    async with await stage_body(body_from([b""]), directory=str(tmp_path)) as staged:
        assert staged.length == 0
        assert await read_all(staged) == b""


@pytest.mark.asyncio
async def test_body_is_fsynced(tmp_path, monkeypatch):
    synced = []
    real_fsync = os.fsync
    monkeypatch.setattr(
        body_buffer.os, "fsync", lambda fd: (synced.append(fd), real_fsync(fd))
    )

    async with await stage_body(body_from([b"data"]), directory=str(tmp_path)):
        pass

    assert len(synced) == 1


@pytest.mark.asyncio
async def test_read_failure_removes_partial_file(tmp_path):
    async def broken_body():
        yield b"partial"
        raise ConnectionResetError("client went away")

    with pytest.raises(StagingError):
        await stage_body(broken_body(), directory=str(tmp_path))

    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_sync_failure_removes_partial_file(tmp_path, monkeypatch):
    def failing_fsync(fd):
        raise OSError("disk full")

    monkeypatch.setattr(body_buffer.os, "fsync", failing_fsync)

    with pytest.raises(StagingError):
        await stage_body(body_from([b"data"]), directory=str(tmp_path))

    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_missing_directory_is_a_staging_error(tmp_path):
    with pytest.raises(StagingError):
        await stage_body(body_from([b"data"]), directory=str(tmp_path / "missing"))


@pytest.mark.asyncio
async def test_release_is_idempotent_and_logs_delete_failure(tmp_path, caplog):
    staged = await stage_body(body_from([b"data"]), directory=str(tmp_path))
    os.remove(staged.path)

    staged.release()
    staged.release()

    assert staged.released
    assert any("Removing staged body failed" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_file_io_runs_off_the_event_loop(tmp_path, monkeypatch):
    offloaded = []
    real_to_thread = body_buffer.asyncio.to_thread

    async def recording_to_thread(func, *args, **kwargs):
        offloaded.append(func.__name__)
        return await real_to_thread(func, *args, **kwargs)

    monkeypatch.setattr(body_buffer.asyncio, "to_thread", recording_to_thread)
    payload = [b"a" * COPY_BUFFER_SIZE, b"b" * 10]

    async with await stage_body(body_from(payload), directory=str(tmp_path)) as staged:
        assert await read_all(staged) == b"".join(payload)

    assert offloaded.count("write") == 2
    assert "_sync_to_disk" in offloaded
    assert "read" in offloaded
