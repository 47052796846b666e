from __future__ import annotations

import asyncio
import threading

import pytest

from equipment_stock.capture.session import CAPTURING, ERROR, IDLE, STREAMING, CaptureSession
from equipment_stock.domain.errors import CameraUnavailable, CaptureCancelled, CaptureNotReady
from equipment_stock.domain.models import CapturedImage


class FakeStream:
    def __init__(self, width: int = 1280, height: int = 720) -> None:
        self.width = width
        self.height = height
        self.released = threading.Event()
        self.snapshots = 0

    def read(self):
        return object()

    def snapshot(self, jpeg_quality: int) -> CapturedImage:
        self.snapshots += 1
        return CapturedImage(data=b"jpeg", width=self.width, height=self.height)

    def release(self) -> None:
        self.released.set()


class FakeBackend:
    def __init__(self, stream=None, error: Exception | None = None, gate: threading.Event | None = None) -> None:
        self.stream = stream or FakeStream()
        self.error = error
        self.gate = gate
        self.started = threading.Event()
        self.facings = []

    def acquire(self, facing: str):
        self.facings.append(facing)
        self.started.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return self.stream


def test_open_capture_close():
    backend = FakeBackend()

    async def scenario():
        session = CaptureSession(backend, facing="environment")
        await session.open()
        assert session.state == STREAMING
        image = await session.capture_frame()
        assert session.state == STREAMING
        await session.close()
        return session, image

    session, image = asyncio.run(scenario())
    assert (image.width, image.height) == (1280, 720)
    assert session.state == IDLE
    assert backend.facings == ["environment"]
    assert backend.stream.released.is_set()


def test_permission_denied_moves_to_error():
    backend = FakeBackend(error=CameraUnavailable("permission denied"))

    async def scenario():
        session = CaptureSession(backend)
        with pytest.raises(CameraUnavailable):
            await session.open()
        return session

    session = asyncio.run(scenario())
    assert session.state == ERROR


def test_unexpected_backend_error_is_wrapped():
    backend = FakeBackend(error=OSError("device busy"))

    async def scenario():
        session = CaptureSession(backend)
        with pytest.raises(CameraUnavailable):
            await session.open()

    asyncio.run(scenario())


def test_capture_requires_streaming_and_dimensions():
    async def scenario():
        session = CaptureSession(FakeBackend())
        with pytest.raises(CaptureNotReady):
            await session.capture_frame()

        zero = FakeStream(width=0, height=0)
        session = CaptureSession(FakeBackend(stream=zero))
        await session.open()
        with pytest.raises(CaptureNotReady):
            await session.capture_frame()
        await session.close()
        return zero

    zero = asyncio.run(scenario())
    assert zero.snapshots == 0


def test_open_twice_is_rejected():
    async def scenario():
        session = CaptureSession(FakeBackend())
        await session.open()
        with pytest.raises(CaptureNotReady):
            await session.open()
        await session.close()

    asyncio.run(scenario())


def test_close_during_pending_open_releases_late_stream():
    gate = threading.Event()
    backend = FakeBackend(gate=gate)

    async def scenario():
        session = CaptureSession(backend)
        opening = asyncio.ensure_future(session.open())
        await asyncio.to_thread(backend.started.wait, 5)
        await session.close()
        assert session.state == IDLE
        gate.set()
        with pytest.raises(CaptureCancelled):
            await opening
        return session

    session = asyncio.run(scenario())
    assert backend.stream.released.wait(timeout=5)
    assert session.state == IDLE


def test_cancelled_open_task_releases_late_stream():
    gate = threading.Event()
    backend = FakeBackend(gate=gate)

    async def scenario():
        session = CaptureSession(backend)
        opening = asyncio.ensure_future(session.open())
        await asyncio.to_thread(backend.started.wait, 5)
        opening.cancel()
        with pytest.raises(asyncio.CancelledError):
            await opening
        gate.set()
        await asyncio.to_thread(backend.stream.released.wait, 5)
        return session

    session = asyncio.run(scenario())
    assert backend.stream.released.is_set()
    assert session.state == IDLE


def test_close_is_idempotent():
    backend = FakeBackend()

    async def scenario():
        session = CaptureSession(backend)
        await session.close()
        await session.open()
        await session.close()
        await session.close()
        assert session.state == IDLE

    asyncio.run(scenario())


def test_state_is_capturing_while_snapshot_runs():
    seen = []

    class SlowStream(FakeStream):
        def snapshot(self, jpeg_quality):
            seen.append(session.state)
            return super().snapshot(jpeg_quality)

    stream = SlowStream()
    session = CaptureSession(FakeBackend(stream=stream), jpeg_quality=75)

    async def scenario():
        async with session:
            await session.capture_frame()

    asyncio.run(scenario())
    assert seen == [CAPTURING]
    assert session.state == IDLE


def test_preview_frames_stop_when_session_closes():
    backend = FakeBackend()

    async def scenario():
        session = CaptureSession(backend, preview_interval=0)
        await session.open()
        frames = []
        async for frame in session.preview_frames():
            frames.append(frame)
            if len(frames) == 3:
                await session.close()
        return frames

    frames = asyncio.run(scenario())
    assert len(frames) == 3
    assert backend.stream.released.is_set()


def test_preview_frames_require_open_session():
    async def scenario():
        session = CaptureSession(FakeBackend())
        with pytest.raises(CaptureNotReady):
            await session.preview_frames().__anext__()

    asyncio.run(scenario())
