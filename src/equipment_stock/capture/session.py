from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Optional, Protocol

from ..config import CameraConfig
from ..domain.errors import CameraUnavailable, CaptureCancelled, CaptureError, CaptureNotReady
from ..domain.models import CapturedImage
from ..logging import get_logger


LOG = get_logger("capture-session")

FACING_ENVIRONMENT = "environment"  # rear camera
FACING_USER = "user"

IDLE = "idle"
OPENING = "opening"
STREAMING = "streaming"
CAPTURING = "capturing"
ERROR = "error"


class CameraStream(Protocol):
    width: int
    height: int

    def read(self) -> Optional[Any]:
        ...

    def snapshot(self, jpeg_quality: int) -> CapturedImage:
        ...

    def release(self) -> None:
        ...


class CameraBackend(Protocol):
    def acquire(self, facing: str) -> CameraStream:
        """Blocking; raises CameraUnavailable when the device cannot be opened."""
        ...


class CancellationToken:
    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


def _release_when_done(fut: "asyncio.Future[CameraStream]") -> None:
    if fut.cancelled() or fut.exception() is not None:
        return
    LOG.info("Camera acquisition finished after cancellation; releasing it")
    fut.result().release()


class CaptureSession:
    """Camera stream lifecycle: open, preview, capture stills, close.

    States: idle -> opening -> streaming <-> capturing, opening -> error.
    `close()` is valid from any state, idempotent, and returns to idle. An
    acquisition that resolves after `close()` is released immediately.
    """

    def __init__(
        self,
        backend: Optional[CameraBackend] = None,
        *,
        facing: str = FACING_ENVIRONMENT,
        jpeg_quality: int = 90,
        preview_interval: float = 1 / 15,
    ) -> None:
        self._backend = backend
        self.facing = facing
        self.jpeg_quality = jpeg_quality
        self.preview_interval = preview_interval
        self.state = IDLE
        self._stream: Optional[CameraStream] = None
        self._token: Optional[CancellationToken] = None
        self._io_lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: CameraConfig, *, facing: str = FACING_ENVIRONMENT) -> "CaptureSession":
        from .opencv_backend import OpenCVCameraBackend

        return cls(OpenCVCameraBackend(config), facing=facing, jpeg_quality=config.jpeg_quality)

    def _get_backend(self) -> CameraBackend:
        if self._backend is None:
            from .opencv_backend import OpenCVCameraBackend

            self._backend = OpenCVCameraBackend()
        return self._backend

    async def __aenter__(self) -> "CaptureSession":
        await self.open()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def open(self) -> CameraStream:
        if self.state not in (IDLE, ERROR):
            raise CaptureNotReady(f"Session is already {self.state}")
        token = CancellationToken()
        self._token = token
        self.state = OPENING
        backend = self._get_backend()

        fut = asyncio.ensure_future(asyncio.to_thread(backend.acquire, self.facing))
        try:
            stream = await asyncio.shield(fut)
        except asyncio.CancelledError:
            token.cancel()
            fut.add_done_callback(_release_when_done)
            if self._token is token:
                self._token = None
                self.state = IDLE
            raise
        except Exception as exc:
            if token.cancelled:
                raise CaptureCancelled("Session closed while the camera was opening") from exc
            self._token = None
            self.state = ERROR
            if isinstance(exc, CameraUnavailable):
                LOG.warning("Camera unavailable: %s", exc)
                raise
            LOG.error("Camera acquisition failed: %s", exc)
            raise CameraUnavailable(str(exc)) from exc

        if token.cancelled:
            LOG.info("Camera acquisition resolved after close; releasing it")
            await asyncio.to_thread(stream.release)
            raise CaptureCancelled("Session closed while the camera was opening")

        self._token = None
        self._stream = stream
        self.state = STREAMING
        LOG.info("Camera streaming at %sx%s", stream.width, stream.height)
        return stream

    async def close(self) -> None:
        if self._token is not None:
            self._token.cancel()
            self._token = None
        stream, self._stream = self._stream, None
        previous, self.state = self.state, IDLE
        if stream is not None:
            async with self._io_lock:
                await asyncio.to_thread(stream.release)
            LOG.info("Camera session closed (was %s)", previous)

    async def capture_frame(self) -> CapturedImage:
        stream = self._stream
        if self.state != STREAMING or stream is None:
            raise CaptureNotReady("The camera is not ready")
        if not stream.width or not stream.height:
            raise CaptureNotReady("The camera has not reported frame dimensions yet")

        async with self._io_lock:
            if self._stream is not stream:
                raise CaptureNotReady("The camera was closed")
            self.state = CAPTURING
            try:
                image = await asyncio.to_thread(stream.snapshot, self.jpeg_quality)
            except CaptureError:
                raise
            except Exception as exc:
                LOG.error("Frame capture failed: %s", exc)
                raise CaptureError("Frame capture failed") from exc
            finally:
                if self._stream is stream:
                    self.state = STREAMING
        if self._stream is not stream:
            raise CaptureNotReady("The camera was closed during capture")
        LOG.debug("Captured %sx%s frame (%d bytes)", image.width, image.height, len(image.data))
        return image

    async def preview_frames(self) -> AsyncIterator[Any]:
        """Yield raw frames for a preview surface until the session stops streaming."""
        stream = self._stream
        if stream is None:
            raise CaptureNotReady("The camera is not ready")
        while self._stream is stream:
            async with self._io_lock:
                if self._stream is not stream:
                    break
                frame = await asyncio.to_thread(stream.read)
            if frame is not None:
                yield frame
            await asyncio.sleep(self.preview_interval)
