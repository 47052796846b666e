from __future__ import annotations

from typing import Any, Optional

import cv2

from ..config import CameraConfig
from ..domain.errors import CameraUnavailable, CaptureError, CaptureNotReady
from ..domain.models import CapturedImage
from ..logging import get_logger


LOG = get_logger("capture-opencv")


class OpenCVCameraStream:
    """Live `cv2.VideoCapture` handle. All calls block; run them off the event loop."""

    def __init__(self, capture: "cv2.VideoCapture", index: int) -> None:
        self._capture = capture
        self.index = index

    @property
    def width(self) -> int:
        return int(self._capture.get(cv2.CAP_PROP_FRAME_WIDTH) or 0)

    @property
    def height(self) -> int:
        return int(self._capture.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)

    def read(self) -> Optional[Any]:
        ok, frame = self._capture.read()
        return frame if ok else None

    def snapshot(self, jpeg_quality: int) -> CapturedImage:
        frame = self.read()
        if frame is None:
            raise CaptureNotReady(f"camera {self.index} returned no frame")
        ok, buf = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(jpeg_quality)])
        if not ok:
            raise CaptureError("JPEG encoding of the captured frame failed")
        h, w = frame.shape[:2]
        return CapturedImage(data=buf.tobytes(), width=int(w), height=int(h))

    def release(self) -> None:
        self._capture.release()
        LOG.debug("Released camera %s", self.index)


class OpenCVCameraBackend:
    """Opens the configured device for the requested facing mode."""

    def __init__(self, config: Optional[CameraConfig] = None) -> None:
        self.config = config or CameraConfig()

    def acquire(self, facing: str) -> OpenCVCameraStream:
        index = self.config.index_for(facing)
        LOG.info("Opening camera index %s (facing=%s)", index, facing)
        capture = cv2.VideoCapture(index)
        if not capture.isOpened():
            capture.release()
            raise CameraUnavailable(f"Camera {index} ({facing}) could not be opened; check device and permissions")
        # First read primes the driver so frame dimensions are reported.
        ok, _ = capture.read()
        if not ok:
            LOG.warning("Camera %s opened but the first frame could not be read", index)
        return OpenCVCameraStream(capture, index)
