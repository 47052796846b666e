"""Scan orchestration: capture a label, recognize it, hand back a candidate.

Capture and recognition errors end up as one user-facing message on the
outcome; the camera session stays usable so the user can retry or dismiss.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .capture.session import CaptureSession
from .domain.errors import AnalysisFailed, CaptureCancelled, CaptureError, CaptureNotReady
from .domain.models import Candidate, CapturedImage, ItemDraft
from .logging import get_logger
from .recognition.pipeline import RecognitionPipeline


LOG = get_logger("label-scanner")

MSG_CAMERA_UNAVAILABLE = "Could not access the camera. Please check the permissions."
MSG_CAMERA_NOT_READY = "The camera is not ready."


@dataclass(frozen=True)
class ScanOutcome:
    candidate: Optional[Candidate] = None
    error: Optional[str] = None
    discarded: bool = False

    @property
    def ok(self) -> bool:
        return self.candidate is not None and not self.discarded


def apply_candidate(draft: ItemDraft, candidate: Candidate) -> ItemDraft:
    return draft.merged_with(candidate)


def search_query_for(candidate: Candidate) -> str:
    """Text to search the stock list with after scanning a label.

    The serial number identifies a unit; without one, fall back to the name.
    """
    return candidate.serial_number.strip() or candidate.name.strip()


class LabelScanner:
    def __init__(self, session: CaptureSession, pipeline: RecognitionPipeline) -> None:
        self.session = session
        self.pipeline = pipeline
        self._generation = 0

    async def start(self) -> Optional[str]:
        """Open the camera; returns a user-facing message on failure."""
        try:
            await self.session.open()
        except CaptureCancelled:
            return None
        except CaptureError as exc:
            LOG.warning("Scanner could not start: %s", exc)
            return MSG_CAMERA_UNAVAILABLE
        return None

    async def scan(self) -> ScanOutcome:
        generation = self._next_generation()
        try:
            image = await self.session.capture_frame()
        except CaptureNotReady as exc:
            LOG.warning("Capture rejected: %s", exc)
            return self._finish(generation, ScanOutcome(error=MSG_CAMERA_NOT_READY))
        except CaptureError as exc:
            LOG.warning("Capture failed: %s", exc)
            return self._finish(generation, ScanOutcome(error=MSG_CAMERA_UNAVAILABLE))
        return await self._recognize(generation, image)

    async def scan_image(self, image: CapturedImage) -> ScanOutcome:
        """Recognize an image obtained elsewhere (file upload, saved photo)."""
        return await self._recognize(self._next_generation(), image)

    def dismiss(self) -> None:
        """Forget any scan in flight; its result will be discarded."""
        self._generation += 1

    async def close(self) -> None:
        self.dismiss()
        await self.session.close()

    async def _recognize(self, generation: int, image: CapturedImage) -> ScanOutcome:
        try:
            candidate = await self.pipeline.analyze(image)
        except AnalysisFailed as exc:
            return self._finish(generation, ScanOutcome(error=exc.user_message))
        return self._finish(generation, ScanOutcome(candidate=candidate))

    def _next_generation(self) -> int:
        self._generation += 1
        return self._generation

    def _finish(self, generation: int, outcome: ScanOutcome) -> ScanOutcome:
        if generation != self._generation:
            LOG.info("Discarding scan result that arrived after dismissal")
            return ScanOutcome(discarded=True)
        return outcome
