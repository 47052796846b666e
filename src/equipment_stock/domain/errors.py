"""Exception taxonomy shared by the capture, recognition and inventory layers."""

from __future__ import annotations


class EquipmentStockError(Exception):
    pass


# ---- capture ----
class CaptureError(EquipmentStockError):
    pass


class CameraUnavailable(CaptureError):
    """Camera permission denied or no matching device."""


class CaptureNotReady(CaptureError):
    """No live stream, or the stream has no usable frame dimensions yet."""


class CaptureCancelled(CaptureError):
    """The session was closed while the camera acquisition was still pending."""


# ---- recognition ----
class RecognitionServiceError(EquipmentStockError):
    """Transport or collaborator failure talking to the recognition service."""


class AnalysisFailed(EquipmentStockError):
    """User-facing recognition failure; never carries transport detail."""

    DEFAULT_MESSAGE = "Could not analyze the image. Please try again."

    def __init__(self, message: str = DEFAULT_MESSAGE) -> None:
        super().__init__(message)
        self.user_message = message


# ---- inventory ----
class LedgerError(EquipmentStockError):
    pass


class InvalidInput(LedgerError):
    pass


class DuplicateSerial(InvalidInput):
    def __init__(self, serial: str, existing_id: str) -> None:
        super().__init__(f"An item with serial number {serial!r} already exists ({existing_id})")
        self.serial = serial
        self.existing_id = existing_id


class ItemNotFound(LedgerError):
    def __init__(self, ref: str) -> None:
        super().__init__(f"No item found for {ref!r}")
        self.ref = ref


class InsufficientStock(LedgerError):
    def __init__(self, item_id: str, on_hand: int, requested: int) -> None:
        super().__init__(
            f"Cannot remove {requested} from item {item_id}: only {on_hand} in stock"
        )
        self.item_id = item_id
        self.on_hand = on_hand
        self.requested = requested


# ---- persistence ----
class StoreError(EquipmentStockError):
    pass
